import re
from datetime import date, datetime
from typing import Optional
from fastapi import Depends, HTTPException, Request
from vitalite.core.config import settings
from vitalite.core.database import get_store
from vitalite.core.errors import InvalidInput
from vitalite.core.store import Store
from vitalite.models import User
from vitalite.services.strava import StravaClient
from vitalite.services.sync import WeekSyncService

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
US_DATE = re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")


def get_strava_client(store: Store = Depends(get_store)) -> StravaClient:
    return StravaClient(store)


def get_sync_service(store: Store = Depends(get_store),
                     strava: StravaClient = Depends(get_strava_client)) -> WeekSyncService:
    return WeekSyncService(store, strava)


def parse_user_id(raw) -> int:
    if raw is None or str(raw).strip() == "":
        raise InvalidInput("Missing userId")
    raw = str(raw).strip()
    if not raw.isdigit():
        raise InvalidInput("Invalid userId")
    return int(raw)


def parse_week_start(raw: Optional[str]) -> date:
    if not raw or not ISO_DATE.match(raw):
        raise InvalidInput("Invalid weekStart")
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise InvalidInput("Invalid weekStart")


def parse_dob(raw: Optional[str], today: Optional[date] = None) -> date:
    """Accepts YYYY-MM-DD (from <input type="date">) or MM/DD/YYYY."""
    raw = (raw or "").strip()
    if ISO_DATE.match(raw):
        fmt = "%Y-%m-%d"
    elif US_DATE.match(raw):
        fmt = "%m/%d/%Y"
    else:
        raise InvalidInput("Invalid dob")
    try:
        dob = datetime.strptime(raw, fmt).date()
    except ValueError:
        raise InvalidInput("Invalid dob")
    if dob > (today or date.today()):
        raise InvalidInput("Invalid dob")
    return dob


def bad_request(e: InvalidInput) -> HTTPException:
    return HTTPException(status_code=400, detail=str(e))


def session_user(request: Request, store: Store) -> Optional[User]:
    raw = request.cookies.get(settings.session_cookie_name)
    if not raw or not raw.isdigit():
        return None
    return store.get_user(int(raw))


def require_session_user(request: Request, store: Store = Depends(get_store)) -> User:
    user = session_user(request, store)
    if not user:
        raise HTTPException(status_code=401, detail="Strava not connected")
    return user
