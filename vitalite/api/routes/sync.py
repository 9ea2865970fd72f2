import logging
from urllib.parse import urlencode
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from vitalite.api.deps import bad_request, get_sync_service, parse_user_id, parse_week_start
from vitalite.core.database import get_store
from vitalite.core.errors import InvalidInput, ProviderError, UserNotFound
from vitalite.core.store import Store
from vitalite.services.sync import (
    SyncStatus, SyncTracker, WeekSyncService, get_sync_tracker, utc_today, week_start_for,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


async def _user_id_from_request(request: Request) -> int:
    raw = request.query_params.get("userId")
    if raw is None and request.method == "POST":
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("userId") is not None:
            raw = str(body["userId"])
    return parse_user_id(raw)


def _back_to_dashboard(**params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return RedirectResponse(url=f"/?{query}" if query else "/", status_code=303)


@router.api_route("", methods=["GET", "POST"])
async def sync_all(request: Request, store: Store = Depends(get_store),
                   service: WeekSyncService = Depends(get_sync_service),
                   tracker: SyncTracker = Depends(get_sync_tracker)):
    """Sync everything since the configured start date."""
    try:
        user_id = await _user_id_from_request(request)
    except InvalidInput as e:
        raise bad_request(e)
    if not store.get_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")

    try:
        await service.sync_since_start(user_id)
        status = SyncStatus.synced
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    except ProviderError as e:
        logger.error("Sync error for user %s: %s", user_id, e)
        status = SyncStatus.error

    tracker.record(user_id, week_start_for(utc_today()), status)
    return _back_to_dashboard(status=status.value)


@router.api_route("/week", methods=["GET", "POST"])
async def sync_week(request: Request, store: Store = Depends(get_store),
                    service: WeekSyncService = Depends(get_sync_service),
                    tracker: SyncTracker = Depends(get_sync_tracker)):
    try:
        user_id = await _user_id_from_request(request)
        week_start = parse_week_start(request.query_params.get("weekStart"))
    except InvalidInput as e:
        raise bad_request(e)
    if not store.get_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")

    week_start = week_start_for(week_start)
    try:
        await service.sync_week(user_id, week_start)
        status = SyncStatus.synced
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    except ProviderError as e:
        logger.error("Week sync error for user %s, week %s: %s", user_id, week_start, e)
        status = SyncStatus.error

    tracker.record(user_id, week_start, status)
    return _back_to_dashboard(weekStart=week_start.isoformat(), status=status.value)
