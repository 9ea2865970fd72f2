import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import RedirectResponse
from vitalite.api.deps import bad_request, get_sync_service, parse_dob, parse_user_id
from vitalite.core.config import settings
from vitalite.core.database import get_store
from vitalite.core.errors import InvalidInput, ProviderError
from vitalite.core.store import Store
from vitalite.models import UserRead
from vitalite.services.sync import (
    SyncStatus, SyncTracker, WeekSyncService, get_sync_tracker, utc_today, week_start_for,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["user"])


@router.post("/api/user/dob")
async def update_dob(userId: Optional[str] = Form(None), dob: Optional[str] = Form(None),
                     sync: Optional[str] = Form(None), store: Store = Depends(get_store),
                     service: WeekSyncService = Depends(get_sync_service),
                     tracker: SyncTracker = Depends(get_sync_tracker)):
    try:
        user_id = parse_user_id(userId)
        birth_date = parse_dob(dob)
    except InvalidInput as e:
        raise bad_request(e)

    user = store.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.dob = birth_date
    user = store.upsert_user(user)

    # Age feeds the heart-rate thresholds, so rescore everything already stored
    service.recompute_days(user, {a.date for a in store.list_activities(user.id)})

    week_start = week_start_for(utc_today())
    if not sync:
        # Points were just rescored, skip the dashboard auto-sync for this week
        tracker.record(user.id, week_start, SyncStatus.cached)
        return RedirectResponse(url="/", status_code=303)

    try:
        await service.sync_week(user.id, week_start)
        status = SyncStatus.synced
    except ProviderError as e:
        logger.error("Sync after DOB update failed for user %s: %s", user.id, e)
        status = SyncStatus.error
    tracker.record(user.id, week_start, status)
    return RedirectResponse(url=f"/?status={status.value}", status_code=303)


@router.api_route("/api/user/delete", methods=["GET", "POST"])
def disconnect(request: Request, store: Store = Depends(get_store),
               tracker: SyncTracker = Depends(get_sync_tracker)):
    """Disconnect Strava: keep the user and DOB, drop tokens and all synced data."""
    try:
        user_id = parse_user_id(request.query_params.get("userId"))
    except InvalidInput as e:
        raise bad_request(e)

    if not store.disconnect_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    tracker.forget_user(user_id)
    logger.info("Disconnected user %s", user_id)

    response = RedirectResponse(url="/", status_code=303)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return response


@router.get("/api/debug/users", response_model=List[UserRead])
def list_users(store: Store = Depends(get_store)):
    return store.list_users()
