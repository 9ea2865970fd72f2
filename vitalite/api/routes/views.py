import logging
from pathlib import Path
from typing import Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from vitalite.api.deps import get_sync_service, session_user
from vitalite.core.config import settings
from vitalite.core.database import get_store
from vitalite.core.errors import ProviderError
from vitalite.core.store import Store
from vitalite.services.dashboard import build_week_view, parse_week_param
from vitalite.services.sync import (
    SyncStatus, SyncTracker, WeekSyncService, get_sync_tracker, should_auto_sync,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["views"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parents[2] / "templates"))


@router.get("/", response_class=HTMLResponse)
async def dashboard(request: Request, weekStart: Optional[str] = None,
                    status: Optional[str] = None, auth: Optional[str] = None,
                    store: Store = Depends(get_store),
                    service: WeekSyncService = Depends(get_sync_service),
                    tracker: SyncTracker = Depends(get_sync_tracker)):
    user = session_user(request, store)
    if not user:
        return templates.TemplateResponse(
            request=request, name="landing.html",
            context={"auth_failed": auth == "failed"},
        )

    if not user.dob:
        return templates.TemplateResponse(
            request=request, name="dob_required.html", context={"user": user},
        )

    week_start = parse_week_param(weekStart)
    view = build_week_view(store, user.id, week_start, cap=settings.weekly_cap)

    sync_status = status if status in SyncStatus.__members__ else None
    recent = tracker.recent(user.id, view.week_start)
    if should_auto_sync(view.is_current_week, view.synced, suppressed=recent is not None):
        try:
            await service.sync_week(user.id, view.week_start)
            sync_status = SyncStatus.synced.value
        except ProviderError as e:
            logger.error("Auto-sync failed for user %s, week %s: %s", user.id, view.week_start, e)
            sync_status = SyncStatus.error.value
        tracker.record(user.id, view.week_start, SyncStatus(sync_status))
        view = build_week_view(store, user.id, view.week_start, cap=settings.weekly_cap)
    elif sync_status is None:
        if recent is not None:
            sync_status = recent.value
        elif view.synced:
            sync_status = SyncStatus.cached.value

    return templates.TemplateResponse(
        request=request, name="dashboard.html",
        context={"user": user, "view": view, "sync_status": sync_status},
    )
