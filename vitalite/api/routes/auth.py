import logging
import secrets
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from vitalite.api.deps import get_strava_client
from vitalite.core.config import settings
from vitalite.core.database import get_store
from vitalite.core.errors import ProviderAuthFailure
from vitalite.core.store import Store
from vitalite.models import User
from vitalite.services.strava import StravaClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

STATE_COOKIE = "strava_oauth_state"
SESSION_MAX_AGE = 60 * 60 * 24 * 365


@router.get("/login")
def login(strava: StravaClient = Depends(get_strava_client)):
    if not settings.strava_client_id or not settings.strava_client_secret:
        raise HTTPException(
            status_code=500,
            detail="Strava API credentials are not configured. Please set STRAVA_CLIENT_ID and STRAVA_CLIENT_SECRET in your .env file."
        )
    state = secrets.token_urlsafe(24)
    response = RedirectResponse(strava.get_auth_url(state=state))
    response.set_cookie(STATE_COOKIE, state, httponly=True, samesite="lax")
    return response


def _auth_failed() -> RedirectResponse:
    response = RedirectResponse(url="/?auth=failed")
    response.delete_cookie(STATE_COOKIE)
    return response


@router.get("/api/strava/callback")
async def callback(request: Request, code: Optional[str] = None, state: Optional[str] = None,
                   error: Optional[str] = None, store: Store = Depends(get_store),
                   strava: StravaClient = Depends(get_strava_client)):
    if error or not code:
        logger.info("Strava authorization declined: %s", error)
        return _auth_failed()

    expected_state = request.cookies.get(STATE_COOKIE, "")
    if not expected_state or state != expected_state:
        logger.warning("Strava callback with invalid OAuth state")
        return _auth_failed()

    try:
        tokens = await strava.exchange_token(code)
        athlete = tokens["athlete"]
        user = store.get_user_by_athlete(athlete["id"]) or User(strava_athlete_id=athlete["id"])
        user.name = f"{athlete.get('firstname') or ''} {athlete.get('lastname') or ''}".strip()
        user.access_token = tokens["access_token"]
        user.refresh_token = tokens["refresh_token"]
        user.token_expires_at = int(tokens["expires_at"])
        user = store.upsert_user(user)
    except (ProviderAuthFailure, KeyError, TypeError) as e:
        logger.error("Strava callback error: %s", e)
        return _auth_failed()

    logger.info("Connected Strava athlete %s as user %s", user.strava_athlete_id, user.id)
    response = RedirectResponse(url="/")
    response.delete_cookie(STATE_COOKIE)
    response.set_cookie(
        settings.session_cookie_name,
        str(user.id),
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
        max_age=SESSION_MAX_AGE,
    )
    return response
