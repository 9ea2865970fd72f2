import logging
import time
from typing import List, Optional
from urllib.parse import urlencode
import httpx
from vitalite.core.config import Settings, settings as default_settings
from vitalite.core.errors import ProviderAuthFailure, ProviderFetchFailed, UserNotFound
from vitalite.core.store import Store
from vitalite.models import User

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
TOKEN_URL = "https://www.strava.com/oauth/token"


class StravaClient:

    def __init__(self, store: Store, settings: Settings = default_settings,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.store = store
        self.settings = settings
        self.transport = transport
        self.base_url = "https://www.strava.com/api/v3"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def get_auth_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self.settings.strava_client_id or "",
            "response_type": "code",
            "redirect_uri": self.settings.strava_redirect_uri,
            "scope": self.settings.strava_scope,
            "approval_prompt": "auto",
        }
        if state:
            params["state"] = state
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def _token_request(self, data: dict) -> dict:
        payload = {
            "client_id": self.settings.strava_client_id,
            "client_secret": self.settings.strava_client_secret,
            **data,
        }
        try:
            async with self._client() as client:
                response = await client.post(TOKEN_URL, data=payload)
        except httpx.HTTPError as e:
            raise ProviderAuthFailure(f"Token request failed: {e}") from e
        if response.status_code != 200:
            raise ProviderAuthFailure(
                f"Token request failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            tokens = response.json()
            tokens["expires_at"] = int(tokens["expires_at"])
            if not tokens["access_token"]:
                raise ValueError("empty access_token")
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderAuthFailure(
                f"Malformed token response: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e
        return tokens

    async def exchange_token(self, code: str) -> dict:
        """Trade an authorization code for tokens. The payload includes the athlete."""
        return await self._token_request({"code": code, "grant_type": "authorization_code"})

    async def refresh_token(self, user: User) -> User:
        data = await self._token_request({
            "refresh_token": user.refresh_token,
            "grant_type": "refresh_token",
        })
        user.access_token = data["access_token"]
        user.refresh_token = data.get("refresh_token") or user.refresh_token
        user.token_expires_at = data["expires_at"]
        user = self.store.upsert_user(user)
        logger.info("Refreshed Strava token for user %s", user.id)
        return user

    async def get_valid_access_token(self, user_id: int) -> str:
        user = self.store.get_user(user_id)
        if not user:
            raise UserNotFound(user_id)

        now = int(time.time())
        if now < user.token_expires_at - self.settings.token_refresh_margin_seconds:
            return user.access_token

        user = await self.refresh_token(user)
        return user.access_token

    async def fetch_activities(self, access_token: str, after: Optional[int] = None,
                               before: Optional[int] = None) -> List[dict]:
        activities = []
        page = 1
        per_page = self.settings.activities_per_page

        async with self._client() as client:
            while True:
                params = {"page": page, "per_page": per_page}
                if after is not None:
                    params["after"] = after
                if before is not None:
                    params["before"] = before

                logger.debug("Fetching activities page %s (per_page=%s)", page, per_page)
                try:
                    response = await client.get(
                        f"{self.base_url}/athlete/activities",
                        headers={"Authorization": f"Bearer {access_token}"},
                        params=params
                    )
                except httpx.HTTPError as e:
                    raise ProviderFetchFailed(f"Strava API error on page {page}: {e}") from e

                if response.status_code != 200:
                    raise ProviderFetchFailed(
                        f"Failed to fetch activities: {response.status_code} {response.text}",
                        status_code=response.status_code,
                        body=response.text,
                    )

                try:
                    data = response.json()
                except ValueError as e:
                    raise ProviderFetchFailed(
                        f"Malformed activities response on page {page}",
                        status_code=response.status_code,
                        body=response.text,
                    ) from e
                if not isinstance(data, list):
                    raise ProviderFetchFailed(
                        f"Unexpected activities payload on page {page}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                if not data:
                    break
                activities.extend(data)
                if len(data) < per_page:
                    break
                page += 1

        return activities
