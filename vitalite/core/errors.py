from typing import Optional


class VitaliteError(Exception):
    """Base class for application errors."""


class InvalidInput(VitaliteError):
    """A user id, date or required field was missing or malformed."""


class UserNotFound(VitaliteError):
    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class ProviderError(VitaliteError):
    """Strava answered with a non-success status or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProviderAuthFailure(ProviderError):
    """Token exchange or refresh was rejected."""


class ProviderFetchFailed(ProviderError):
    """Activity listing failed."""
