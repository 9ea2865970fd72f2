from datetime import date
from enum import Enum
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackend(str, Enum):
    sql = "sql"
    json = "json"


class Settings(BaseSettings):
    strava_client_id: Optional[str] = None
    strava_client_secret: Optional[str] = None
    strava_redirect_uri: str = "http://127.0.0.1:8000/api/strava/callback"
    strava_scope: str = "read,activity:read_all"

    # Points are only counted from this date (inclusive)
    start_date: date = date(2025, 12, 1)

    # Storage
    storage_backend: StorageBackend = StorageBackend.sql
    database_url: str = "sqlite:///vitalite.db"
    json_store_path: str = "db.json"

    # Session
    session_cookie_name: str = "vitalite_user_id"
    cookie_secure: bool = True

    # Sync
    token_refresh_margin_seconds: int = 60
    activities_per_page: int = 200
    sync_cooldown_seconds: int = 300
    weekly_cap: int = 40

    # App Settings
    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
