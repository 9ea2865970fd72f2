import datetime as dt
from typing import Optional, List
from sqlmodel import Field, SQLModel, UniqueConstraint
from pydantic import BaseModel

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    strava_athlete_id: int = Field(index=True, unique=True)
    name: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_expires_at: int = 0 # epoch seconds
    dob: Optional[dt.date] = None

class Activity(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "strava_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    strava_id: int = Field(index=True)
    name: str = ""
    type: str = ""
    moving_minutes: int = 0
    distance_km: float = 0.0
    start_date_local: Optional[str] = None
    date: dt.date = Field(index=True) # local calendar date
    average_heartrate: Optional[float] = None
    max_heartrate: Optional[float] = None
    calories: Optional[float] = None

class DailyPoints(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    date: dt.date = Field(index=True)
    workout_minutes: int = 0
    steps: int = 0 # no step source yet
    points: int = 0

class SyncedWeek(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "week_start"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    week_start: dt.date # Monday
    synced_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)

# Pydantic Schemas for API
class UserRead(BaseModel):
    id: int
    strava_athlete_id: int
    name: str
    dob: Optional[dt.date] = None

class ActivityRead(BaseModel):
    strava_id: int
    name: str
    type: str
    moving_minutes: int
    distance_km: float
    date: dt.date
    start_date_local: Optional[str] = None
    average_heartrate: Optional[float] = None
    max_heartrate: Optional[float] = None
    calories: Optional[float] = None

class DailyPointsRead(BaseModel):
    date: dt.date
    workout_minutes: int
    steps: int
    points: int

class WeekSummary(BaseModel):
    week_start: dt.date
    week_end: dt.date
    days: List[DailyPointsRead]
    raw_total: int
    capped_total: int
    synced: bool

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: int
    athlete: dict = {}
