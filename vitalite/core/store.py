"""Keyed storage interface shared by the SQL and JSON backends.

Each collection (users, activities, daily points, synced weeks) is an
independent table. Writes are per-row upserts keyed on the natural key of the
table, so two requests touching different rows never overwrite each other.
"""
import datetime as dt
from abc import ABC, abstractmethod
from typing import List, Optional
from vitalite.models import Activity, DailyPoints, SyncedWeek, User


class Store(ABC):

    # -------- Users --------

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_athlete(self, athlete_id: int) -> Optional[User]: ...

    @abstractmethod
    def list_users(self) -> List[User]: ...

    @abstractmethod
    def upsert_user(self, user: User) -> User:
        """Insert the user (assigning an id) or replace the row with the same id."""

    # -------- Activities --------

    @abstractmethod
    def upsert_activity(self, activity: Activity) -> bool:
        """Upsert by (user_id, strava_id). Returns True when a new row was inserted."""

    @abstractmethod
    def list_activities(self, user_id: int, start: Optional[dt.date] = None,
                        end: Optional[dt.date] = None) -> List[Activity]:
        """Activities whose local date lies in [start, end], ordered by date."""

    @abstractmethod
    def delete_activities(self, user_id: int) -> None: ...

    # -------- Daily points --------

    @abstractmethod
    def upsert_daily_points(self, entry: DailyPoints) -> None:
        """Overwrite the (user_id, date) row wholesale."""

    @abstractmethod
    def list_daily_points(self, user_id: int, start: Optional[dt.date] = None,
                          end: Optional[dt.date] = None) -> List[DailyPoints]: ...

    @abstractmethod
    def delete_daily_points(self, user_id: int) -> None: ...

    # -------- Synced weeks --------

    @abstractmethod
    def get_synced_week(self, user_id: int, week_start: dt.date) -> Optional[SyncedWeek]: ...

    @abstractmethod
    def mark_week_synced(self, user_id: int, week_start: dt.date,
                         synced_at: Optional[dt.datetime] = None) -> SyncedWeek: ...

    @abstractmethod
    def delete_synced_weeks(self, user_id: int) -> None: ...

    # -------- Disconnect --------

    def disconnect_user(self, user_id: int) -> Optional[User]:
        """Clear tokens and drop all derived data, keeping the user row and DOB."""
        user = self.get_user(user_id)
        if not user:
            return None
        user.access_token = ""
        user.refresh_token = ""
        user.token_expires_at = 0
        user = self.upsert_user(user)
        self.delete_activities(user_id)
        self.delete_daily_points(user_id)
        self.delete_synced_weeks(user_id)
        return user


def in_range(day: dt.date, start: Optional[dt.date], end: Optional[dt.date]) -> bool:
    if start and day < start:
        return False
    if end and day > end:
        return False
    return True
