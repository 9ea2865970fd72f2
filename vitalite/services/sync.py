"""Lazy week-by-week synchronisation of Strava activities into daily points."""
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time as dt_time, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
from vitalite.core.config import Settings, settings as default_settings
from vitalite.core.errors import UserNotFound
from vitalite.core.store import Store
from vitalite.models import Activity, DailyPoints, User
from vitalite.services.normalizer import normalize_activities
from vitalite.services.scoring import compute_daily_points
from vitalite.services.strava import StravaClient

logger = logging.getLogger(__name__)


def week_start_for(day: date) -> date:
    """Monday of the week containing day."""
    return day - timedelta(days=day.weekday())


def utc_today() -> date:
    """Calendar date in UTC, matching the UTC week windows sent to Strava."""
    return datetime.now(timezone.utc).date()


def utc_epoch(day: date) -> int:
    return int(datetime.combine(day, dt_time.min, tzinfo=timezone.utc).timestamp())


@dataclass
class SyncResult:
    fetched_count: int
    upserted_count: int
    week_start: date


class SyncStatus(str, Enum):
    synced = "synced"
    error = "error"
    cached = "cached"


def should_auto_sync(is_current_week: bool, already_synced: bool, suppressed: bool) -> bool:
    """The current week is always re-checked, other weeks only until they are marked synced."""
    if suppressed:
        return False
    return is_current_week or not already_synced


class SyncTracker:
    """Remembers recent sync attempts per (user, week) in this process.

    A recent attempt, successful or not, suppresses automatic syncing of the
    same week until the cooldown expires.
    """

    def __init__(self, cooldown_seconds: int):
        self.cooldown_seconds = cooldown_seconds
        self._attempts: Dict[Tuple[int, date], Tuple[SyncStatus, float]] = {}
        self._lock = threading.Lock()

    def record(self, user_id: int, week_start: date, status: SyncStatus):
        now = time.time()
        with self._lock:
            for key, (_, at) in list(self._attempts.items()):
                if now - at >= self.cooldown_seconds:
                    del self._attempts[key]
            self._attempts[(user_id, week_start)] = (status, now)

    def recent(self, user_id: int, week_start: date) -> Optional[SyncStatus]:
        with self._lock:
            attempt = self._attempts.get((user_id, week_start))
        if not attempt:
            return None
        status, at = attempt
        if time.time() - at >= self.cooldown_seconds:
            return None
        return status

    def forget_user(self, user_id: int):
        with self._lock:
            for key in list(self._attempts):
                if key[0] == user_id:
                    del self._attempts[key]


sync_tracker = SyncTracker(default_settings.sync_cooldown_seconds)


def get_sync_tracker() -> SyncTracker:
    return sync_tracker


class WeekSyncService:

    def __init__(self, store: Store, strava: StravaClient, settings: Settings = default_settings):
        self.store = store
        self.strava = strava
        self.settings = settings

    def _get_user(self, user_id: int) -> User:
        user = self.store.get_user(user_id)
        if not user:
            raise UserNotFound(user_id)
        return user

    async def sync_week(self, user_id: int, week_start: date) -> SyncResult:
        """Fetch one Monday-start week from Strava and recompute its points. Safe to repeat."""
        week_start = week_start_for(week_start)
        week_end = week_start + timedelta(days=7)
        logger.info("Syncing week %s for user %s", week_start, user_id)

        fetched, upserted = await self._sync_window(user_id, week_start, week_end)
        self.store.mark_week_synced(user_id, week_start)

        logger.info("Week %s for user %s: %s fetched, %s upserted", week_start, user_id, fetched, upserted)
        return SyncResult(fetched_count=fetched, upserted_count=upserted, week_start=week_start)

    async def sync_since_start(self, user_id: int, today: Optional[date] = None) -> SyncResult:
        """Sync every week from the configured start date up to the current week."""
        today = today or utc_today()
        first_week = week_start_for(self.settings.start_date)
        end = week_start_for(today) + timedelta(days=7)
        logger.info("Syncing user %s since %s", user_id, self.settings.start_date)

        fetched, upserted = await self._sync_window(user_id, first_week, end)
        week = first_week
        while week < end:
            self.store.mark_week_synced(user_id, week)
            week += timedelta(days=7)

        logger.info("Full sync for user %s: %s fetched, %s upserted", user_id, fetched, upserted)
        return SyncResult(fetched_count=fetched, upserted_count=upserted, week_start=first_week)

    async def _sync_window(self, user_id: int, start: date, end: date) -> Tuple[int, int]:
        self._get_user(user_id)
        token = await self.strava.get_valid_access_token(user_id)
        raw = await self.strava.fetch_activities(token, after=utc_epoch(start), before=utc_epoch(end))

        activities = [
            a for a in normalize_activities(raw, user_id)
            if a.date >= self.settings.start_date
        ]
        # A re-dated activity leaves its old day, which must be rescored too
        previous_dates = {a.strava_id: a.date for a in self.store.list_activities(user_id)}
        days = {a.date for a in activities}
        for activity in activities:
            if activity.strava_id in previous_dates:
                days.add(previous_dates[activity.strava_id])
            self.store.upsert_activity(activity)

        # Token refresh may have replaced the row, read the user again for scoring
        user = self._get_user(user_id)
        self.recompute_days(user, days)
        return len(raw), len(activities)

    def recompute_days(self, user: User, days: Iterable[date]) -> List[DailyPoints]:
        """Rebuild DailyPoints for each day from every stored activity on that day."""
        by_day: Dict[date, List[Activity]] = defaultdict(list)
        days = sorted(set(days))
        if days:
            for activity in self.store.list_activities(user.id, days[0], days[-1]):
                by_day[activity.date].append(activity)

        entries = []
        for day in days:
            day_activities = by_day[day]
            entry = DailyPoints(
                user_id=user.id,
                date=day,
                workout_minutes=sum(a.moving_minutes for a in day_activities),
                steps=0,
                points=compute_daily_points(user, day_activities, steps=0),
            )
            self.store.upsert_daily_points(entry)
            entries.append(entry)
        return entries
