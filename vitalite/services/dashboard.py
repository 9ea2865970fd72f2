from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional
from vitalite.core.store import Store
from vitalite.models import Activity, DailyPointsRead, WeekSummary
from vitalite.services.scoring import WEEKLY_CAP, weekly_total
from vitalite.services.sync import utc_today, week_start_for

DAY_LABELS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


@dataclass
class DayView:
    date: date
    label: str
    points: int = 0
    workout_minutes: int = 0
    activities: List[Activity] = field(default_factory=list)


@dataclass
class WeekView:
    week_start: date
    week_end: date
    days: List[DayView]
    raw_total: int
    capped_total: int
    synced: bool
    is_current_week: bool

    @property
    def prev_week_start(self) -> date:
        return self.week_start - timedelta(days=7)

    @property
    def next_week_start(self) -> date:
        return self.week_start + timedelta(days=7)

    @property
    def has_points(self) -> bool:
        return any(d.points > 0 for d in self.days)

    @property
    def chart_max(self) -> int:
        return max([8] + [d.points for d in self.days])

    def summary(self) -> WeekSummary:
        return WeekSummary(
            week_start=self.week_start,
            week_end=self.week_end,
            days=[
                DailyPointsRead(date=d.date, workout_minutes=d.workout_minutes, steps=0, points=d.points)
                for d in self.days
            ],
            raw_total=self.raw_total,
            capped_total=self.capped_total,
            synced=self.synced,
        )


def parse_week_param(raw: Optional[str], today: Optional[date] = None) -> date:
    """Monday of the requested week, or of the current week when absent or unparsable."""
    today = today or utc_today()
    if raw:
        try:
            return week_start_for(date.fromisoformat(raw[:10]))
        except ValueError:
            pass
    return week_start_for(today)


def build_week_view(store: Store, user_id: int, week_start: date,
                    today: Optional[date] = None, cap: int = WEEKLY_CAP) -> WeekView:
    today = today or utc_today()
    week_start = week_start_for(week_start)
    week_end = week_start + timedelta(days=6)

    days = [
        DayView(date=week_start + timedelta(days=i), label=DAY_LABELS[i])
        for i in range(7)
    ]
    by_date = {d.date: d for d in days}

    for entry in store.list_daily_points(user_id, week_start, week_end):
        day = by_date.get(entry.date)
        if day:
            day.points += entry.points
            day.workout_minutes += entry.workout_minutes

    for activity in store.list_activities(user_id, week_start, week_end):
        by_date[activity.date].activities.append(activity)

    raw, capped = weekly_total((d.points for d in days), cap)
    return WeekView(
        week_start=week_start,
        week_end=week_end,
        days=days,
        raw_total=raw,
        capped_total=capped,
        synced=store.get_synced_week(user_id, week_start) is not None,
        is_current_week=week_start == week_start_for(today),
    )
