import logging
import math
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional
from vitalite.models import Activity
from vitalite.services.scoring import as_number

logger = logging.getLogger(__name__)


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def activity_date(raw: dict) -> Optional[date]:
    """Local calendar date of an activity, falling back to the UTC start date."""
    local = raw.get("start_date_local")
    if isinstance(local, str) and len(local) >= 10:
        try:
            return date.fromisoformat(local[:10])
        except ValueError:
            pass

    start = raw.get("start_date")
    if isinstance(start, str) and start:
        try:
            parsed = datetime.fromisoformat(start.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc).date()
    return None


def normalize_activity(raw: dict, user_id: int) -> Optional[Activity]:
    """Map one Strava summary activity to an Activity, or None if it is unusable."""
    strava_id = raw.get("id") if isinstance(raw, dict) else None
    if not isinstance(strava_id, int) or isinstance(strava_id, bool):
        return None

    day = activity_date(raw)
    moving_time = as_number(raw.get("moving_time"))
    if day is None or moving_time is None:
        return None

    distance = as_number(raw.get("distance"))
    calories = as_number(raw.get("calories"))
    if calories is None:
        kilojoules = as_number(raw.get("kilojoules"))
        if kilojoules is not None:
            calories = round_half_up(kilojoules)

    local = raw.get("start_date_local")
    return Activity(
        user_id=user_id,
        strava_id=strava_id,
        name=raw.get("name") or "",
        type=raw.get("type") or raw.get("sport_type") or "",
        moving_minutes=int(round_half_up(moving_time / 60)),
        distance_km=round_half_up(distance / 1000, 1) if distance else 0.0,
        start_date_local=local if isinstance(local, str) else None,
        date=day,
        average_heartrate=as_number(raw.get("average_heartrate")),
        max_heartrate=as_number(raw.get("max_heartrate")),
        calories=calories,
    )


def normalize_activities(raws: Iterable[dict], user_id: int) -> List[Activity]:
    activities = []
    for raw in raws:
        activity = normalize_activity(raw, user_id)
        if activity is None:
            logger.warning("Skipping malformed activity for user %s: id=%s",
                           user_id, raw.get("id") if isinstance(raw, dict) else None)
            continue
        activities.append(activity)
    return activities
