import math
from datetime import date
from typing import Iterable, Optional, Tuple

WEEKLY_CAP = 40
DAILY_CAP = 8


def as_number(value) -> Optional[float]:
    """Coerce provider/user numbers. Anything unusable is treated as absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def calculate_age(dob: date, today: Optional[date] = None) -> int:
    """Whole years between dob and today."""
    today = today or date.today()
    age = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age


def calculate_max_heart_rate(age: int) -> int:
    return 220 - age


def steps_points(steps) -> int:
    steps = as_number(steps) or 0
    if steps >= 12_500:
        return 8
    if steps >= 10_000:
        return 5
    if steps >= 7_000:
        return 3
    return 0


def heart_rate_points(minutes, avg_hr, max_hr: float) -> int:
    minutes = as_number(minutes)
    avg_hr = as_number(avg_hr)
    if minutes is None or avg_hr is None:
        return 0
    hr60 = max_hr * 0.6
    hr70 = max_hr * 0.7
    if (minutes >= 60 and avg_hr >= hr60) or (minutes >= 30 and avg_hr >= hr70):
        return 8
    if minutes >= 30 and avg_hr >= hr60:
        return 5
    return 0


def calorie_points(minutes, calories) -> int:
    minutes = as_number(minutes)
    calories = as_number(calories)
    if minutes is None or calories is None or minutes <= 0:
        return 0
    kcal_per_hour = calories / minutes * 60
    if calories >= 300 and kcal_per_hour >= 600:
        return 8
    if minutes >= 60 and calories >= 300 and kcal_per_hour >= 300:
        return 8
    if minutes >= 30 and calories >= 150 and kcal_per_hour >= 300:
        return 5
    return 0


def compute_daily_points(user, activities: Iterable, steps=0, today: Optional[date] = None) -> int:
    """
    Points for one user on one day, the best of:
    - Steps: 3 pts @ 7k, 5 pts @ 10k, 8 pts @ 12.5k
    - Heart rate: 5 pts for 30+ min @ 60% maxHR, 8 pts for 60+ min @ 60% maxHR or 30+ min @ 70% maxHR
    - Calories: 5 pts for 30+ min, 150+ kcal @ 300+ kcal/hr,
      8 pts for 300+ kcal @ 600+ kcal/hr or 60+ min, 300+ kcal @ 300+ kcal/hr
    Heart rate and calorie rules need the user's date of birth. Tiers do not add up.
    """
    best = steps_points(steps)

    dob = getattr(user, "dob", None)
    if not dob:
        return best

    max_hr = calculate_max_heart_rate(calculate_age(dob, today))
    for activity in activities:
        minutes = getattr(activity, "moving_minutes", None)
        best = max(
            best,
            heart_rate_points(minutes, getattr(activity, "average_heartrate", None), max_hr),
            calorie_points(minutes, getattr(activity, "calories", None)),
        )

    return min(DAILY_CAP, best)


def weekly_total(daily_points: Iterable[int], cap: int = WEEKLY_CAP) -> Tuple[int, int]:
    """Returns (raw, capped) weekly totals."""
    raw = sum(daily_points)
    return raw, min(cap, raw)
