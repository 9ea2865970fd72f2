import datetime as dt
import json
import os
import tempfile
import threading
from typing import Any, Iterator, List, Optional
from .store import Store, in_range
from vitalite.models import Activity, DailyPoints, SyncedWeek, User

FILE_LOCK = threading.Lock()

EMPTY_DOCUMENT = {
    "users": [],
    "activities": [],
    "dailyPoints": [],
    "syncedWeeks": [],
}


def read_json(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json(path: str, data: Any, *, indent: int = 2) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    dir_name = os.path.dirname(path) or "."
    fd, tmp_path = tempfile.mkstemp(prefix="._tmp_", suffix=".json", dir=dir_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


class JsonStore(Store):
    """Store kept in a single local JSON document with four named collections.

    Each write reloads the document, replaces the one affected row and writes
    the file back atomically while holding FILE_LOCK, so writes to different
    rows from the same process never clobber each other.
    """

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> dict:
        data = read_json(self.path)
        # Older documents may lack newer collections
        return {name: list(data.get(name) or []) for name in EMPTY_DOCUMENT}

    def _rows(self, collection: str, model, **match) -> list:
        with FILE_LOCK:
            rows = self._load()[collection]
        return [
            model.model_validate(row) for row in rows
            if all(row.get(k) == v for k, v in match.items())
        ]

    def _upsert(self, collection: str, row: dict, key: tuple) -> bool:
        with FILE_LOCK:
            document = self._load()
            rows = document[collection]
            for i, existing in enumerate(rows):
                if all(existing.get(k) == row.get(k) for k in key):
                    rows[i] = {**row, "id": existing.get("id")}
                    inserted = False
                    break
            else:
                row["id"] = max((r.get("id") or 0 for r in rows), default=0) + 1
                rows.append(row)
                inserted = True
            write_json(self.path, document)
        return inserted

    def _delete_by_user(self, collection: str, user_id: int) -> None:
        with FILE_LOCK:
            document = self._load()
            document[collection] = [r for r in document[collection] if r.get("user_id") != user_id]
            write_json(self.path, document)

    # -------- Users --------

    def get_user(self, user_id: int) -> Optional[User]:
        found = self._rows("users", User, id=user_id)
        return found[0] if found else None

    def get_user_by_athlete(self, athlete_id: int) -> Optional[User]:
        found = self._rows("users", User, strava_athlete_id=athlete_id)
        return found[0] if found else None

    def list_users(self) -> List[User]:
        return sorted(self._rows("users", User), key=lambda u: u.id)

    def upsert_user(self, user: User) -> User:
        if user.id is not None:
            self._upsert("users", user.model_dump(mode="json"), ("id",))
            return self.get_user(user.id)
        self._upsert("users", user.model_dump(mode="json"), ("strava_athlete_id",))
        return self.get_user_by_athlete(user.strava_athlete_id)

    # -------- Activities --------

    def upsert_activity(self, activity: Activity) -> bool:
        return self._upsert("activities", activity.model_dump(mode="json"), ("user_id", "strava_id"))

    def list_activities(self, user_id: int, start: Optional[dt.date] = None,
                        end: Optional[dt.date] = None) -> List[Activity]:
        rows = [a for a in self._rows("activities", Activity, user_id=user_id) if in_range(a.date, start, end)]
        return sorted(rows, key=lambda a: (a.date, a.strava_id))

    def delete_activities(self, user_id: int) -> None:
        self._delete_by_user("activities", user_id)

    # -------- Daily points --------

    def upsert_daily_points(self, entry: DailyPoints) -> None:
        self._upsert("dailyPoints", entry.model_dump(mode="json"), ("user_id", "date"))

    def list_daily_points(self, user_id: int, start: Optional[dt.date] = None,
                          end: Optional[dt.date] = None) -> List[DailyPoints]:
        rows = [p for p in self._rows("dailyPoints", DailyPoints, user_id=user_id) if in_range(p.date, start, end)]
        return sorted(rows, key=lambda p: p.date)

    def delete_daily_points(self, user_id: int) -> None:
        self._delete_by_user("dailyPoints", user_id)

    # -------- Synced weeks --------

    def get_synced_week(self, user_id: int, week_start: dt.date) -> Optional[SyncedWeek]:
        found = self._rows("syncedWeeks", SyncedWeek, user_id=user_id, week_start=week_start.isoformat())
        return found[0] if found else None

    def mark_week_synced(self, user_id: int, week_start: dt.date,
                         synced_at: Optional[dt.datetime] = None) -> SyncedWeek:
        marker = SyncedWeek(user_id=user_id, week_start=week_start,
                            synced_at=synced_at or dt.datetime.utcnow())
        self._upsert("syncedWeeks", marker.model_dump(mode="json"), ("user_id", "week_start"))
        return self.get_synced_week(user_id, week_start)

    def delete_synced_weeks(self, user_id: int) -> None:
        self._delete_by_user("syncedWeeks", user_id)


class JsonStoreProvider:

    def __init__(self, path: str):
        self.path = path

    def create_tables(self):
        if not os.path.exists(self.path):
            with FILE_LOCK:
                write_json(self.path, EMPTY_DOCUMENT)

    def __call__(self) -> Iterator[Store]:
        yield JsonStore(self.path)
