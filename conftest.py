import time
from datetime import date, datetime, timezone
from urllib.parse import parse_qs
import httpx
import pytest
from sqlmodel import Session, SQLModel
from vitalite.core.database import SqlStore, build_engine
from vitalite.core.json_store import JsonStore
from vitalite.models import User
from vitalite.services.strava import StravaClient
from vitalite.services.sync import SyncTracker, WeekSyncService

# A past week well after the default start date (Monday)
WEEK = date(2026, 3, 2)


def raw_activity(strava_id, start="2026-03-03T07:00:00Z", local=None, moving_time=3900,
                 distance=10234.0, average_heartrate=120.0, calories=None, **extra):
    data = {
        "id": strava_id,
        "name": f"Run {strava_id}",
        "type": "Run",
        "sport_type": "Run",
        "moving_time": moving_time,
        "distance": distance,
        "start_date": start,
        "start_date_local": local or start,
        "average_heartrate": average_heartrate,
        "max_heartrate": 170.0,
    }
    if calories is not None:
        data["calories"] = calories
    data.update(extra)
    return data


def _epoch(iso: str) -> int:
    return int(datetime.fromisoformat(iso.replace("Z", "+00:00")).astimezone(timezone.utc).timestamp())


class FakeStravaAPI:
    """In-memory stand-in for the Strava token and activity endpoints."""

    def __init__(self):
        self.activities = []
        self.token_status = 200
        self.activities_status = 200
        # Raw bodies returned instead of well-formed JSON when set
        self.token_body = None
        self.activities_body = None
        self.requests = []
        self.athlete = {"id": 4242, "firstname": "Ada", "lastname": "Runner"}

    @property
    def token_requests(self):
        return [r for r in self.requests if r.url.path == "/oauth/token"]

    @property
    def activity_requests(self):
        return [r for r in self.requests if r.url.path == "/api/v3/athlete/activities"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="invalid grant")
            if self.token_body is not None:
                return httpx.Response(200, text=self.token_body)
            form = parse_qs(request.content.decode())
            suffix = "refreshed" if form.get("grant_type") == ["refresh_token"] else "exchanged"
            return httpx.Response(200, json={
                "access_token": f"access-{suffix}",
                "refresh_token": f"refresh-{suffix}",
                "expires_at": int(time.time()) + 6 * 3600,
                "athlete": self.athlete,
            })
        if request.url.path == "/api/v3/athlete/activities":
            if self.activities_status != 200:
                return httpx.Response(self.activities_status, text="Rate Limit Exceeded")
            if self.activities_body is not None:
                return httpx.Response(200, text=self.activities_body)
            params = request.url.params
            after = int(params.get("after", 0))
            before = int(params.get("before", 2 ** 40))
            page = int(params.get("page", 1))
            per_page = int(params.get("per_page", 200))
            matching = [a for a in self.activities if after <= _epoch(a["start_date"]) < before]
            return httpx.Response(200, json=matching[(page - 1) * per_page: page * per_page])
        return httpx.Response(404, json={"message": "Record Not Found"})

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)


@pytest.fixture
def sql_store():
    engine = build_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield SqlStore(session)


@pytest.fixture
def json_store(tmp_path):
    return JsonStore(str(tmp_path / "db.json"))


@pytest.fixture(params=["sql", "json"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def fake_strava():
    return FakeStravaAPI()


@pytest.fixture
def strava(store, fake_strava):
    return StravaClient(store, transport=fake_strava.transport)


@pytest.fixture
def service(store, strava):
    return WeekSyncService(store, strava)


@pytest.fixture
def tracker():
    return SyncTracker(cooldown_seconds=300)


@pytest.fixture
def make_user(store):
    def _make_user(athlete_id=4242, dob=None, expires_in=3600, name="Ada Runner"):
        return store.upsert_user(User(
            strava_athlete_id=athlete_id,
            name=name,
            access_token="access-old",
            refresh_token="refresh-old",
            token_expires_at=int(time.time()) + expires_in,
            dob=dob,
        ))
    return _make_user


def dob_for_age(age: int) -> date:
    today = date.today()
    return date(today.year - age, 1, 1)
