import asyncio
import time
from datetime import date, datetime, timedelta, timezone
import pytest
from vitalite.core.errors import ProviderAuthFailure, ProviderFetchFailed, UserNotFound
from vitalite.models import Activity
from vitalite.services.dashboard import build_week_view, parse_week_param
from vitalite.services.sync import SyncStatus, SyncTracker, should_auto_sync, utc_today, week_start_for
from conftest import WEEK, dob_for_age, raw_activity


def test_week_start_is_monday():
    assert week_start_for(date(2026, 3, 2)) == date(2026, 3, 2)
    assert week_start_for(date(2026, 3, 8)) == date(2026, 3, 2)
    assert week_start_for(date(2026, 3, 9)) == date(2026, 3, 9)


def test_token_expiring_within_margin_is_refreshed(store, strava, fake_strava, make_user):
    user = make_user(expires_in=30)

    token = asyncio.run(strava.get_valid_access_token(user.id))

    assert token == "access-refreshed"
    assert len(fake_strava.token_requests) == 1
    stored = store.get_user(user.id)
    assert stored.refresh_token == "refresh-refreshed"
    assert stored.token_expires_at > time.time() + 3600


def test_fresh_token_is_reused(strava, fake_strava, make_user):
    user = make_user(expires_in=3600)
    assert asyncio.run(strava.get_valid_access_token(user.id)) == "access-old"
    assert fake_strava.token_requests == []


def test_rejected_refresh_raises_auth_failure(strava, fake_strava, make_user):
    user = make_user(expires_in=-10)
    fake_strava.token_status = 401
    with pytest.raises(ProviderAuthFailure) as info:
        asyncio.run(strava.get_valid_access_token(user.id))
    assert info.value.status_code == 401


def test_sync_week_scores_days(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(30))
    fake_strava.activities = [
        raw_activity(1, start="2026-03-03T07:00:00Z", moving_time=3900, average_heartrate=120),
        raw_activity(2, start="2026-03-05T07:00:00Z", moving_time=2400, average_heartrate=None, calories=320),
        raw_activity(3, start="2026-03-12T07:00:00Z"),  # following week
    ]

    result = asyncio.run(service.sync_week(user.id, WEEK + timedelta(days=3)))

    assert result.week_start == WEEK
    assert (result.fetched_count, result.upserted_count) == (2, 2)
    points = {p.date: p.points for p in store.list_daily_points(user.id)}
    assert points == {date(2026, 3, 3): 8, date(2026, 3, 5): 5}
    assert store.get_synced_week(user.id, WEEK) is not None

    params = fake_strava.activity_requests[0].url.params
    assert int(params["after"]) == 1772409600  # 2026-03-02T00:00:00Z
    assert int(params["before"]) - int(params["after"]) == 7 * 24 * 3600


def test_sync_week_twice_is_idempotent(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(40))
    fake_strava.activities = [raw_activity(1), raw_activity(2, start="2026-03-04T18:00:00Z")]

    asyncio.run(service.sync_week(user.id, WEEK))
    activities = [a.model_dump(exclude={"id"}) for a in store.list_activities(user.id)]
    points = [p.model_dump(exclude={"id"}) for p in store.list_daily_points(user.id)]

    asyncio.run(service.sync_week(user.id, WEEK))

    assert [a.model_dump(exclude={"id"}) for a in store.list_activities(user.id)] == activities
    assert [p.model_dump(exclude={"id"}) for p in store.list_daily_points(user.id)] == points
    assert len(activities) == 2


def test_empty_week_is_still_marked_synced(store, service, make_user):
    user = make_user(dob=dob_for_age(30))
    result = asyncio.run(service.sync_week(user.id, WEEK))
    assert (result.fetched_count, result.upserted_count) == (0, 0)
    assert store.get_synced_week(user.id, WEEK) is not None
    assert store.list_daily_points(user.id) == []


def test_recompute_reads_every_stored_activity_for_the_day(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(30))
    # Stored earlier by another sync: 65 minutes at 60% maxHR, worth 8 points
    store.upsert_activity(Activity(user_id=user.id, strava_id=99, moving_minutes=65,
                                   average_heartrate=125.0, date=date(2026, 3, 3)))
    fake_strava.activities = [raw_activity(1, moving_time=600, average_heartrate=100)]

    asyncio.run(service.sync_week(user.id, WEEK))

    [day] = store.list_daily_points(user.id)
    assert day.points == 8
    assert day.workout_minutes == 75


def test_activities_before_start_date_are_ignored(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(30))
    early_week = date(2025, 11, 24)
    fake_strava.activities = [
        raw_activity(1, start="2025-11-25T07:00:00Z"),
        raw_activity(2, start="2025-11-30T23:30:00Z", local="2025-12-01T00:30:00Z"),
    ]
    result = asyncio.run(service.sync_week(user.id, early_week))
    assert result.upserted_count == 1
    assert [a.strava_id for a in store.list_activities(user.id)] == [2]


def test_unknown_user(service):
    with pytest.raises(UserNotFound):
        asyncio.run(service.sync_week(12345, WEEK))


def test_provider_failure_carries_status_and_leaves_week_unsynced(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(30))
    fake_strava.activities_status = 429
    with pytest.raises(ProviderFetchFailed) as info:
        asyncio.run(service.sync_week(user.id, WEEK))
    assert info.value.status_code == 429
    assert "Rate Limit" in info.value.body
    assert store.get_synced_week(user.id, WEEK) is None


def test_pagination_collects_every_page(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(30))
    service.strava.settings = service.strava.settings.model_copy(update={"activities_per_page": 2})
    fake_strava.activities = [
        raw_activity(i, start=f"2026-03-0{2 + i % 5}T0{i}:00:00Z") for i in range(1, 6)
    ]
    result = asyncio.run(service.sync_week(user.id, WEEK))
    assert result.fetched_count == 5
    assert len(fake_strava.activity_requests) == 3


def test_sync_since_start_marks_every_week(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(30))
    fake_strava.activities = [raw_activity(1), raw_activity(2, start="2026-01-06T07:00:00Z")]

    result = asyncio.run(service.sync_since_start(user.id, today=date(2026, 3, 4)))

    assert result.week_start == date(2025, 12, 1)
    assert result.upserted_count == 2
    week = date(2025, 12, 1)
    while week <= WEEK:
        assert store.get_synced_week(user.id, week) is not None
        week += timedelta(days=7)
    assert store.get_synced_week(user.id, WEEK + timedelta(days=7)) is None


@pytest.mark.parametrize("is_current,synced,suppressed,expected", [
    (True, True, False, True),
    (True, False, False, True),
    (False, False, False, True),
    (False, True, False, False),
    (True, True, True, False),
    (True, False, True, False),
    (False, False, True, False),
    (False, True, True, False),
])
def test_should_auto_sync(is_current, synced, suppressed, expected):
    assert should_auto_sync(is_current, synced, suppressed) is expected


def test_tracker_expires_after_cooldown(monkeypatch):
    tracker = SyncTracker(cooldown_seconds=60)
    now = [1000.0]
    monkeypatch.setattr("vitalite.services.sync.time.time", lambda: now[0])

    tracker.record(1, WEEK, SyncStatus.error)
    assert tracker.recent(1, WEEK) is SyncStatus.error
    assert tracker.recent(2, WEEK) is None
    now[0] += 61
    assert tracker.recent(1, WEEK) is None

    tracker.record(1, WEEK, SyncStatus.synced)
    tracker.forget_user(1)
    assert tracker.recent(1, WEEK) is None


def test_tracker_drops_expired_attempts(monkeypatch):
    tracker = SyncTracker(cooldown_seconds=60)
    now = [1000.0]
    monkeypatch.setattr("vitalite.services.sync.time.time", lambda: now[0])

    tracker.record(1, WEEK, SyncStatus.synced)
    tracker.record(2, WEEK, SyncStatus.error)
    now[0] += 61
    tracker.record(3, WEEK, SyncStatus.synced)

    assert list(tracker._attempts) == [(3, WEEK)]


def test_redated_activity_is_rescored_on_both_days(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(30))
    fake_strava.activities = [raw_activity(1, start="2026-03-03T07:00:00Z")]
    asyncio.run(service.sync_week(user.id, WEEK))

    # Start time corrected on Strava, the activity now falls on Thursday
    fake_strava.activities = [raw_activity(1, start="2026-03-05T07:00:00Z")]
    asyncio.run(service.sync_week(user.id, WEEK))

    points = {p.date: p.points for p in store.list_daily_points(user.id)}
    assert points == {date(2026, 3, 3): 0, date(2026, 3, 5): 8}
    assert [a.date for a in store.list_activities(user.id)] == [date(2026, 3, 5)]


def test_non_json_activity_listing_raises_fetch_failed(store, service, fake_strava, make_user):
    user = make_user(dob=dob_for_age(30))
    fake_strava.activities_body = "<html>maintenance</html>"
    with pytest.raises(ProviderFetchFailed) as info:
        asyncio.run(service.sync_week(user.id, WEEK))
    assert info.value.status_code == 200
    assert "maintenance" in info.value.body
    assert store.get_synced_week(user.id, WEEK) is None

    fake_strava.activities_body = '{"message": "not a list"}'
    with pytest.raises(ProviderFetchFailed):
        asyncio.run(service.sync_week(user.id, WEEK))


@pytest.mark.parametrize("body", ['{"refresh_token": "r"}', '{"access_token": "a", "expires_at": "soon"}', "oops"])
def test_malformed_token_payload_raises_auth_failure(store, strava, fake_strava, make_user, body):
    user = make_user(expires_in=-10)
    fake_strava.token_body = body
    with pytest.raises(ProviderAuthFailure):
        asyncio.run(strava.get_valid_access_token(user.id))
    assert store.get_user(user.id).access_token == "access-old"


class LateSundayUTC(datetime):
    """2026-03-08 23:30 UTC, already Monday in zones east of UTC."""

    @classmethod
    def now(cls, tz=None):
        return datetime(2026, 3, 8, 23, 30, tzinfo=timezone.utc).astimezone(tz)


def test_current_week_follows_the_utc_date(store, make_user, monkeypatch):
    monkeypatch.setattr("vitalite.services.sync.datetime", LateSundayUTC)
    user = make_user()

    assert utc_today() == date(2026, 3, 8)
    assert parse_week_param(None) == WEEK
    assert build_week_view(store, user.id, WEEK).is_current_week
    assert not build_week_view(store, user.id, WEEK + timedelta(days=7)).is_current_week
