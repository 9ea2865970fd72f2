import datetime as dt
from typing import Iterator, List, Optional
from fastapi import Request
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine, Session, SQLModel, select
from .config import Settings, StorageBackend
from .json_store import JsonStoreProvider
from .store import Store
from vitalite.models import Activity, DailyPoints, SyncedWeek, User


def _copy_fields(source: SQLModel, target: SQLModel):
    for name in type(source).model_fields:
        if name != "id":
            setattr(target, name, getattr(source, name))


class SqlStore(Store):
    """Store backed by SQLModel tables. Every write commits its own row."""

    def __init__(self, session: Session):
        self.session = session

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_by_athlete(self, athlete_id: int) -> Optional[User]:
        statement = select(User).where(User.strava_athlete_id == athlete_id)
        return self.session.exec(statement).first()

    def list_users(self) -> List[User]:
        return list(self.session.exec(select(User).order_by(User.id)).all())

    def upsert_user(self, user: User) -> User:
        if user.id is not None:
            existing = self.session.get(User, user.id)
            if existing is not None and existing is not user:
                _copy_fields(user, existing)
                user = existing
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def upsert_activity(self, activity: Activity) -> bool:
        statement = select(Activity).where(
            Activity.user_id == activity.user_id,
            Activity.strava_id == activity.strava_id
        )
        existing = self.session.exec(statement).first()
        if existing:
            _copy_fields(activity, existing)
            self.session.add(existing)
        else:
            self.session.add(activity)
        self.session.commit()
        return existing is None

    def list_activities(self, user_id: int, start: Optional[dt.date] = None,
                        end: Optional[dt.date] = None) -> List[Activity]:
        statement = select(Activity).where(Activity.user_id == user_id)
        if start:
            statement = statement.where(Activity.date >= start)
        if end:
            statement = statement.where(Activity.date <= end)
        statement = statement.order_by(Activity.date, Activity.strava_id)
        return list(self.session.exec(statement).all())

    def delete_activities(self, user_id: int) -> None:
        self._delete_rows(select(Activity).where(Activity.user_id == user_id))

    def upsert_daily_points(self, entry: DailyPoints) -> None:
        statement = select(DailyPoints).where(
            DailyPoints.user_id == entry.user_id,
            DailyPoints.date == entry.date
        )
        existing = self.session.exec(statement).first()
        if existing:
            _copy_fields(entry, existing)
            entry = existing
        self.session.add(entry)
        self.session.commit()

    def list_daily_points(self, user_id: int, start: Optional[dt.date] = None,
                          end: Optional[dt.date] = None) -> List[DailyPoints]:
        statement = select(DailyPoints).where(DailyPoints.user_id == user_id)
        if start:
            statement = statement.where(DailyPoints.date >= start)
        if end:
            statement = statement.where(DailyPoints.date <= end)
        return list(self.session.exec(statement.order_by(DailyPoints.date)).all())

    def delete_daily_points(self, user_id: int) -> None:
        self._delete_rows(select(DailyPoints).where(DailyPoints.user_id == user_id))

    def get_synced_week(self, user_id: int, week_start: dt.date) -> Optional[SyncedWeek]:
        statement = select(SyncedWeek).where(
            SyncedWeek.user_id == user_id,
            SyncedWeek.week_start == week_start
        )
        return self.session.exec(statement).first()

    def mark_week_synced(self, user_id: int, week_start: dt.date,
                         synced_at: Optional[dt.datetime] = None) -> SyncedWeek:
        marker = self.get_synced_week(user_id, week_start)
        if not marker:
            marker = SyncedWeek(user_id=user_id, week_start=week_start)
        marker.synced_at = synced_at or dt.datetime.utcnow()
        self.session.add(marker)
        self.session.commit()
        self.session.refresh(marker)
        return marker

    def delete_synced_weeks(self, user_id: int) -> None:
        self._delete_rows(select(SyncedWeek).where(SyncedWeek.user_id == user_id))

    def _delete_rows(self, statement):
        for row in self.session.exec(statement).all():
            self.session.delete(row)
        self.session.commit()


def build_engine(database_url: str, echo: bool = False):
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo)


class SqlStoreProvider:

    def __init__(self, engine):
        self.engine = engine

    def create_tables(self):
        SQLModel.metadata.create_all(self.engine)

    def __call__(self) -> Iterator[Store]:
        with Session(self.engine) as session:
            yield SqlStore(session)


def make_store_provider(settings: Settings):
    if settings.storage_backend == StorageBackend.json:
        return JsonStoreProvider(settings.json_store_path)
    return SqlStoreProvider(build_engine(settings.database_url, echo=settings.debug))


def get_store(request: Request) -> Iterator[Store]:
    yield from request.app.state.store_provider()
