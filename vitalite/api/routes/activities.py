from typing import List, Optional
import pandas as pd
from fastapi import APIRouter, Depends
from vitalite.api.deps import require_session_user
from vitalite.core.config import settings
from vitalite.core.database import get_store
from vitalite.core.store import Store
from vitalite.models import ActivityRead, User, WeekSummary
from vitalite.services.dashboard import build_week_view, parse_week_param

router = APIRouter(tags=["activities"])


@router.get("/activities", response_model=List[ActivityRead])
def list_activities(user: User = Depends(require_session_user), store: Store = Depends(get_store)):
    return list(reversed(store.list_activities(user.id)))


@router.get("/activities/pandas")
def get_activities_pandas(user: User = Depends(require_session_user), store: Store = Depends(get_store)):
    activities = store.list_activities(user.id)
    if not activities:
        return []

    df = pd.DataFrame([a.model_dump() for a in activities])
    df = df.drop(columns=["id", "user_id"]).sort_values("date", ascending=False)
    df["date"] = pd.to_datetime(df["date"]).dt.strftime('%Y-%m-%d')

    # Handle NaN values for JSON compliance
    return df.astype(object).where(pd.notnull(df), None).to_dict(orient="records")


@router.get("/api/points/week", response_model=WeekSummary)
def get_week_points(weekStart: Optional[str] = None, user: User = Depends(require_session_user),
                    store: Store = Depends(get_store)):
    return build_week_view(store, user.id, parse_week_param(weekStart), cap=settings.weekly_cap).summary()
