"""PACER — Goal Progress & Alert Routes (read-only)."""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session, col, select

from pacer.database import get_session
from pacer.models.goal_models import (
    AdsetGoal,
    GoalStatus,
    ProgressAlert,
    ProgressTracking,
)

router = APIRouter(prefix="/goals", tags=["Goals"])


class ProgressResponse(BaseModel):
    adset_id: str
    current_status: str
    goal: Optional[AdsetGoal] = None
    last_tracking: Optional[ProgressTracking] = None
    history: List[ProgressTracking] = []


class AlertsResponse(BaseModel):
    adset_id: str
    alerts: List[ProgressAlert] = []


@router.get("/{adset_id}/progress", response_model=ProgressResponse)
async def goal_progress(adset_id: str, session: Session = Depends(get_session)):
    """Tracking history, oldest first. Current status is the latest row."""
    history = list(
        session.exec(
            select(ProgressTracking)
            .where(ProgressTracking.adset_id == adset_id)
            .order_by(col(ProgressTracking.date))
        ).all()
    )
    goal = session.exec(select(AdsetGoal).where(AdsetGoal.adset_id == adset_id)).first()
    last = history[-1] if history else None
    return ProgressResponse(
        adset_id=adset_id,
        current_status=last.status if last else GoalStatus.ON_TRACK.value,
        goal=goal,
        last_tracking=last,
        history=history,
    )


@router.get("/{adset_id}/alerts", response_model=AlertsResponse)
async def goal_alerts(adset_id: str, session: Session = Depends(get_session)):
    """Alert history, newest first."""
    alerts = session.exec(
        select(ProgressAlert)
        .where(ProgressAlert.adset_id == adset_id)
        .order_by(col(ProgressAlert.date).desc(), col(ProgressAlert.id).desc())
    ).all()
    return AlertsResponse(adset_id=adset_id, alerts=list(alerts))
