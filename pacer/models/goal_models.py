"""PACER — Goal, Progress & Alert Models."""

from datetime import date as date_type, datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel
from sqlmodel import SQLModel, Field, UniqueConstraint


class GoalStatus(str, Enum):
    """Daily delivery classification of a goal."""

    ON_TRACK = "on_track"
    BEHIND = "behind"
    AHEAD = "ahead"
    AT_RISK = "at_risk"
    COMPLETED = "completed"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# ─────────────────────────────────────────────
# DATABASE MODELS
# ─────────────────────────────────────────────


class AdsetGoal(SQLModel, table=True):
    """Contracted lead volume for an ad set.

    Written by the configuration surface; read-only to the tracking engine.
    """

    __tablename__ = "adset_goals"

    id: Optional[int] = Field(default=None, primary_key=True)
    adset_id: str = Field(index=True, unique=True)
    adset_name: str = Field(default="")
    contract_start_date: date_type
    contract_end_date: date_type
    volume_contracted: int = Field(description="Leads contracted over the window")
    cpl_target: float = 0.0
    budget_total: float = 0.0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProgressTracking(SQLModel, table=True):
    """One evaluation per goal per day. Re-evaluating the day overwrites it."""

    __tablename__ = "adset_progress_tracking"
    __table_args__ = (
        UniqueConstraint("adset_id", "date", name="uq_progress_adset_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    adset_id: str = Field(index=True)
    date: date_type = Field(index=True)
    leads_captured: int = 0
    daily_target: float = 0.0
    status: str = Field(default=GoalStatus.ON_TRACK.value)
    deviation_pct: float = 0.0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProgressAlert(SQLModel, table=True):
    """Append-only alert raised on a status transition.

    `resolved` belongs to the external resolution workflow.
    """

    __tablename__ = "adset_progress_alerts"

    id: Optional[int] = Field(default=None, primary_key=True)
    adset_id: str = Field(index=True)
    date: date_type = Field(index=True)
    type: str = Field(description="Mirrors GoalStatus")
    severity: str
    message: str
    resolved: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS
# ─────────────────────────────────────────────


class GoalEvaluation(BaseModel):
    """Everything derived for one goal on one day."""

    adset_id: str
    date: date_type
    leads_captured: int
    total_days: int
    days_elapsed: int
    days_remaining: int
    daily_target: float
    ideal_progress: float
    deviation_pct: float
    projected_daily: float
    status: GoalStatus
