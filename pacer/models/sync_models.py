"""PACER — Sync State & Run Result Models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel
from sqlmodel import SQLModel, Field

from pacer.models.meta_schemas import InsightRow

SYNC_STATE_ID = "meta_sync"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


# ─────────────────────────────────────────────
# DATABASE MODEL — polled by the dashboard
# ─────────────────────────────────────────────


class SyncState(SQLModel, table=True):
    """Status row written by the sync pipeline."""

    __tablename__ = "sync_state"

    id: str = Field(default=SYNC_STATE_ID, primary_key=True)
    status: str = Field(default=SyncStatus.IDLE.value)
    last_sync_start: Optional[datetime] = None
    last_sync_end: Optional[datetime] = None
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS — per-stage results
# ─────────────────────────────────────────────


class FetchPage(BaseModel):
    """One page from a paginated list endpoint."""

    records: List[Dict[str, Any]] = []
    next_cursor: Optional[str] = None


class BatchFailure(BaseModel):
    """A failed insight request; its entity ids were skipped."""

    entity_ids: List[str]
    error_type: str
    message: str
    status_code: int = 0


class CollectResult(BaseModel):
    per_entity_insights: Dict[str, List[InsightRow]] = {}
    failures: List[BatchFailure] = []

    @property
    def records(self) -> List[InsightRow]:
        return [row for rows in self.per_entity_insights.values() for row in rows]


class ReconcileResult(BaseModel):
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    skipped: int = 0

    def merge(self, other: "ReconcileResult") -> "ReconcileResult":
        return ReconcileResult(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            errors=self.errors + other.errors,
            skipped=self.skipped + other.skipped,
        )


class BackfillResult(BaseModel):
    table: str
    column: str
    updated: int = 0
    still_missing: int = 0
    passes: int = 0
    error: Optional[str] = None


class SyncSummary(BaseModel):
    """End-of-run summary for the sync pipeline."""

    date_start: str
    date_stop: str
    full_resync: bool = False
    entities: ReconcileResult = ReconcileResult()
    insights: ReconcileResult = ReconcileResult()
    leads: ReconcileResult = ReconcileResult()
    batch_failures: int = 0
    unit_failures: int = 0
    backfill: List[BackfillResult] = []
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return (
            self.batch_failures == 0
            and self.unit_failures == 0
            and self.insights.errors == 0
            and self.leads.errors == 0
        )


class TrackingSummary(BaseModel):
    """End-of-run summary for the goal tracking job."""

    date: str
    goals_evaluated: int = 0
    goals_failed: int = 0
    alerts_emitted: int = 0
    status_counts: Dict[str, int] = {}
