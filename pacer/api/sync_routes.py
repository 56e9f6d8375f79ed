"""PACER — Sync Trigger & Status Routes."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from pacer.database import get_session
from pacer.models.sync_models import SyncStatus
from pacer.sync.pipeline import get_sync_state, run_sync
from pacer.core.logging import get_logger

logger = get_logger("api.sync")

router = APIRouter(prefix="/sync", tags=["Sync"])

# A `syncing` row older than this is assumed to belong to a dead run.
STALE_SYNC_AFTER = timedelta(minutes=5)


# ── Request / Response Models ──


class TriggerSyncRequest(BaseModel):
    """Request body for POST /sync/trigger."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    full_resync: bool = False


class SyncStatusResponse(BaseModel):
    status: str
    last_sync_start: Optional[datetime] = None
    last_sync_end: Optional[datetime] = None
    error_message: Optional[str] = None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands datetimes back naive.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_sync_running(session: Session, now: Optional[datetime] = None) -> bool:
    state = get_sync_state(session)
    if state.status != SyncStatus.SYNCING.value:
        return False
    now = now or datetime.now(timezone.utc)
    return now - _as_utc(state.updated_at) < STALE_SYNC_AFTER


async def run_sync_in_background(request: TriggerSyncRequest) -> None:
    """Runs after the response is sent, with its own session."""
    session = next(get_session())
    try:
        await run_sync(
            session=session,
            date_start=request.start_date,
            date_stop=request.end_date,
            full_resync=request.full_resync,
        )
    except Exception as e:
        logger.error(f"Background sync failed: {e}")
    finally:
        session.close()


# ── Endpoints ──


@router.post("/trigger", status_code=202)
async def trigger_sync(
    background_tasks: BackgroundTasks,
    request: Optional[TriggerSyncRequest] = None,
    session: Session = Depends(get_session),
):
    """Start a sync and return immediately. Poll /sync/status for progress."""
    if is_sync_running(session):
        raise HTTPException(status_code=409, detail="A sync is already running")

    request = request or TriggerSyncRequest()
    background_tasks.add_task(run_sync_in_background, request)
    logger.info("Sync triggered via API")
    return {"status": "started", "full_resync": request.full_resync}


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(session: Session = Depends(get_session)):
    state = get_sync_state(session)
    return SyncStatusResponse(
        status=state.status,
        last_sync_start=_as_utc(state.last_sync_start),
        last_sync_end=_as_utc(state.last_sync_end),
        error_message=state.error_message,
    )
