"""PACER — Sync Pipeline Orchestrator.

Runs one sync end to end:
  structure → (reset) → insights per level → leads → backfill

Stages run strictly in that order; the backfiller relies on the parent
tables the earlier stages populate. Per-unit failures are counted in the
SyncSummary. Only a failed resync reset (or a broken store) aborts.
"""

import time
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from sqlmodel import Session, select

from pacer.config import Settings, settings
from pacer.connectors.meta.client import FetcherConfig, MetaClient
from pacer.connectors.meta.collector import BatchInsightCollector, CollectorConfig
from pacer.connectors.meta.endpoints import MetaEndpoints
from pacer.connectors.meta.transformer import parse_entity, parse_lead
from pacer.core.errors import FetchFailure
from pacer.core.logging import get_logger
from pacer.goals.engine import GoalPolicy, GoalProgressEngine
from pacer.models.entity_models import ENTITY_MODELS
from pacer.models.meta_schemas import EntityRow, LeadRow
from pacer.models.sync_models import (
    SYNC_STATE_ID,
    BackfillResult,
    SyncState,
    SyncStatus,
    SyncSummary,
    TrackingSummary,
)
from pacer.sync.backfill import BackfillConfig, RelationshipBackfiller
from pacer.sync.reconciler import ReconciliationUpserter

logger = get_logger("sync.pipeline")

INSIGHT_LEVELS = ("campaign", "adset", "ad")
ACTIVE_STATUS = "ACTIVE"


def resolve_window(
    date_start: Optional[date] = None,
    date_stop: Optional[date] = None,
    days: int = 30,
) -> tuple[date, date]:
    """Default window: the last `days` days up to today (UTC)."""
    today = datetime.now(timezone.utc).date()
    date_stop = date_stop or today
    date_start = date_start or (date_stop - timedelta(days=days))
    if date_start > date_stop:
        raise ValueError(f"date_start {date_start} is after date_stop {date_stop}")
    return date_start, date_stop


# ── Sync status row ──


def get_sync_state(session: Session) -> SyncState:
    state = session.get(SyncState, SYNC_STATE_ID)
    if state is None:
        state = SyncState(id=SYNC_STATE_ID)
    return state


def set_sync_state(
    session: Session, status: SyncStatus, error_message: Optional[str] = None
) -> SyncState:
    state = get_sync_state(session)
    now = datetime.now(timezone.utc)
    state.status = status.value
    state.updated_at = now
    if status == SyncStatus.SYNCING:
        state.last_sync_start = now
        state.error_message = None
    else:
        state.last_sync_end = now
        state.error_message = error_message
    session.add(state)
    session.commit()
    session.refresh(state)
    return state


# ── Stages ──


async def sync_structure(
    endpoints: MetaEndpoints, reconciler: ReconciliationUpserter, summary: SyncSummary
) -> None:
    """Campaigns, then ad sets, then ads."""
    fetchers = {
        "campaign": endpoints.fetch_campaigns,
        "adset": endpoints.fetch_adsets,
        "ad": endpoints.fetch_ads,
    }
    for level, fetch in fetchers.items():
        try:
            raw = await fetch()
        except FetchFailure as e:
            summary.unit_failures += 1
            logger.error(f"❌ Failed to fetch {level} structure: {e}")
            continue
        rows: List[EntityRow] = []
        for item in raw:
            row = parse_entity(item, level)
            if row is not None:
                rows.append(row)
        summary.entities = summary.entities.merge(reconciler.upsert_entities(rows))


def entity_ids(session: Session, level: str, active_only: bool = True) -> List[str]:
    model = ENTITY_MODELS[level]
    query = select(model.id)
    if active_only:
        query = query.where(model.status == ACTIVE_STATUS)
    return list(session.exec(query.order_by(model.id)).all())


async def sync_insights(
    session: Session,
    collector: BatchInsightCollector,
    reconciler: ReconciliationUpserter,
    summary: SyncSummary,
    date_start: date,
    date_stop: date,
    active_only: bool = True,
) -> None:
    for level in INSIGHT_LEVELS:
        ids = entity_ids(session, level, active_only)
        if not ids:
            logger.info(f"No {level} entities to collect insights for")
            continue
        collected = await collector.collect(ids, date_start, date_stop, level=level)
        summary.batch_failures += len(collected.failures)
        summary.insights = summary.insights.merge(
            reconciler.reconcile(collected.records)
        )


async def sync_leads(
    session: Session,
    endpoints: MetaEndpoints,
    reconciler: ReconciliationUpserter,
    summary: SyncSummary,
    days: int,
    active_only: bool = True,
) -> None:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    for campaign_id in entity_ids(session, "campaign", active_only):
        try:
            raw = await endpoints.fetch_leads(campaign_id, since=since)
        except FetchFailure as e:
            summary.unit_failures += 1
            logger.error(
                f"❌ Failed to fetch leads for campaign {campaign_id}: {e}",
                extra={"entity_id": campaign_id},
            )
            continue
        rows: List[LeadRow] = []
        for item in raw:
            row = parse_lead(item)
            if row is None:
                continue
            # Leads carry their campaign implicitly through the edge.
            row.campaign_id = row.campaign_id or campaign_id
            rows.append(row)
        summary.leads = summary.leads.merge(reconciler.reconcile_leads(rows))


def run_backfill(
    session: Session, config: BackfillConfig | None = None
) -> List[BackfillResult]:
    return RelationshipBackfiller(session, config).run_all()


# ── Entry points ──


async def run_sync(
    session: Session,
    date_start: Optional[date] = None,
    date_stop: Optional[date] = None,
    full_resync: bool = False,
    client: Optional[MetaClient] = None,
    config: Settings = settings,
) -> SyncSummary:
    """Run the full sync. Raises only on run-fatal errors.

    The sync_state row is set to `syncing` on entry and to `idle` or
    `error` on exit.
    """
    date_start, date_stop = resolve_window(date_start, date_stop, config.insight_days)
    started = time.monotonic()
    summary = SyncSummary(
        date_start=date_start.isoformat(),
        date_stop=date_stop.isoformat(),
        full_resync=full_resync,
    )

    logger.info(
        f"🔄 Sync starting for {date_start} → {date_stop}"
        f"{' (full resync)' if full_resync else ''}"
    )
    set_sync_state(session, SyncStatus.SYNCING)

    owns_client = client is None
    client = client or MetaClient(FetcherConfig.from_settings(config))
    endpoints = MetaEndpoints(client, config.account_id)
    collector = BatchInsightCollector(client, CollectorConfig.from_settings(config))
    reconciler = ReconciliationUpserter(session)

    try:
        # ── Step 1: Structure ──
        await sync_structure(endpoints, reconciler, summary)

        # ── Step 2: Reset (full resync only) ──
        if full_resync:
            reconciler.reset_insights(date_start, date_stop)

        # ── Step 3: Insights ──
        await sync_insights(
            session,
            collector,
            reconciler,
            summary,
            date_start,
            date_stop,
            config.sync_active_only,
        )

        # ── Step 4: Leads ──
        await sync_leads(
            session,
            endpoints,
            reconciler,
            summary,
            config.leads_days,
            config.sync_active_only,
        )

        # ── Step 5: Backfill ──
        summary.backfill = run_backfill(session, BackfillConfig.from_settings(config))
    except Exception as e:
        session.rollback()
        logger.error(f"💥 Sync aborted: {e}")
        set_sync_state(session, SyncStatus.ERROR, str(e))
        raise
    finally:
        if owns_client:
            await client.close()

    summary.duration_ms = int((time.monotonic() - started) * 1000)
    error_message = None
    if not summary.ok:
        error_message = (
            f"{summary.batch_failures} failed batches, "
            f"{summary.unit_failures} failed units, "
            f"{summary.insights.errors + summary.leads.errors} write errors"
        )
    set_sync_state(session, SyncStatus.IDLE, error_message)

    logger.info(
        f"✅ Sync complete: {summary.entities.inserted + summary.entities.updated} entities, "
        f"{summary.insights.inserted} new / {summary.insights.updated} updated insights, "
        f"{summary.leads.inserted} new leads"
        + (f" ({error_message})" if error_message else ""),
        extra={"duration_ms": summary.duration_ms},
    )
    return summary


def run_goal_tracking(
    session: Session,
    today: Optional[date] = None,
    policy: GoalPolicy | None = None,
) -> TrackingSummary:
    """Evaluate all active goals for `today`."""
    engine = GoalProgressEngine(session, policy or GoalPolicy.from_settings())
    return engine.run(today)
