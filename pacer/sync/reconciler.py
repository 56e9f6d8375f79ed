"""PACER — Reconciliation Upserter.

Writes parsed rows into the store with insert-or-overwrite semantics on the
natural key, so re-running a sync over the same data changes nothing.
Each record is committed on its own: one bad row is counted in `errors`
and the rest of the batch still lands.
"""

from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from pacer.core.errors import ResyncAbortedError
from pacer.core.logging import get_logger
from pacer.core.metric_registry import ALL_METRICS
from pacer.models.entity_models import ENTITY_MODELS
from pacer.models.insight_models import InsightRecord, MetaLead
from pacer.models.meta_schemas import EntityRow, InsightRow, LeadRow
from pacer.models.sync_models import ReconcileResult

logger = get_logger("sync.reconciler")

INSERTED = "inserted"
UPDATED = "updated"
SKIPPED = "skipped"

INSIGHT_METRIC_FIELDS = tuple(ALL_METRICS)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Business-key timestamps are stored and compared as aware UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ReconciliationUpserter:
    """Idempotent writer for entities, insights and leads."""

    def __init__(self, session: Session):
        self.session = session

    def _apply(
        self, result: ReconcileResult, label: str, write: Callable[[], str]
    ) -> None:
        """Run one record write in its own transaction and count the outcome.

        An IntegrityError on the first attempt means another writer inserted
        the same key in between; the second attempt finds it and updates.
        """
        for attempt in (1, 2):
            try:
                outcome = write()
                self.session.commit()
            except IntegrityError as e:
                self.session.rollback()
                if attempt == 1:
                    continue
                logger.error(f"Constraint violation writing {label}: {e.orig}")
                result.errors += 1
                return
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"Failed to write {label}: {e}")
                result.errors += 1
                return
            setattr(result, outcome, getattr(result, outcome) + 1)
            return

    # ── Insights ──

    def _write_insight(self, row: InsightRow) -> str:
        existing = self.session.exec(
            select(InsightRecord).where(
                InsightRecord.entity_id == row.entity_id,
                InsightRecord.date == row.date,
            )
        ).first()

        if existing:
            for field in INSIGHT_METRIC_FIELDS:
                setattr(existing, field, getattr(row, field))
            existing.level = row.level
            # Never erase a parent reference the backfiller already resolved.
            existing.adset_id = row.adset_id or existing.adset_id
            existing.campaign_id = row.campaign_id or existing.campaign_id
            existing.updated_at = _now()
            self.session.add(existing)
            return UPDATED

        self.session.add(InsightRecord(**row.model_dump()))
        return INSERTED

    def reconcile(self, rows: Iterable[InsightRow]) -> ReconcileResult:
        """Upsert insight rows keyed on (entity_id, date). Last write wins."""
        result = ReconcileResult()
        for row in rows:
            self._apply(
                result,
                f"insight {row.entity_id}@{row.date}",
                lambda row=row: self._write_insight(row),
            )
        logger.info(
            f"Reconciled insights: {result.inserted} inserted, "
            f"{result.updated} updated, {result.errors} errors"
        )
        return result

    # ── Structure ──

    def _write_entity(self, row: EntityRow) -> str:
        model = ENTITY_MODELS[row.level]
        existing = self.session.get(model, row.id)
        values = {"name": row.name, "status": row.status}
        if row.level == "campaign":
            values["objective"] = row.objective
        else:
            if row.campaign_id:
                values["campaign_id"] = row.campaign_id
            if row.level == "ad" and row.adset_id:
                values["adset_id"] = row.adset_id

        if existing:
            for field, value in values.items():
                setattr(existing, field, value)
            existing.updated_at = _now()
            self.session.add(existing)
            return UPDATED

        self.session.add(model(id=row.id, **values))
        return INSERTED

    def upsert_entities(self, rows: Iterable[EntityRow]) -> ReconcileResult:
        """Upsert campaigns, ad sets and ads by their Meta id."""
        result = ReconcileResult()
        for row in rows:
            if row.level not in ENTITY_MODELS:
                result.skipped += 1
                continue
            self._apply(
                result,
                f"{row.level} {row.id}",
                lambda row=row: self._write_entity(row),
            )
        logger.info(
            f"Reconciled entities: {result.inserted} inserted, "
            f"{result.updated} updated, {result.errors} errors"
        )
        return result

    # ── Leads ──

    def find_lead(self, row: LeadRow) -> Optional[MetaLead]:
        """Existing lead by upstream id, or by (created_time, form_id, ad_id)."""
        business_key = (
            (MetaLead.created_time == as_utc(row.created_time))
            & (MetaLead.form_id == row.form_id)
            & (MetaLead.ad_id == row.ad_id)
        )
        condition = business_key
        if row.lead_id:
            condition = or_(MetaLead.lead_id == row.lead_id, business_key)
        return self.session.exec(select(MetaLead).where(condition)).first()

    def _write_lead(self, row: LeadRow) -> str:
        existing = self.find_lead(row)
        if existing:
            existing.lead_id = existing.lead_id or row.lead_id
            existing.form_data = row.form_data
            existing.name = row.name or existing.name
            existing.email = row.email or existing.email
            existing.phone = row.phone or existing.phone
            existing.adset_id = row.adset_id or existing.adset_id
            existing.campaign_id = row.campaign_id or existing.campaign_id
            existing.updated_at = _now()
            self.session.add(existing)
            return UPDATED

        data = row.model_dump()
        data["created_time"] = as_utc(row.created_time)
        self.session.add(MetaLead(**data))
        return INSERTED

    def reconcile_leads(self, rows: Iterable[LeadRow]) -> ReconcileResult:
        """Insert new leads; submissions already stored are only refreshed."""
        result = ReconcileResult()
        for row in rows:
            self._apply(
                result,
                f"lead {row.lead_id or row.created_time}",
                lambda row=row: self._write_lead(row),
            )
        logger.info(
            f"Reconciled leads: {result.inserted} new, "
            f"{result.updated} already known, {result.errors} errors"
        )
        return result

    # ── Full Resync ──

    def reset_insights(
        self,
        date_start: date,
        date_stop: date,
        levels: Sequence[str] | None = None,
    ) -> int:
        """Delete insight rows inside the window before a full resync.

        Raises ResyncAbortedError on failure; nothing written afterwards
        could be trusted.
        """
        try:
            query = select(InsightRecord).where(
                InsightRecord.date >= date_start,
                InsightRecord.date <= date_stop,
            )
            if levels:
                query = query.where(col(InsightRecord.level).in_(list(levels)))
            rows = self.session.exec(query).all()
            for row in rows:
                self.session.delete(row)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"💥 Insight reset failed for {date_start} → {date_stop}: {e}")
            raise ResyncAbortedError(f"Insight reset failed: {e}") from e

        logger.info(f"Reset {len(rows)} insight rows for {date_start} → {date_stop}")
        return len(rows)
