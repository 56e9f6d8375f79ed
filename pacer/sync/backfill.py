"""PACER — Relationship Backfiller.

Repairs parent references that were null at ingestion time by copying them
from an already-resolved related row, e.g. `ads.campaign_id` from the
campaign recorded on the ad's ad set. Works in keyset-paged chunks and
repeats until a pass changes nothing or the pass ceiling is reached.
"""

from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import Table, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel

from pacer.config import Settings, settings
from pacer.core.logging import get_logger
from pacer.models.sync_models import BackfillResult

logger = get_logger("sync.backfill")


class BackfillConfig(BaseModel):
    page_size: int = 100
    max_passes: int = 5

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "BackfillConfig":
        return cls(page_size=s.backfill_page_size, max_passes=s.backfill_max_passes)


class Relation(BaseModel):
    """`table.column` is filled from `resolver_table.resolver_column`,
    matching `table.via` against `resolver_table.resolver_key`."""

    table: str
    column: str
    resolver_table: str
    via: str
    resolver_key: str = "id"
    resolver_column: Optional[str] = None
    where: Dict[str, Any] = {}
    resolver_where: Dict[str, Any] = {}

    @property
    def source_column(self) -> str:
        return self.resolver_column or self.column

    @property
    def label(self) -> str:
        return f"{self.table}.{self.column} ← {self.resolver_table}.{self.source_column}"


# Parents first, so most references resolve in a single pass.
DEFAULT_RELATIONS: List[Relation] = [
    Relation(
        table="adsets",
        column="campaign_id",
        via="id",
        resolver_table="insight_records",
        resolver_key="entity_id",
        resolver_where={"level": "adset"},
    ),
    Relation(table="ads", column="campaign_id", via="adset_id", resolver_table="adsets"),
    Relation(
        table="insight_records",
        column="adset_id",
        via="entity_id",
        resolver_table="ads",
        where={"level": "ad"},
    ),
    Relation(
        table="insight_records",
        column="campaign_id",
        via="adset_id",
        resolver_table="adsets",
    ),
    Relation(table="meta_leads", column="adset_id", via="ad_id", resolver_table="ads"),
    Relation(
        table="meta_leads",
        column="campaign_id",
        via="adset_id",
        resolver_table="adsets",
    ),
]


def _table(name: str) -> Table:
    try:
        return SQLModel.metadata.tables[name]
    except KeyError:
        raise ValueError(f"Unknown table: {name}") from None


def _filtered(query, table: Table, conditions: Dict[str, Any]):
    for column, value in conditions.items():
        query = query.where(table.c[column] == value)
    return query


class RelationshipBackfiller:
    def __init__(self, session: Session, config: BackfillConfig | None = None):
        self.session = session
        self.config = config or BackfillConfig()

    def _run_pass(self, relation: Relation) -> int:
        """One keyset-paged sweep over rows still missing the column."""
        table = _table(relation.table)
        resolver = _table(relation.resolver_table)
        pk = list(table.primary_key.columns)[0]
        missing = table.c[relation.column]
        via = table.c[relation.via]
        key = resolver.c[relation.resolver_key]
        source = resolver.c[relation.source_column]

        updated = 0
        last_key = None
        while True:
            query = select(pk, via).where(missing.is_(None), via.is_not(None))
            query = _filtered(query, table, relation.where)
            if last_key is not None:
                query = query.where(pk > last_key)
            page = self.session.execute(
                query.order_by(pk).limit(self.config.page_size)
            ).all()
            if not page:
                break
            last_key = page[-1][0]

            via_values = {row[1] for row in page}
            lookup = select(key, source).where(key.in_(via_values), source.is_not(None))
            lookup = _filtered(lookup, resolver, relation.resolver_where)
            resolved: Dict[Any, Any] = {}
            for k, v in self.session.execute(lookup).all():
                resolved.setdefault(k, v)

            by_value: Dict[Any, List[Any]] = {}
            for pk_value, via_value in page:
                if via_value in resolved:
                    by_value.setdefault(resolved[via_value], []).append(pk_value)

            for value, ids in by_value.items():
                self.session.execute(
                    update(table)
                    .where(pk.in_(ids))
                    .values({relation.column: value})
                )
                updated += len(ids)
            self.session.commit()

        return updated

    def _still_missing(self, relation: Relation) -> int:
        table = _table(relation.table)
        query = select(func.count()).select_from(table).where(
            table.c[relation.column].is_(None)
        )
        query = _filtered(query, table, relation.where)
        return self.session.execute(query).scalar_one()

    def backfill_relation(self, relation: Relation) -> BackfillResult:
        """Repeat passes over one relation until it converges."""
        result = BackfillResult(table=relation.table, column=relation.column)
        try:
            for _ in range(self.config.max_passes):
                result.passes += 1
                changed = self._run_pass(relation)
                result.updated += changed
                if changed == 0:
                    break
            result.still_missing = self._still_missing(relation)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"❌ Backfill of {relation.label} failed: {e}")
            result.error = str(e)
            return result

        logger.info(
            f"Backfilled {relation.label}: {result.updated} updated, "
            f"{result.still_missing} still missing"
        )
        return result

    def backfill(
        self,
        table: str,
        missing_fk_column: str,
        resolver_table: str,
        via: str,
        resolver_key: str = "id",
        resolver_column: str | None = None,
    ) -> BackfillResult:
        """Fill `table.missing_fk_column` from `resolver_table`, joined on `via`."""
        return self.backfill_relation(
            Relation(
                table=table,
                column=missing_fk_column,
                resolver_table=resolver_table,
                via=via,
                resolver_key=resolver_key,
                resolver_column=resolver_column,
            )
        )

    def run_all(
        self, relations: Sequence[Relation] | None = None
    ) -> List[BackfillResult]:
        """Sweep every relation in order, repeating the whole round while
        any relation still makes progress (a child can only resolve once
        its parent has)."""
        relations = list(relations or DEFAULT_RELATIONS)
        results = [BackfillResult(table=r.table, column=r.column) for r in relations]

        for pass_no in range(1, self.config.max_passes + 1):
            round_updates = 0
            for relation, result in zip(relations, results):
                if result.error:
                    continue
                try:
                    changed = self._run_pass(relation)
                except SQLAlchemyError as e:
                    self.session.rollback()
                    logger.error(f"❌ Backfill of {relation.label} failed: {e}")
                    result.error = str(e)
                    continue
                result.passes = pass_no
                result.updated += changed
                round_updates += changed
            if round_updates == 0:
                break
        else:
            logger.warning(
                f"Backfill stopped at the pass ceiling ({self.config.max_passes})"
            )

        for relation, result in zip(relations, results):
            if not result.error:
                result.still_missing = self._still_missing(relation)
            if result.still_missing:
                logger.warning(
                    f"{result.still_missing} rows still missing {relation.label}"
                )

        logger.info(
            f"Backfill finished: {sum(r.updated for r in results)} references repaired"
        )
        return results
