"""PACER — Batch Insight Collector.

Fetches daily insights for many entities with one multi-entity request per
batch (`GET /?ids=a,b,c&fields=insights...`). A failed batch is recorded
and skipped; the remaining batches still run.
"""

import json
import time
from datetime import date
from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, field_validator

from pacer.config import Settings, settings
from pacer.connectors.meta.client import MetaClient, next_cursor
from pacer.connectors.meta.transformer import (
    DEFAULT_LEAD_ACTION_TYPES,
    aggregate_daily,
    parse_insight_row,
)
from pacer.core.errors import FetchFailure, TransientFetchFailure
from pacer.core.logging import get_logger
from pacer.models.meta_schemas import InsightRow
from pacer.models.sync_models import BatchFailure, CollectResult

logger = get_logger("meta.collector")

INSIGHT_FIELDS = "spend,impressions,clicks,reach,actions,adset_id,campaign_id,date_start"

# Meta rejects more than 50 ids in a single request.
MAX_IDS_PER_REQUEST = 50


class CollectorConfig(BaseModel):
    batch_size: int = MAX_IDS_PER_REQUEST
    insight_limit: int = 500
    lead_action_types: List[str] = list(DEFAULT_LEAD_ACTION_TYPES)

    @field_validator("batch_size")
    @classmethod
    def cap_batch_size(cls, value: int) -> int:
        return max(1, min(value, MAX_IDS_PER_REQUEST))

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "CollectorConfig":
        return cls(
            batch_size=s.batch_size,
            lead_action_types=s.lead_action_types,
        )


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    size = max(1, size)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def batch_failure(entity_ids: List[str], error: FetchFailure) -> BatchFailure:
    return BatchFailure(
        entity_ids=entity_ids,
        error_type=(
            "transient" if isinstance(error, TransientFetchFailure) else "permanent"
        ),
        message=str(error),
        status_code=error.status_code,
    )


class BatchInsightCollector:
    """Collects per-entity daily insights in bounded batches."""

    def __init__(self, client: MetaClient, config: CollectorConfig | None = None):
        self.client = client
        self.config = config or CollectorConfig()

    def _insights_field(self, date_start: date, date_stop: date) -> str:
        time_range = json.dumps(
            {"since": date_start.isoformat(), "until": date_stop.isoformat()},
            separators=(",", ":"),
        )
        return (
            f"insights.time_range({time_range})"
            f".time_increment(1)"
            f".limit({self.config.insight_limit})"
            f"{{{INSIGHT_FIELDS}}}"
        )

    async def collect(
        self,
        entity_ids: Sequence[str],
        date_start: date,
        date_stop: date,
        level: str = "adset",
    ) -> CollectResult:
        """Fetch insights for every id; failures are isolated per batch."""
        unique_ids = list(dict.fromkeys(i for i in entity_ids if i))
        result = CollectResult()
        batches = chunked(unique_ids, self.config.batch_size)
        started = time.monotonic()

        logger.info(
            f"Collecting {level} insights for {len(unique_ids)} entities "
            f"in {len(batches)} batches ({date_start} → {date_stop})"
        )

        for index, batch in enumerate(batches, start=1):
            try:
                await self._collect_batch(batch, date_start, date_stop, level, result)
            except FetchFailure as e:
                logger.error(
                    f"❌ Batch {index}/{len(batches)} failed: {e}",
                    extra={
                        "batch": index,
                        "endpoint": e.endpoint,
                        "status_code": e.status_code,
                    },
                )
                result.failures.append(batch_failure(batch, e))

        logger.info(
            f"Collected {len(result.records)} {level} insight rows, "
            f"{len(result.failures)} failures",
            extra={"duration_ms": int((time.monotonic() - started) * 1000)},
        )
        return result

    async def _collect_batch(
        self,
        batch: List[str],
        date_start: date,
        date_stop: date,
        level: str,
        result: CollectResult,
    ) -> None:
        params = {
            "ids": ",".join(batch),
            "fields": self._insights_field(date_start, date_stop),
        }
        payload = await self.client.request("", params)

        for entity_id in batch:
            try:
                raw_rows = await self._entity_rows(
                    entity_id, payload.get(entity_id), date_start, date_stop
                )
            except FetchFailure as e:
                # Only this entity's extra pages failed; the rest of the batch stands.
                logger.error(
                    f"❌ Insight pages for {entity_id} failed: {e}",
                    extra={"entity_id": entity_id, "status_code": e.status_code},
                )
                result.failures.append(batch_failure([entity_id], e))
                continue

            rows: List[InsightRow] = []
            for raw in raw_rows:
                row = parse_insight_row(
                    raw, level, entity_id, self.config.lead_action_types
                )
                if row is not None:
                    rows.append(row)
            result.per_entity_insights[entity_id] = aggregate_daily(rows)

    async def _entity_rows(
        self,
        entity_id: str,
        node: Any,
        date_start: date,
        date_stop: date,
    ) -> List[Dict[str, Any]]:
        """Raw insight rows for one entity, following its nested cursor."""
        if not isinstance(node, dict):
            return []
        insights = node.get("insights")
        if not isinstance(insights, dict):
            if insights is not None:
                logger.warning(
                    f"Ignoring malformed insights for {entity_id}",
                    extra={"entity_id": entity_id},
                )
            return []
        data = insights.get("data")
        rows = [raw for raw in data if isinstance(raw, dict)] if isinstance(data, list) else []

        cursor = next_cursor(insights)
        if cursor:
            params = {
                "fields": INSIGHT_FIELDS,
                "time_range": json.dumps(
                    {"since": date_start.isoformat(), "until": date_stop.isoformat()}
                ),
                "time_increment": 1,
                "limit": self.config.insight_limit,
                "after": cursor,
            }
            rows.extend(await self.client.paginate(f"{entity_id}/insights", params))
        return rows
