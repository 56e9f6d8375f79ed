"""PACER — Meta Payload → Typed Row Transformer.

Total parsing of upstream JSON: missing or malformed numeric fields become
0, never NaN, and nothing in here raises on a bad value.
"""

import json
import math
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pacer.core.logging import get_logger
from pacer.core.metric_registry import RAW_METRICS, compute_derived
from pacer.models.meta_schemas import EntityRow, InsightRow, LeadRow

logger = get_logger("meta.transformer")

DEFAULT_LEAD_ACTION_TYPES = ["onsite_conversion.lead_grouped", "lead"]

# Lead-form field names vary per form and language.
NAME_FIELDS = ("full_name", "name", "nome", "nome_completo", "first_name")
EMAIL_FIELDS = ("email", "e_mail", "e-mail", "work_email")
PHONE_FIELDS = ("phone_number", "phone", "telefone", "celular", "whatsapp")


def safe_float(value: Any) -> float:
    """Safely convert a value to a finite float."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result


def safe_int(value: Any) -> int:
    """Integer counts arrive as strings ("1234"); floats are truncated."""
    return int(safe_float(value))


def _text(value: Any) -> str:
    return str(value) if isinstance(value, (str, int, float)) else ""


def _ref(value: Any) -> Optional[str]:
    """Upstream id reference, or None when absent or malformed."""
    return _text(value) or None


def parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse Meta's `2024-05-01T12:30:00+0000` into an aware UTC datetime.

    Values without an offset are taken to be UTC.
    """
    if not value:
        return None
    text = str(value)
    for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z"):
        try:
            parsed = datetime.strptime(text, fmt)
            break
        except ValueError:
            continue
    else:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def extract_leads(
    actions: Any, lead_action_types: Iterable[str] = DEFAULT_LEAD_ACTION_TYPES
) -> int:
    """Lead count from an `actions` list, using the first matching type.

    Meta reports the same leads under several action types, so summing
    across them would double count.
    """
    if not isinstance(actions, list):
        return 0
    by_type: Dict[str, Any] = {}
    for action in actions:
        if isinstance(action, dict) and action.get("action_type"):
            by_type[action["action_type"]] = action.get("value", 0)
    for action_type in lead_action_types:
        if action_type in by_type:
            return safe_int(by_type[action_type])
    return 0


# ── Structure ──


def parse_entity(raw: Any, level: str) -> Optional[EntityRow]:
    """Campaign / adset / ad listing row. Returns None without an id."""
    if not isinstance(raw, dict):
        logger.warning(f"Skipping malformed {level} row")
        return None
    entity_id = _ref(raw.get("id"))
    if not entity_id:
        logger.warning(f"Skipping {level} row without id")
        return None
    return EntityRow(
        level=level,
        id=entity_id,
        name=_text(raw.get("name")),
        status=_text(raw.get("effective_status") or raw.get("status")),
        objective=_text(raw.get("objective")),
        campaign_id=_ref(raw.get("campaign_id")),
        adset_id=_ref(raw.get("adset_id")),
    )


# ── Insights ──


def parse_insight_row(
    raw: Any,
    level: str,
    entity_id: str,
    lead_action_types: Iterable[str] = DEFAULT_LEAD_ACTION_TYPES,
) -> Optional[InsightRow]:
    """One daily insight row. Returns None when `date_start` is unusable."""
    day = parse_date(raw.get("date_start")) if isinstance(raw, dict) else None
    if day is None:
        logger.warning(
            f"Skipping insight row without a valid date for {entity_id}",
            extra={"entity_id": entity_id},
        )
        return None

    spend = safe_float(raw.get("spend"))
    impressions = safe_int(raw.get("impressions"))
    clicks = safe_int(raw.get("clicks"))
    leads = extract_leads(raw.get("actions"), lead_action_types)

    return InsightRow(
        level=level,
        entity_id=entity_id,
        date=day,
        adset_id=_ref(raw.get("adset_id")),
        campaign_id=_ref(raw.get("campaign_id")),
        spend=spend,
        impressions=impressions,
        clicks=clicks,
        reach=safe_int(raw.get("reach")),
        leads=leads,
        **compute_derived(spend, impressions, clicks, leads),
    )


def aggregate_daily(rows: List[InsightRow]) -> List[InsightRow]:
    """Collapse rows sharing (entity_id, date) and recompute the rates.

    Non-additive raw metrics (reach) keep the largest value.
    """
    merged: Dict[tuple, InsightRow] = {}
    for row in rows:
        key = (row.entity_id, row.date)
        current = merged.get(key)
        if current is None:
            merged[key] = row.model_copy()
            continue
        for name, metric in RAW_METRICS.items():
            ours, theirs = getattr(current, name), getattr(row, name)
            setattr(current, name, ours + theirs if metric.additive else max(ours, theirs))
        current.adset_id = current.adset_id or row.adset_id
        current.campaign_id = current.campaign_id or row.campaign_id

    result = []
    for row in merged.values():
        derived = compute_derived(row.spend, row.impressions, row.clicks, row.leads)
        result.append(row.model_copy(update=derived))
    return sorted(result, key=lambda r: (r.entity_id, r.date))


# ── Leads ──


def flatten_field_data(field_data: Any) -> Dict[str, str]:
    """[{name, values: [...]}, ...] → {name: "v1, v2"}."""
    flat: Dict[str, str] = {}
    if not isinstance(field_data, list):
        return flat
    for field in field_data:
        if not isinstance(field, dict) or not field.get("name"):
            continue
        values = field.get("values") or []
        if not isinstance(values, list):
            values = [values]
        flat[str(field["name"])] = ", ".join(str(v) for v in values)
    return flat


def _first_present(data: Dict[str, str], keys: Iterable[str]) -> Optional[str]:
    lowered = {k.lower(): v for k, v in data.items()}
    for key in keys:
        value = lowered.get(key)
        if value:
            return value
    return None


def parse_lead(raw: Any) -> Optional[LeadRow]:
    """Lead-form submission. Returns None without a parseable created_time."""
    if not isinstance(raw, dict):
        logger.warning("Skipping malformed lead row")
        return None
    created = parse_timestamp(raw.get("created_time"))
    if created is None:
        logger.warning(f"Skipping lead {raw.get('id', '?')} without created_time")
        return None

    fields = flatten_field_data(raw.get("field_data"))
    return LeadRow(
        lead_id=_ref(raw.get("id")),
        created_time=created,
        form_id=_text(raw.get("form_id")),
        ad_id=_text(raw.get("ad_id")),
        adset_id=_ref(raw.get("adset_id")),
        campaign_id=_ref(raw.get("campaign_id")),
        form_data=json.dumps(fields, ensure_ascii=False, sort_keys=True),
        name=_first_present(fields, NAME_FIELDS),
        email=_first_present(fields, EMAIL_FIELDS),
        phone=_first_present(fields, PHONE_FIELDS),
    )
