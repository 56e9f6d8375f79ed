"""
Tests for total parsing of Meta payloads.
"""

import json
from datetime import date, datetime, timezone

import pytest

from pacer.connectors.meta.transformer import (
    aggregate_daily,
    extract_leads,
    flatten_field_data,
    parse_entity,
    parse_insight_row,
    parse_lead,
    parse_timestamp,
    safe_float,
    safe_int,
)
from pacer.core.metric_registry import ALL_METRICS, DERIVED_METRICS, compute_derived
from pacer.models.insight_models import InsightRecord
from pacer.models.meta_schemas import InsightRow


@pytest.mark.parametrize(
    "value, expected",
    [("12.5", 12.5), (3, 3.0), (None, 0.0), ("", 0.0), ("abc", 0.0), ("nan", 0.0), ("inf", 0.0)],
)
def test_safe_float_never_raises(value, expected):
    assert safe_float(value) == expected


def test_safe_int_truncates_strings():
    assert safe_int("1234") == 1234
    assert safe_int("7.9") == 7
    assert safe_int({"bad": 1}) == 0


def test_extract_leads_prefers_first_configured_type():
    actions = [
        {"action_type": "link_click", "value": "40"},
        {"action_type": "lead", "value": "6"},
        {"action_type": "onsite_conversion.lead_grouped", "value": "5"},
    ]
    assert extract_leads(actions) == 5
    assert extract_leads(actions, ["lead"]) == 6
    assert extract_leads([{"action_type": "lead", "value": "3"}]) == 3
    assert extract_leads(None) == 0
    assert extract_leads([{"action_type": "link_click", "value": "9"}]) == 0


def test_parse_insight_row_derives_rates():
    row = parse_insight_row(
        {
            "date_start": "2024-03-01",
            "spend": "12.5",
            "impressions": "1000",
            "clicks": "25",
            "reach": "800",
            "adset_id": "as1",
            "campaign_id": "c1",
            "actions": [{"action_type": "lead", "value": "5"}],
        },
        level="ad",
        entity_id="ad1",
    )
    assert row.date == date(2024, 3, 1)
    assert row.leads == 5
    assert row.ctr == 2.5
    assert row.cpm == 12.5
    assert row.cpc == 0.5
    assert row.cpl == 2.5
    assert row.adset_id == "as1"


def test_parse_insight_row_guards_zero_denominators():
    row = parse_insight_row(
        {"date_start": "2024-03-01", "spend": "10", "impressions": "0", "clicks": None},
        level="adset",
        entity_id="as1",
    )
    assert (row.ctr, row.cpm, row.cpc, row.cpl) == (0.0, 0.0, 0.0, 0.0)
    assert row.impressions == 0
    assert row.clicks == 0


def test_parse_insight_row_without_date_is_skipped():
    assert parse_insight_row({"spend": "1"}, "ad", "ad1") is None
    assert parse_insight_row({"date_start": "not-a-date"}, "ad", "ad1") is None


def test_aggregate_daily_sums_duplicate_days():
    raw = [
        {"date_start": "2024-03-01", "spend": "10", "impressions": "500", "clicks": "5", "reach": "400",
         "actions": [{"action_type": "lead", "value": "1"}]},
        {"date_start": "2024-03-01", "spend": "10", "impressions": "500", "clicks": "15", "reach": "300",
         "actions": [{"action_type": "lead", "value": "3"}]},
        {"date_start": "2024-03-02", "spend": "4", "impressions": "100", "clicks": "1"},
    ]
    rows = aggregate_daily([parse_insight_row(r, "adset", "as1") for r in raw])

    assert len(rows) == 2
    first = rows[0]
    assert first.date == date(2024, 3, 1)
    assert first.spend == 20.0
    assert first.impressions == 1000
    assert first.clicks == 20
    assert first.leads == 4
    assert first.reach == 400
    assert first.ctr == 2.0
    assert first.cpl == 5.0
    assert rows[1].cpl == 0.0


def test_parse_entity_prefers_effective_status():
    row = parse_entity(
        {"id": "as1", "name": "Set", "status": "ACTIVE",
         "effective_status": "CAMPAIGN_PAUSED", "campaign_id": "c1"},
        "adset",
    )
    assert row.status == "CAMPAIGN_PAUSED"
    assert row.campaign_id == "c1"
    assert row.adset_id is None
    assert parse_entity({"name": "no id"}, "ad") is None


def test_parse_timestamp_normalizes_to_utc():
    expected = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T12:30:00+0000") == expected
    assert parse_timestamp("2024-05-01T09:30:00-0300") == expected
    assert parse_timestamp("2024-05-01T12:30:00Z") == expected
    assert parse_timestamp("2024-05-01T09:30:00-0300").tzinfo == timezone.utc
    assert parse_timestamp("garbage") is None
    assert parse_timestamp(None) is None


def test_flatten_field_data_joins_values():
    flat = flatten_field_data(
        [
            {"name": "full_name", "values": ["Ana Souza"]},
            {"name": "interests", "values": ["a", "b"]},
            {"values": ["orphan"]},
        ]
    )
    assert flat == {"full_name": "Ana Souza", "interests": "a, b"}
    assert flatten_field_data("nope") == {}


def test_parse_lead_extracts_contact_aliases():
    lead = parse_lead(
        {
            "id": "L1",
            "created_time": "2024-05-01T12:30:00+0000",
            "form_id": "F1",
            "ad_id": "ad1",
            "field_data": [
                {"name": "nome", "values": ["Ana"]},
                {"name": "E_Mail", "values": ["ana@example.com"]},
                {"name": "telefone", "values": ["+55 11 99999-0000"]},
            ],
        }
    )
    assert lead.lead_id == "L1"
    assert lead.created_time == datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    assert lead.name == "Ana"
    assert lead.email == "ana@example.com"
    assert lead.phone == "+55 11 99999-0000"
    assert lead.adset_id is None
    assert json.loads(lead.form_data)["nome"] == "Ana"


def test_parse_lead_without_created_time_is_skipped():
    assert parse_lead({"id": "L1", "form_id": "F1"}) is None


@pytest.mark.parametrize("raw", ["junk", None, 42, ["a", "b"]])
def test_parsers_skip_non_object_rows(raw):
    assert parse_entity(raw, "ad") is None
    assert parse_insight_row(raw, "ad", "ad1") is None
    assert parse_lead(raw) is None


def test_parse_entity_tolerates_odd_field_types():
    row = parse_entity(
        {"id": 123, "name": {"nested": True}, "campaign_id": ["c1"], "adset_id": 456},
        "ad",
    )
    assert row.id == "123"
    assert row.name == ""
    assert row.campaign_id is None
    assert row.adset_id == "456"


def test_parse_timestamp_without_offset_is_utc():
    parsed = parse_timestamp("2024-05-01T12:30:00")
    assert parsed == datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def test_every_registered_metric_is_a_stored_column():
    for name in ALL_METRICS:
        assert name in InsightRecord.model_fields
        assert name in InsightRow.model_fields


def test_compute_derived_covers_each_derived_metric():
    assert set(compute_derived(10, 1000, 20, 2)) == set(DERIVED_METRICS)
    assert compute_derived(10, 1000, 20, 2) == {"ctr": 2.0, "cpm": 10.0, "cpc": 0.5, "cpl": 5.0}
    assert compute_derived(10, 0, 0, 0) == {"ctr": 0.0, "cpm": 0.0, "cpc": 0.0, "cpl": 0.0}
