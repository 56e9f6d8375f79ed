"""
End-to-end sync runs against a fake Meta upstream and an in-memory store.
"""

from datetime import date

import httpx
import pytest
from sqlmodel import select

from pacer.config import Settings
from pacer.core.errors import ResyncAbortedError
from pacer.models.entity_models import Ad
from pacer.models.goal_models import AdsetGoal, ProgressTracking
from pacer.models.insight_models import InsightRecord, MetaLead
from pacer.models.sync_models import SyncState
from pacer.sync import pipeline
from pacer.sync.pipeline import run_goal_tracking, run_sync
from pacer.sync.reconciler import ReconciliationUpserter

START = date(2024, 3, 1)
STOP = date(2024, 3, 7)

CONFIG = Settings(
    meta_access_token="test-token",
    meta_ad_account_id="123",
    request_min_interval=0,
    max_retries=1,
    batch_size=50,
    leads_days=3650,
)

STRUCTURE = {
    "/v21.0/act_123/campaigns": [
        {"id": "c1", "name": "Camp", "effective_status": "ACTIVE", "objective": "OUTCOME_LEADS"},
        {"id": "c2", "name": "Old", "effective_status": "PAUSED"},
    ],
    "/v21.0/act_123/adsets": [
        {"id": "as1", "name": "Set", "campaign_id": "c1", "effective_status": "ACTIVE"},
    ],
    "/v21.0/act_123/ads": [
        {"id": "ad1", "name": "Ad", "adset_id": "as1", "effective_status": "ACTIVE"},
    ],
}


def _insights_for(entity_id):
    return {
        "id": entity_id,
        "insights": {
            "data": [
                {
                    "date_start": "2024-03-02",
                    "spend": "20",
                    "impressions": "2000",
                    "clicks": "40",
                    "actions": [{"action_type": "onsite_conversion.lead_grouped", "value": "4"}],
                }
            ]
        },
    }


def upstream(insights_status=200):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        path = request.url.path
        if path in STRUCTURE:
            return httpx.Response(200, json={"data": STRUCTURE[path]})
        if path == "/v21.0/":
            if insights_status != 200:
                return httpx.Response(insights_status, text="upstream down")
            ids = request.url.params["ids"].split(",")
            return httpx.Response(200, json={i: _insights_for(i) for i in ids})
        if path == "/v21.0/c1/leads":
            return httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "id": "L1",
                            "created_time": "2024-03-02T10:00:00+0000",
                            "form_id": "F1",
                            "ad_id": "ad1",
                            "field_data": [{"name": "email", "values": ["a@b.co"]}],
                        }
                    ]
                },
            )
        return httpx.Response(404, json={"error": {"message": f"Unknown path {path}"}})

    return handler, calls


@pytest.mark.anyio
async def test_sync_populates_and_repairs_the_store(session, make_client):
    handler, calls = upstream()
    async with make_client(handler) as client:
        summary = await run_sync(session, START, STOP, client=client, config=CONFIG)

    assert summary.ok
    assert summary.entities.inserted == 4
    assert summary.insights.inserted == 3  # one active campaign, ad set and ad
    assert summary.leads.inserted == 1
    assert "/v21.0/c2/leads" not in calls

    session.expire_all()
    assert session.get(Ad, "ad1").campaign_id == "c1"
    lead = session.exec(select(MetaLead)).one()
    assert (lead.adset_id, lead.campaign_id, lead.email) == ("as1", "c1", "a@b.co")
    ad_row = session.exec(select(InsightRecord).where(InsightRecord.level == "ad")).one()
    assert (ad_row.adset_id, ad_row.campaign_id) == ("as1", "c1")
    assert ad_row.cpl == 5.0

    state = session.get(SyncState, "meta_sync")
    assert state.status == "idle"
    assert state.error_message is None
    assert state.last_sync_end is not None


@pytest.mark.anyio
async def test_repeated_sync_is_idempotent(session, make_client):
    handler, _ = upstream()
    async with make_client(handler) as client:
        await run_sync(session, START, STOP, client=client, config=CONFIG)
        second = await run_sync(session, START, STOP, client=client, config=CONFIG)

    assert second.insights.inserted == 0
    assert second.insights.updated == 3
    assert second.leads.inserted == 0
    assert len(session.exec(select(InsightRecord)).all()) == 3
    assert len(session.exec(select(MetaLead)).all()) == 1


@pytest.mark.anyio
async def test_failed_batches_are_counted_and_run_finishes(session, make_client):
    handler, _ = upstream(insights_status=500)
    async with make_client(handler, max_retries=1) as client:
        summary = await run_sync(session, START, STOP, client=client, config=CONFIG)

    assert summary.batch_failures == 3
    assert not summary.ok
    assert summary.leads.inserted == 1
    state = session.get(SyncState, "meta_sync")
    assert state.status == "idle"
    assert "3 failed batches" in state.error_message


@pytest.mark.anyio
async def test_malformed_upstream_rows_do_not_abort_the_sync(session, make_client):
    handler, _ = upstream()

    def noisy(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v21.0/act_123/ads":
            rows = ["junk", {"name": "no id"}] + STRUCTURE["/v21.0/act_123/ads"]
            return httpx.Response(200, json={"data": rows})
        if request.url.path == "/v21.0/":
            ids = request.url.params["ids"].split(",")
            return httpx.Response(200, json={i: {"insights": ["junk"]} for i in ids})
        return handler(request)

    async with make_client(noisy) as client:
        summary = await run_sync(session, START, STOP, client=client, config=CONFIG)

    assert summary.ok
    assert summary.entities.inserted == 4
    assert summary.insights.inserted == 0
    assert session.get(Ad, "ad1") is not None
    assert session.get(SyncState, "meta_sync").status == "idle"


@pytest.mark.anyio
async def test_full_resync_replaces_window(session, make_client):
    session.add(InsightRecord(level="adset", entity_id="stale", date=date(2024, 3, 3)))
    session.commit()

    handler, _ = upstream()
    async with make_client(handler) as client:
        summary = await run_sync(
            session, START, STOP, full_resync=True, client=client, config=CONFIG
        )

    assert summary.full_resync
    ids = {r.entity_id for r in session.exec(select(InsightRecord)).all()}
    assert ids == {"c1", "as1", "ad1"}


@pytest.mark.anyio
async def test_failed_reset_aborts_and_marks_error(session, make_client, monkeypatch):
    def broken_reset(self, *args, **kwargs):
        raise ResyncAbortedError("Insight reset failed: database is locked")

    monkeypatch.setattr(ReconciliationUpserter, "reset_insights", broken_reset)
    handler, calls = upstream()

    async with make_client(handler) as client:
        with pytest.raises(ResyncAbortedError):
            await run_sync(session, START, STOP, full_resync=True, client=client, config=CONFIG)

    assert "/v21.0/" not in calls
    state = session.get(SyncState, "meta_sync")
    assert state.status == "error"
    assert "database is locked" in state.error_message


def test_resolve_window_defaults_and_validation():
    start, stop = pipeline.resolve_window(None, date(2024, 3, 31), days=30)
    assert (start, stop) == (date(2024, 3, 1), date(2024, 3, 31))
    with pytest.raises(ValueError):
        pipeline.resolve_window(date(2024, 4, 2), date(2024, 4, 1))


def test_goal_tracking_entry_point(session):
    session.add(
        AdsetGoal(
            adset_id="as1",
            contract_start_date=date(2024, 1, 1),
            contract_end_date=date(2024, 1, 11),
            volume_contracted=100,
        )
    )
    session.commit()

    summary = run_goal_tracking(session, today=date(2024, 1, 1))

    assert summary.goals_evaluated == 1
    assert session.exec(select(ProgressTracking)).one().status == "on_track"
