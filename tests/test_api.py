"""
Tests for the FastAPI surface: health, sync trigger/status and goal reads.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from pacer.api import sync_routes
from pacer.database import get_session
from pacer.main import app
from pacer.models.goal_models import AdsetGoal, ProgressAlert, ProgressTracking
from pacer.models.sync_models import SyncStatus
from pacer.sync.pipeline import get_sync_state, set_sync_state


@pytest.fixture
def api(session):
    def override():
        yield session

    app.dependency_overrides[get_session] = override
    yield AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    app.dependency_overrides.clear()


@pytest.fixture
def background_runs(monkeypatch):
    runs = []

    async def fake_run(request):
        runs.append(request)

    monkeypatch.setattr(sync_routes, "run_sync_in_background", fake_run)
    return runs


@pytest.mark.anyio
async def test_health_endpoint(api):
    async with api as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["service"] == "pacer"


@pytest.mark.anyio
async def test_status_defaults_to_idle(api):
    async with api as client:
        response = await client.get("/sync/status")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "idle"
    assert data["last_sync_start"] is None
    assert data["error_message"] is None


@pytest.mark.anyio
async def test_trigger_starts_background_sync(api, background_runs):
    async with api as client:
        response = await client.post(
            "/sync/trigger",
            json={"start_date": "2024-03-01", "end_date": "2024-03-07", "full_resync": True},
        )
    assert response.status_code == 202
    assert response.json() == {"status": "started", "full_resync": True}
    assert len(background_runs) == 1
    assert background_runs[0].start_date == date(2024, 3, 1)


@pytest.mark.anyio
async def test_trigger_without_body(api, background_runs):
    async with api as client:
        response = await client.post("/sync/trigger")
    assert response.status_code == 202
    assert background_runs[0].full_resync is False


@pytest.mark.anyio
async def test_trigger_refused_while_sync_running(api, session, background_runs):
    set_sync_state(session, SyncStatus.SYNCING)
    async with api as client:
        response = await client.post("/sync/trigger")
        status = await client.get("/sync/status")
    assert response.status_code == 409
    assert background_runs == []
    assert status.json()["status"] == "syncing"


@pytest.mark.anyio
async def test_stale_syncing_row_does_not_block(api, session, background_runs):
    state = set_sync_state(session, SyncStatus.SYNCING)
    state.updated_at = datetime.now(timezone.utc) - timedelta(minutes=10)
    session.add(state)
    session.commit()

    async with api as client:
        response = await client.post("/sync/trigger")
    assert response.status_code == 202
    assert len(background_runs) == 1


def test_is_sync_running_after_error(session):
    set_sync_state(session, SyncStatus.ERROR, "boom")
    assert sync_routes.is_sync_running(session) is False
    assert get_sync_state(session).error_message == "boom"


@pytest.mark.anyio
async def test_goal_progress_history(api, session):
    session.add(
        AdsetGoal(
            adset_id="as1",
            contract_start_date=date(2024, 1, 1),
            contract_end_date=date(2024, 1, 11),
            volume_contracted=100,
        )
    )
    session.add(ProgressTracking(adset_id="as1", date=date(2024, 1, 3), leads_captured=10,
                                 daily_target=10.0, status="behind", deviation_pct=-50.0))
    session.add(ProgressTracking(adset_id="as1", date=date(2024, 1, 2), leads_captured=10,
                                 daily_target=10.0, status="on_track", deviation_pct=0.0))
    session.commit()

    async with api as client:
        response = await client.get("/goals/as1/progress")

    assert response.status_code == 200
    data = response.json()
    assert data["current_status"] == "behind"
    assert [h["date"] for h in data["history"]] == ["2024-01-02", "2024-01-03"]
    assert data["goal"]["volume_contracted"] == 100


@pytest.mark.anyio
async def test_goal_progress_without_history(api):
    async with api as client:
        response = await client.get("/goals/unknown/progress")
    data = response.json()
    assert data["current_status"] == "on_track"
    assert data["history"] == []
    assert data["goal"] is None


@pytest.mark.anyio
async def test_goal_alerts_newest_first(api, session):
    session.add(ProgressAlert(adset_id="as1", date=date(2024, 1, 2), type="behind",
                              severity="warning", message="behind"))
    session.add(ProgressAlert(adset_id="as1", date=date(2024, 1, 5), type="at_risk",
                              severity="critical", message="at risk"))
    session.add(ProgressAlert(adset_id="as2", date=date(2024, 1, 5), type="ahead",
                              severity="info", message="other"))
    session.commit()

    async with api as client:
        response = await client.get("/goals/as1/alerts")

    alerts = response.json()["alerts"]
    assert [a["type"] for a in alerts] == ["at_risk", "behind"]
    assert alerts[0]["resolved"] is False
