"""Integration tests for FastAPI server endpoints.

Uses httpx.AsyncClient with ASGITransport to test the REST API
without starting a real server. Redis is patched to use fakeredis and the
advisor to the template implementation, so no network is touched.
"""

import pytest
import fakeredis
from unittest.mock import patch
from httpx import AsyncClient, ASGITransport

from dropsense.errors import PersistenceError
from dropsense.services.advisory import TemplateAdvisor
from dropsense.store import event_store, profile_store


RISK_ANSWERS = {
    "investmentExperience": 1,
    "riskCapacity": 1,
    "timeHorizon": 1,
    "technicalKnowledge": 1,
    "securityPriority": 5,
    "lossTolerance": 1,
    "diversificationUnderstanding": 3,
    "volatilityComfort": 1,
}


@pytest.fixture
def fake_redis():
    """Create a shared fakeredis instance for this test."""
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def patched_app(fake_redis):
    """Import and patch the FastAPI app to use fakeredis and template advice."""
    with (
        patch("dropsense.server._get_redis", return_value=fake_redis),
        patch("dropsense.server.get_advisor", return_value=TemplateAdvisor()),
    ):
        from dropsense.server import app
        yield app


@pytest.fixture
async def client(patched_app):
    transport = ASGITransport(app=patched_app)
    async with AsyncClient(transport=transport, base_url="http://test", headers={"X-User-Id": "user-1"}) as c:
        yield c


async def _track(client, n, **body):
    payload = {"actionKind": "click", "element": "claim", "section": "airdrops"}
    payload.update(body)
    responses = []
    for _ in range(n):
        responses.append(await client.post("/api/behavior/track", json=payload))
    return responses


# ═══════════════════════════════════════════════════════════════════════════
# Health Check
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["redis"] is True
        assert data["outbox_depth"] == 0


# ═══════════════════════════════════════════════════════════════════════════
# Ingestion
# ═══════════════════════════════════════════════════════════════════════════

class TestTrackEvent:
    async def test_track_appends_event(self, client, fake_redis):
        resp = (await _track(client, 1, durationMs=1200, metadata={"device": "mobile"}))[0]
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["event_count"] == 1
        assert data["analysis_triggered"] is False
        stored = event_store.query("user-1", r=fake_redis)
        assert stored[0].event_id == data["event_id"]
        assert stored[0].duration_ms == 1200

    async def test_tenth_event_triggers_analysis(self, client, fake_redis):
        responses = await _track(client, 10)
        assert [r.json()["analysis_triggered"] for r in responses].count(True) == 1
        assert responses[-1].json()["analysis_triggered"] is True
        assert fake_redis.llen(event_store.OUTBOX_KEY) == 1

    async def test_missing_user_header(self, patched_app):
        transport = ASGITransport(app=patched_app)
        async with AsyncClient(transport=transport, base_url="http://test") as anon:
            resp = await anon.post("/api/behavior/track", json={"actionKind": "click"})
        assert resp.status_code == 401

    async def test_unknown_action_kind(self, client, fake_redis):
        resp = (await _track(client, 1, actionKind="teleport"))[0]
        assert resp.status_code == 400
        assert "error" in resp.json()
        assert event_store.count("user-1", r=fake_redis) == 0

    async def test_missing_element(self, client):
        resp = await client.post("/api/behavior/track", json={"actionKind": "view", "section": "home"})
        assert resp.status_code == 400

    async def test_negative_duration(self, client):
        resp = (await _track(client, 1, durationMs=-5))[0]
        assert resp.status_code == 400

    async def test_list_events_order(self, client):
        await _track(client, 1, timestamp="2026-02-15T10:00:00Z")
        await _track(client, 1, timestamp="2026-02-15T11:00:00Z")
        asc = (await client.get("/api/behavior/events")).json()["events"]
        desc = (await client.get("/api/behavior/events", params={"order": "desc", "limit": 1})).json()["events"]
        assert [e["timestamp"][:13] for e in asc] == ["2026-02-15T10", "2026-02-15T11"]
        assert len(desc) == 1
        assert desc[0]["timestamp"].startswith("2026-02-15T11")

    async def test_list_events_bad_since(self, client):
        resp = await client.get("/api/behavior/events", params={"since": "yesterday"})
        assert resp.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
# Risk Assessment
# ═══════════════════════════════════════════════════════════════════════════

class TestRiskAssessment:
    async def test_submit_and_read(self, client):
        resp = await client.post("/api/preferences/risk-assessment", json=RISK_ANSWERS)
        assert resp.status_code == 200
        profile = resp.json()["risk_profile"]
        assert profile["risk_tolerance_score"] == 34
        assert profile["risk_category"] == "moderate"
        assert profile["recommendations"]

        stored = await client.get("/api/preferences/risk-assessment")
        assert stored.json()["risk_profile"]["risk_tolerance_score"] == 34

    async def test_out_of_range_answer(self, client):
        resp = await client.post("/api/preferences/risk-assessment", json={**RISK_ANSWERS, "riskCapacity": 7})
        assert resp.status_code == 400
        assert "risk_capacity" in resp.json()["details"]["invalid"]

    async def test_missing_answer(self, client):
        answers = dict(RISK_ANSWERS)
        answers.pop("volatilityComfort")
        resp = await client.post("/api/preferences/risk-assessment", json=answers)
        assert resp.status_code == 400

    async def test_no_assessment_yet(self, client):
        resp = await client.get("/api/preferences/risk-assessment")
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Profile & Analysis
# ═══════════════════════════════════════════════════════════════════════════

class TestProfile:
    async def test_empty_profile(self, client):
        resp = await client.get("/api/preferences/profile")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "not_computed"
        assert data["completeness"]["score"] == 0

    async def test_ui_preferences_empty(self, client):
        data = (await client.get("/api/adaptive-ui/preferences")).json()
        assert data == {"config": None, "history": []}

    async def test_manual_analysis(self, client):
        await _track(client, 6, actionKind="airdrop_interact", metadata={"chainId": "arbitrum", "gasSpent": 1.5})
        resp = await client.post("/api/preferences/analyze")
        assert resp.status_code == 200
        data = resp.json()
        assert data["analysis"]["chains_scored"] == 1
        assert data["profile"]["status"] == "ready"

        chains = (await client.get("/api/preferences/chains")).json()["chain_preferences"]
        assert chains[0]["chain_id"] == "arbitrum"
        activity = (await client.get("/api/preferences/activity")).json()["activity_pattern"]
        assert activity["active_days"] == 1

    async def test_non_finite_gas_does_not_break_reads(self, client):
        await _track(client, 6)
        await _track(client, 1, actionKind="chain_interaction", metadata={"chainId": "base", "gasSpent": "nan"})
        await _track(client, 1, actionKind="chain_interaction", metadata={"chainId": "base", "gasSpent": "-inf"})

        resp = await client.post("/api/preferences/analyze")
        assert resp.status_code == 200

        chains = (await client.get("/api/preferences/chains")).json()["chain_preferences"]
        assert chains[0]["total_gas_spent"] == 0.0
        assert chains[0]["avg_gas_cost"] == 0.0
        profile = await client.get("/api/preferences/profile")
        assert profile.status_code == 200
        assert profile.json()["status"] == "ready"

    async def test_manual_analysis_store_failure(self, client, monkeypatch):
        def _fail(*args, **kwargs):
            raise PersistenceError("Failed to persist analysis", {"user_id": "user-1"})

        monkeypatch.setattr(profile_store, "persist_analysis", _fail)
        await _track(client, 6)
        resp = await client.post("/api/preferences/analyze")
        assert resp.status_code == 503
        assert resp.json()["error"] == "Failed to persist analysis"

    async def test_manual_analysis_locked(self, client, fake_redis):
        fake_redis.set("analysis:lock:user-1", "other-worker")
        resp = await client.post("/api/preferences/analyze")
        assert resp.status_code == 409

    async def test_evolution_after_reassessment(self, client):
        await client.post("/api/preferences/risk-assessment", json=RISK_ANSWERS)
        await client.post("/api/preferences/risk-assessment", json={k: 5 for k in RISK_ANSWERS})
        data = (await client.get("/api/preferences/evolution", params={"category": "risk"})).json()
        assert len(data["evolution"]) == 1
        assert data["evolution"][0]["new_value"]["risk_category"] == "aggressive"


# ═══════════════════════════════════════════════════════════════════════════
# Insights
# ═══════════════════════════════════════════════════════════════════════════

class TestInsights:
    async def _seed(self, client):
        # all-minimum answers fire the security awareness rule
        await client.post("/api/preferences/risk-assessment", json={k: 1 for k in RISK_ANSWERS})

    async def test_list_and_filter(self, client):
        await self._seed(client)
        data = (await client.get("/api/preferences/insights")).json()
        assert data["count"] == 1
        assert data["insights"][0]["rule"] == "security_awareness_gap"
        assert (await client.get("/api/preferences/insights", params={"type": "chain"})).json()["count"] == 0

    async def test_mark_read(self, client):
        await self._seed(client)
        insight_id = (await client.get("/api/preferences/insights")).json()["insights"][0]["insight_id"]
        resp = await client.post(f"/api/preferences/insights/{insight_id}/read")
        assert resp.status_code == 200
        unread = (await client.get("/api/preferences/insights", params={"unread": "true"})).json()
        assert unread["count"] == 0

    async def test_mark_unknown_insight(self, client):
        resp = await client.post("/api/preferences/insights/nope/read")
        assert resp.status_code == 404

    async def test_mark_all_read(self, client):
        await self._seed(client)
        assert (await client.post("/api/preferences/insights/read-all")).json()["updated"] == 1
        assert (await client.post("/api/preferences/insights/read-all")).json()["updated"] == 0

    async def test_insights_are_per_user(self, client, fake_redis):
        await self._seed(client)
        assert profile_store.list_insights("user-2", r=fake_redis) == []
