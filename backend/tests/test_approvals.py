"""
Tests for the approval gate: HTTP contract, single use, and execution on approve.
"""

import uuid
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from autopilot.schemas import Anomaly, MetricsSnapshot
from autopilot.services.approval_service import ApprovalGate
from autopilot.services.auth_service import create_access_token
from autopilot.services.errors import ValidationFailed
from autopilot.services.optimizer_service import OptimizerService


def client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def bearer(user_id):
    return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}


async def seed_pending_run(store, business=None, token="meta-token"):
    """
    Optimizer run for the end-to-end scenario: 'bad' CPA went 10 -> 25 (+150%),
    'good' converts at a lower CPA and has a 5000 cent budget.
    """
    business = business or store.add_business(token=token)
    bad = store.add_campaign(business, name="Bad", meta_campaign_id="mc_bad", meta_adset_id="as_bad")
    good = store.add_campaign(business, name="Good", daily_budget_cents=5000, meta_adset_id="as_good")
    anomaly = Anomaly(
        type="cpa_spike", campaign_id=str(bad.id), campaign_name="Bad", metric="cost per lead",
        current_value=25.0, previous_value=10.0, change_pct=150.0, severity="critical", description="",
    )
    metrics = [
        MetricsSnapshot(campaign_id=str(bad.id), campaign_name="Bad", daily_budget=50.0, spend_today=60.0,
                        conversions=2, cpa=25.0),
        MetricsSnapshot(campaign_id=str(good.id), campaign_name="Good", daily_budget=50.0, spend_today=40.0,
                        conversions=5, cpa=8.0),
    ]
    run = await OptimizerService(store).run(str(business.id), None, anomalies=[anomaly], campaign_metrics=metrics)
    assert run.status == "needs_approval"
    return business, run, bad, good


# ── Happy paths ───────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_approve_executes_and_completes(app, store, meta):
    business, run, bad, good = await seed_pending_run(store)

    async with client(app) as c:
        response = await c.post(
            "/api/automation/approve",
            json={"run_id": str(run.id), "action": "approve"},
            headers=bearer(business.user_id),
        )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["execution_summary"] == "2/2 actions succeeded, 0 failed/skipped"
    assert [r["status"] for r in data["execution_results"]] == ["paused", "budget_updated"]
    assert data["execution_results"][1]["detail"]["new_budget_cents"] == 6500
    assert meta.calls == [("pause", "meta-token", "mc_bad"), ("budget", "meta-token", "as_good", 6500)]

    stored = store.runs[str(run.id)]
    assert stored.approved_action == "approve"
    assert str(stored.approved_by) == str(business.user_id)
    assert stored.output["reports"][-1]["kind"] == "execution_report"
    assert bad.status == "paused"
    assert good.daily_budget_cents == 6500


@pytest.mark.anyio
async def test_second_approve_is_rejected(app, store, meta):
    business, run, _, _ = await seed_pending_run(store)
    body = {"run_id": str(run.id), "action": "approve"}

    async with client(app) as c:
        first = await c.post("/api/automation/approve", json=body, headers=bearer(business.user_id))
        second = await c.post("/api/automation/approve", json=body, headers=bearer(business.user_id))

    assert first.status_code == 200
    assert second.status_code == 400
    assert "not awaiting approval" in second.json()["detail"]
    assert len(meta.calls) == 2


@pytest.mark.anyio
async def test_dismiss_never_executes(app, store, meta):
    business, run, _, _ = await seed_pending_run(store)

    async with client(app) as c:
        response = await c.post(
            "/api/automation/approve",
            json={"run_id": str(run.id), "action": "dismiss"},
            headers=bearer(business.user_id),
        )
        again = await c.post(
            "/api/automation/approve",
            json={"run_id": str(run.id), "action": "approve"},
            headers=bearer(business.user_id),
        )

    assert response.status_code == 200
    assert response.json()["status"] == "dismissed"
    assert "execution_results" not in response.json()
    assert again.status_code == 400
    assert meta.calls == []


@pytest.mark.anyio
async def test_run_completes_even_when_every_action_fails(app, store, meta):
    meta.rejected.update({"mc_bad", "as_good"})
    business, run, _, _ = await seed_pending_run(store)

    async with client(app) as c:
        response = await c.post(
            "/api/automation/approve",
            json={"run_id": str(run.id), "action": "approve"},
            headers=bearer(business.user_id),
        )

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["execution_summary"] == "0/2 actions succeeded, 2 failed/skipped"


@pytest.mark.anyio
async def test_missing_token_completes_with_no_credentials(app, store, meta):
    business, run, _, _ = await seed_pending_run(store, token=None)

    async with client(app) as c:
        response = await c.post(
            "/api/automation/approve",
            json={"run_id": str(run.id), "action": "approve"},
            headers=bearer(business.user_id),
        )

    data = response.json()
    assert data["status"] == "completed"
    assert {r["status"] for r in data["execution_results"]} == {"no_credentials"}
    assert "message" in data
    assert meta.calls == []


@pytest.mark.anyio
async def test_business_budget_cap_applies(app, store, meta):
    business = store.add_business()
    store.add_config(business, max_daily_budget_cents=6000)
    business, run, _, good = await seed_pending_run(store, business=business)

    async with client(app) as c:
        await c.post(
            "/api/automation/approve",
            json={"run_id": str(run.id), "action": "approve"},
            headers=bearer(business.user_id),
        )

    assert good.daily_budget_cents == 6000


# ── Rejections ────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_missing_fields_is_400(app, store):
    business, run, _, _ = await seed_pending_run(store)
    async with client(app) as c:
        response = await c.post("/api/automation/approve", json={"run_id": str(run.id)},
                                headers=bearer(business.user_id))
    assert response.status_code == 400


@pytest.mark.anyio
async def test_invalid_action_is_400(app, store):
    business, run, _, _ = await seed_pending_run(store)
    async with client(app) as c:
        response = await c.post("/api/automation/approve", json={"run_id": str(run.id), "action": "maybe"},
                                headers=bearer(business.user_id))
    assert response.status_code == 400


@pytest.mark.anyio
async def test_missing_or_bad_token_is_401(app, store):
    _, run, _, _ = await seed_pending_run(store)
    body = {"run_id": str(run.id), "action": "approve"}
    async with client(app) as c:
        missing = await c.post("/api/automation/approve", json=body)
        garbage = await c.post("/api/automation/approve", json=body, headers={"Authorization": "Bearer nope"})
    assert missing.status_code == 401
    assert garbage.status_code == 401
    assert store.runs[str(run.id)].status == "needs_approval"


@pytest.mark.anyio
async def test_unknown_run_is_404(app, store):
    async with client(app) as c:
        response = await c.post(
            "/api/automation/approve",
            json={"run_id": str(uuid.uuid4()), "action": "approve"},
            headers=bearer(uuid.uuid4()),
        )
    assert response.status_code == 404


@pytest.mark.anyio
async def test_other_users_run_is_403(app, store, meta):
    _, run, _, _ = await seed_pending_run(store)
    async with client(app) as c:
        response = await c.post(
            "/api/automation/approve",
            json={"run_id": str(run.id), "action": "approve"},
            headers=bearer(uuid.uuid4()),
        )
    assert response.status_code == 403
    assert meta.calls == []


@pytest.mark.anyio
async def test_run_without_approval_flag_is_400(app, store):
    business = store.add_business()
    run = store.add_run(business, status="completed", requires_approval=False)
    async with client(app) as c:
        response = await c.post(
            "/api/automation/approve",
            json={"run_id": str(run.id), "action": "approve"},
            headers=bearer(business.user_id),
        )
    assert response.status_code == 400
    assert "does not require approval" in response.json()["detail"]


# ── Races & fallbacks ─────────────────────────────────────────────────

@pytest.mark.anyio
async def test_losing_a_concurrent_approval_is_400(store, meta):
    business, run, _, _ = await seed_pending_run(store)
    gate = ApprovalGate(store, meta)
    stale = await store.get_run(run.id)

    await gate.decide(str(run.id), "approve", str(business.user_id))
    store.get_run = AsyncMock(return_value=stale)

    with pytest.raises(ValidationFailed, match="not awaiting approval"):
        await gate.decide(str(run.id), "approve", str(business.user_id))
    assert len(meta.calls) == 2


@pytest.mark.anyio
async def test_monitor_run_approval_uses_latest_optimizer_actions(store, meta):
    business, optimizer_run, bad, _ = await seed_pending_run(store)
    monitor_run = store.add_run(business, agent_type="performance_monitor")

    result = await ApprovalGate(store, meta).decide(str(monitor_run.id), "approve", str(business.user_id))

    assert result["status"] == "completed"
    assert [r["action_type"] for r in result["execution_results"]] == ["pause_campaign", "shift_budget"]


@pytest.mark.anyio
async def test_legacy_output_is_executed_through_adapter(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business, meta_campaign_id="mc_legacy")
    run = store.add_run(business, output={"recommendations": [{
        "action": "pause", "campaign_id": str(campaign.id), "campaign_name": "Old",
        "reason": "CPA spiked", "details": "", "priority": "high", "estimated_impact": "",
    }]})

    result = await ApprovalGate(store, meta).decide(str(run.id), "approve", str(business.user_id))

    assert result["execution_summary"] == "1/1 actions succeeded, 0 failed/skipped"
    assert meta.calls == [("pause", "meta-token", "mc_legacy")]
