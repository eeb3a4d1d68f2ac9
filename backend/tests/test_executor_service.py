"""
Tests for the guarded executor: budget clamping, per-action isolation,
and the status recorded for every way an action can go.
"""

import itertools
import uuid

import pytest

from autopilot.schemas import OptimizationAction
from autopilot.services.executor_service import GuardedExecutor, clamp_budget, summarize_results


def action(campaign, type_="pause_campaign", pct_change=None, executable=True):
    return OptimizationAction(
        type=type_,
        campaign_id=str(campaign.id) if hasattr(campaign, "id") else campaign,
        campaign_name=getattr(campaign, "name", "ghost"),
        pct_change=pct_change,
        executable=executable,
        requires_approval=executable,
    )


def executor(store, meta, token="meta-token", max_cents=10_000, min_cents=500):
    return GuardedExecutor(store, meta, token, max_budget_cents=max_cents, min_budget_cents=min_cents)


# ── clamp_budget ──────────────────────────────────────────────────────

def test_clamp_always_within_bounds():
    for current, pct, cap in itertools.product(
        [0, 1, 499, 500, 5000, 9999, 250_000],
        [-1.0, -0.5, -0.3, 0.0, 0.2, 0.3, 5.0],
        [500, 6000, 10_000],
    ):
        value = clamp_budget(current, pct, 500, cap)
        assert 500 <= value <= cap


def test_clamp_rounds_half_up():
    assert clamp_budget(5001, 0.30, 500, 100_000) == 6501  # 6501.3
    assert clamp_budget(1005, -0.50, 500, 100_000) == 503  # 502.5


def test_clamp_raises_ceiling_below_floor_to_floor():
    assert clamp_budget(5000, 0.30, 500, 100) == 500


# ── Budget actions ────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_shift_budget_5000_by_30_percent_becomes_6500(store, meta):
    business = store.add_business()
    target = store.add_campaign(business, daily_budget_cents=5000, meta_adset_id="as_good")

    report = await executor(store, meta).execute([action(target, "shift_budget", 0.30)])

    result = report.results[0]
    assert result.ok is True
    assert result.status == "budget_updated"
    assert result.detail == {"previous_budget_cents": 5000, "new_budget_cents": 6500, "pct_change": 0.30}
    assert result.local_write == "synced"
    assert meta.calls == [("budget", "meta-token", "as_good", 6500)]
    assert target.daily_budget_cents == 6500


@pytest.mark.anyio
async def test_budget_increase_capped_by_business_max(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business, daily_budget_cents=5000)

    report = await executor(store, meta, max_cents=6000).execute([action(campaign, "increase_budget", 0.50)])

    assert report.results[0].detail["new_budget_cents"] == 6000


@pytest.mark.anyio
async def test_budget_cut_never_goes_below_floor(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business, daily_budget_cents=600)

    report = await executor(store, meta).execute([action(campaign, "reduce_budget", -0.30)])

    assert report.results[0].detail["new_budget_cents"] == 500


@pytest.mark.anyio
async def test_reduce_budget_without_pct_uses_default_cut(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business, daily_budget_cents=5000)

    report = await executor(store, meta).execute([action(campaign, "reduce_budget")])

    assert report.results[0].detail["new_budget_cents"] == 3500
    assert report.results[0].detail["pct_change"] == -0.30


@pytest.mark.anyio
async def test_budget_action_without_adset_is_not_supported(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business, meta_adset_id=None)

    report = await executor(store, meta).execute([action(campaign, "reduce_budget", -0.30)])

    assert report.results[0].status == "not_supported"
    assert meta.calls == []


@pytest.mark.anyio
async def test_zero_budget_is_skipped(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business, daily_budget_cents=0)

    report = await executor(store, meta).execute([action(campaign, "increase_budget", 0.20)])

    assert report.results[0].status == "skipped"
    assert meta.calls == []


# ── Pause ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_pause_marks_local_campaign_paused(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business, meta_campaign_id="mc_bad")

    report = await executor(store, meta).execute([action(campaign)])

    assert report.results[0].status == "paused"
    assert report.results[0].local_write == "synced"
    assert campaign.status == "paused"


@pytest.mark.anyio
async def test_pause_without_meta_campaign_is_not_launched(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business, meta_campaign_id=None)

    report = await executor(store, meta).execute([action(campaign)])

    assert report.results[0].status == "not_launched"
    assert meta.calls == []


@pytest.mark.anyio
async def test_meta_rejection_is_recorded_not_raised(store, meta_factory):
    business = store.add_business()
    campaign = store.add_campaign(business, meta_campaign_id="mc_x")
    meta = meta_factory(rejected={"mc_x"})

    report = await executor(store, meta).execute([action(campaign)])

    result = report.results[0]
    assert result.ok is False
    assert result.status == "meta_error"
    assert result.error == "Invalid parameter"
    assert campaign.status == "active"


@pytest.mark.anyio
async def test_failed_local_write_keeps_platform_success_visible(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business)
    store.failing_writes = True

    report = await executor(store, meta).execute([action(campaign)])

    result = report.results[0]
    assert result.ok is True
    assert result.status == "paused"
    assert result.local_write == "failed"


# ── Short circuits ────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_non_executable_action_is_unsupported(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business)

    report = await executor(store, meta).execute([action(campaign, "refresh_creative", executable=False)])

    assert report.results[0].status == "unsupported"
    assert meta.calls == []


@pytest.mark.anyio
async def test_unknown_campaign_is_not_found(store, meta):
    report = await executor(store, meta).execute([action(str(uuid.uuid4()))])
    assert report.results[0].status == "not_found"


@pytest.mark.anyio
async def test_missing_token_sends_nothing(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business)

    report = await executor(store, meta, token=None).execute([action(campaign)])

    assert report.results[0].status == "no_credentials"
    assert report.note is not None
    assert meta.calls == []


@pytest.mark.anyio
async def test_unknown_executable_type_is_unsupported(store, meta):
    business = store.add_business()
    campaign = store.add_campaign(business)

    report = await executor(store, meta).execute([action(campaign, "duplicate_campaign")])

    assert report.results[0].status == "unsupported"


# ── Isolation & ordering ──────────────────────────────────────────────

@pytest.mark.anyio
async def test_one_failing_action_does_not_stop_the_rest(store, meta_factory):
    business = store.add_business()
    first = store.add_campaign(business, meta_campaign_id="mc_1")
    second = store.add_campaign(business, meta_campaign_id="mc_boom")
    third = store.add_campaign(business, meta_adset_id="as_3", daily_budget_cents=4000)
    meta = meta_factory(exploding={"mc_boom"})

    report = await executor(store, meta).execute([
        action(first),
        action(second),
        action(third, "reduce_budget", -0.20),
    ])

    assert [r.status for r in report.results] == ["paused", "error", "budget_updated"]
    assert "socket closed" in report.results[1].error
    assert report.summary == "2/3 actions succeeded, 1 failed/skipped"
    assert (report.succeeded, report.failed) == (2, 1)


@pytest.mark.anyio
async def test_store_error_on_one_action_is_isolated(store, meta):
    business = store.add_business()
    broken = store.add_campaign(business)
    fine = store.add_campaign(business, meta_campaign_id="mc_fine")
    store.exploding_campaigns.add(str(broken.id))

    report = await executor(store, meta).execute([action(broken), action(fine)])

    assert [r.status for r in report.results] == ["error", "paused"]


@pytest.mark.anyio
async def test_actions_run_in_list_order(store, meta):
    business = store.add_business()
    loser = store.add_campaign(business, meta_campaign_id="mc_loser")
    winner = store.add_campaign(business, meta_adset_id="as_winner")

    await executor(store, meta).execute([action(loser), action(winner, "shift_budget", 0.30)])

    assert [c[0] for c in meta.calls] == ["pause", "budget"]


@pytest.mark.anyio
async def test_empty_action_list(store, meta):
    report = await executor(store, meta).execute([], executed_by="u1")
    assert report.results == []
    assert report.summary == "0/0 actions succeeded, 0 failed/skipped"
    assert report.executed_by == "u1"


def test_summarize_results_counts_failures():
    assert summarize_results([]) == "0/0 actions succeeded, 0 failed/skipped"
