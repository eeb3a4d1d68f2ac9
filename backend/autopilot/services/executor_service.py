"""
Executor Service — Applies approved OptimizationActions to Meta.

Guardrails:
- Actions run one at a time, in list order. A pause and a budget shift can
  touch related campaigns, so they are never interleaved.
- Every computed budget is clamped to [min_budget_cents, max_budget_cents].
- One action failing never stops the rest: each action yields exactly one
  ExecutionResult, whatever happens.

Local write-backs (campaign status / budget after a successful platform call)
are best-effort. If one fails the platform change stands, the result stays ok,
and local_write="failed" flags the drift until the next sync corrects it.
"""

import logging
from typing import Optional

from autopilot.config import get_settings
from autopilot.models import CampaignStatus
from autopilot.schemas import ExecutionReport, ExecutionResult, OptimizationAction
from autopilot.services.action_builder import ACTION_TABLE
from autopilot.services.meta_client import MetaGraphClient
from autopilot.utils import round_half_up, utcnow

logger = logging.getLogger(__name__)

BUDGET_ACTIONS = ("reduce_budget", "increase_budget", "shift_budget")


def clamp_budget(current_cents: int, pct_change: float, min_cents: int, max_cents: int) -> int:
    """
    New daily budget after a fractional change, always within [min_cents, max_cents].
    A ceiling configured below the floor is raised to the floor.
    """
    ceiling = max(max_cents, min_cents)
    raw = round_half_up(current_cents * (1 + pct_change))
    return max(min_cents, min(raw, ceiling))


def default_pct_change(action_type: str) -> float:
    default = ACTION_TABLE.get(action_type, (None, None, None, None))[3]
    return default if default is not None else 0.20


def summarize_results(results: list[ExecutionResult]) -> str:
    succeeded = sum(1 for r in results if r.ok)
    return f"{succeeded}/{len(results)} actions succeeded, {len(results) - succeeded} failed/skipped"


class GuardedExecutor:
    def __init__(
        self,
        store,
        platform: MetaGraphClient,
        access_token: Optional[str],
        max_budget_cents: Optional[int] = None,
        min_budget_cents: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.platform = platform
        self.access_token = access_token
        self.min_budget_cents = min_budget_cents if min_budget_cents is not None else settings.min_daily_budget_cents
        self.max_budget_cents = (
            max_budget_cents if max_budget_cents is not None else settings.default_max_daily_budget_cents
        )

    async def execute(self, actions: list[OptimizationAction], executed_by: Optional[str] = None) -> ExecutionReport:
        logger.info(
            f"Executing {len(actions)} actions (budget bounds {self.min_budget_cents}-{self.max_budget_cents} cents)"
        )
        results = []
        for action in actions:
            result = await self.execute_action(action)
            logger.info(f"Action {action.type} on {action.campaign_id}: {result.status}")
            results.append(result)

        note = None
        if not actions:
            note = "No executable actions found in this run"
        elif not self.access_token:
            note = "No Meta access token configured for this business; actions were not sent"

        return ExecutionReport(
            actions=list(actions),
            results=results,
            summary=summarize_results(results),
            note=note,
            executed_at=utcnow(),
            executed_by=executed_by,
        )

    async def execute_action(self, action: OptimizationAction) -> ExecutionResult:
        """Run one action. Never raises."""
        base = {
            "action_type": action.type,
            "campaign_id": action.campaign_id,
            "campaign_name": action.campaign_name,
        }

        if not action.executable:
            return ExecutionResult(
                **base, ok=False, status="unsupported",
                error=f'"{action.type}" requires human action and cannot be automated',
            )

        try:
            campaign = await self.store.get_campaign(action.campaign_id)
            if campaign is None:
                return ExecutionResult(
                    **base, ok=False, status="not_found",
                    error=f"Campaign {action.campaign_id} not found",
                )

            if not self.access_token:
                return ExecutionResult(
                    **base, ok=False, status="no_credentials",
                    error="No Meta access token configured for this business",
                )

            if action.type == "pause_campaign":
                return await self._pause(action, campaign, base)

            if action.type in BUDGET_ACTIONS:
                return await self._update_budget(action, campaign, base)

            return ExecutionResult(
                **base, ok=False, status="unsupported",
                error=f"Unsupported action type: {action.type}",
            )
        except Exception as e:
            logger.exception(f"Action {action.type} on {action.campaign_id} raised")
            return ExecutionResult(
                **base, ok=False, status="error",
                error=str(e) or "Unexpected error during action execution",
            )

    async def _pause(self, action: OptimizationAction, campaign, base: dict) -> ExecutionResult:
        if not campaign.meta_campaign_id:
            return ExecutionResult(
                **base, ok=False, status="not_launched",
                error="Campaign has no meta_campaign_id; not launched on Meta yet",
            )

        result = await self.platform.pause_campaign(self.access_token, campaign.meta_campaign_id)
        if not result.ok:
            return ExecutionResult(
                **base, ok=False, status="meta_error", error=result.error,
                detail=result.data if isinstance(result.data, dict) else None,
            )

        local_write = await self._write_back(
            self.store.set_campaign_status, campaign.id, CampaignStatus.PAUSED.value,
        )
        return ExecutionResult(
            **base, ok=True, status="paused",
            detail={"meta_campaign_id": campaign.meta_campaign_id},
            local_write=local_write,
        )

    async def _update_budget(self, action: OptimizationAction, campaign, base: dict) -> ExecutionResult:
        if not campaign.meta_adset_id:
            return ExecutionResult(
                **base, ok=False, status="not_supported",
                error=(
                    "Campaign has no meta_adset_id stored. Budget update requires the "
                    "ad set ID to be saved at launch time."
                ),
            )

        current_cents = campaign.daily_budget_cents or 0
        if current_cents == 0:
            return ExecutionResult(
                **base, ok=False, status="skipped",
                error="Current daily_budget_cents is 0; cannot compute new budget",
            )

        pct_change = action.pct_change if action.pct_change is not None else default_pct_change(action.type)
        new_cents = clamp_budget(current_cents, pct_change, self.min_budget_cents, self.max_budget_cents)

        result = await self.platform.update_adset_daily_budget(self.access_token, campaign.meta_adset_id, new_cents)
        if not result.ok:
            return ExecutionResult(
                **base, ok=False, status="meta_error", error=result.error,
                detail=result.data if isinstance(result.data, dict) else None,
            )

        local_write = await self._write_back(self.store.set_campaign_budget, campaign.id, new_cents)
        return ExecutionResult(
            **base, ok=True, status="budget_updated",
            detail={
                "previous_budget_cents": current_cents,
                "new_budget_cents": new_cents,
                "pct_change": pct_change,
            },
            local_write=local_write,
        )

    async def _write_back(self, write, campaign_id, value) -> str:
        try:
            await write(campaign_id, value)
            return "synced"
        except Exception as e:
            logger.warning(f"Local write-back for campaign {campaign_id} failed (platform already updated): {e}")
            return "failed"
