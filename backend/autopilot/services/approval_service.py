"""
Approval Service — The human gate between recommendations and Meta.

decide() checks, in order: run exists (404), caller owns the run's business
(403), run requires approval (400), run is awaiting approval (400). The
decision, actor and timestamp are written with the status change in one
compare-and-swap, so a second approve on the same run always gets a 400.

Approve runs the GuardedExecutor in the same request and finishes the run as
completed, even when every action failed. Dismiss never executes anything.
"""

import logging
from typing import Optional

from autopilot.crypto import resolve_access_token
from autopilot.models import AgentType, AutomationRun, RunStatus
from autopilot.schemas import OptimizationAction, RecommendationSet
from autopilot.services.errors import Forbidden, NotFound, StaleRunError, ValidationFailed
from autopilot.services.executor_service import GuardedExecutor
from autopilot.services.legacy import parse_run_output
from autopilot.services.lifecycle import RunEvent
from autopilot.services.meta_client import MetaGraphClient
from autopilot.utils import parse_uuid, utcnow

logger = logging.getLogger(__name__)

DECISIONS = {"approve": RunEvent.APPROVE, "dismiss": RunEvent.DISMISS}
PAST_TENSE = {"approve": "approved", "dismiss": "dismissed"}


class ApprovalGate:
    def __init__(self, store, platform: MetaGraphClient):
        self.store = store
        self.platform = platform

    async def decide(self, run_id: str, action: str, user_id: str) -> dict:
        if action not in DECISIONS:
            raise ValidationFailed('action must be "approve" or "dismiss"')

        run = await self.store.get_run(run_id)
        if run is None:
            raise NotFound("Run not found")

        if not await self.store.user_owns_business(user_id, run.business_id):
            raise Forbidden("You do not have access to this run")

        if not run.requires_approval:
            raise ValidationFailed("This run does not require approval")
        if run.status != RunStatus.NEEDS_APPROVAL.value:
            raise ValidationFailed(f"Run is not awaiting approval (status: {run.status})")

        await self.store.log_activity(
            run.business_id,
            action=f"automation_{PAST_TENSE[action]}",
            description=f"Run {run.id} {PAST_TENSE[action]} by user {user_id}",
            entity_id=str(run.id),
            details={"agent_type": run.agent_type},
        )
        try:
            run = await self.store.transition(
                run,
                DECISIONS[action],
                approved_at=utcnow(),
                approved_action=action,
                approved_by=parse_uuid(user_id, "user_id"),
            )
        except StaleRunError:
            raise ValidationFailed("Run is not awaiting approval (decided by another request)")

        if action == "dismiss":
            logger.info(f"Run {run.id} dismissed by {user_id}")
            return {
                "run_id": str(run.id),
                "action": action,
                "status": run.status,
                "message": "Recommendations dismissed",
            }

        return await self._execute(run, user_id)

    async def _execute(self, run: AutomationRun, user_id: str) -> dict:
        business = await self.store.get_business(run.business_id)
        config = await self.store.get_automation_config(run.business_id)
        actions = await self._resolve_actions(run)

        executor = GuardedExecutor(
            store=self.store,
            platform=self.platform,
            access_token=resolve_access_token(business),
            max_budget_cents=config.max_daily_budget_cents if config else None,
        )
        report = await executor.execute(actions, executed_by=str(user_id))

        output = parse_run_output(run.output).with_report(report)
        await self.store.log_activity(
            run.business_id,
            action="automation_executed",
            description=f"Run {run.id}: {report.summary}",
            entity_id=str(run.id),
            details={"succeeded": report.succeeded, "failed": report.failed},
            status="success" if report.failed == 0 else "partial",
        )
        run = await self.store.transition(
            run,
            RunEvent.FINISH_EXECUTION,
            output=output.to_json(),
            completed_at=utcnow(),
        )
        logger.info(f"Run {run.id} executed: {report.summary}")

        response = {
            "run_id": str(run.id),
            "action": "approve",
            "status": run.status,
            "execution_summary": report.summary,
            "execution_results": [r.model_dump(mode="json") for r in report.results],
        }
        if report.note:
            response["message"] = report.note
        return response

    async def _resolve_actions(self, run: AutomationRun) -> list[OptimizationAction]:
        """
        Actions stored on the run, read through the legacy adapter. A run from
        another agent (e.g. a monitor run flagged for approval) falls back to
        the business's latest optimizer run.
        """
        rec_set: Optional[RecommendationSet] = parse_run_output(run.output).find(RecommendationSet)
        if rec_set is None and run.agent_type != AgentType.CAMPAIGN_OPTIMIZER.value:
            latest = await self.store.get_latest_run(run.business_id, AgentType.CAMPAIGN_OPTIMIZER.value)
            if latest is not None:
                rec_set = parse_run_output(latest.output).find(RecommendationSet)
        if rec_set is None:
            logger.info(f"Run {run.id} has no recommendation set; nothing to execute")
            return []
        return list(rec_set.actions)
