"""
Optimizer Service — Campaign optimizer agent.
Turns anomalies + current metrics into recommendations and actions, and parks
the run in needs_approval. Nothing touches Meta until a human approves.
"""

import logging
import time
from typing import Optional

from autopilot.models import AgentType, AutomationRun, RunStatus, TriggerType
from autopilot.schemas import Anomaly, AnomalyReport, MetricsSnapshot, RecommendationSet, RunOutput
from autopilot.services.action_builder import build_actions
from autopilot.services.errors import NotFound
from autopilot.services.legacy import parse_run_output
from autopilot.services.lifecycle import RunEvent
from autopilot.services.recommendation_service import generate_recommendations, summarize_recommendations
from autopilot.utils import utcnow

logger = logging.getLogger(__name__)


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def fail_run(store, run: AutomationRun, error: Exception, started: float) -> None:
    """Commit `failed` with the error message. The caller re-raises `error`."""
    try:
        run = await store.recover(run)
        await store.transition(
            run,
            RunEvent.FAIL,
            error_message=str(error) or error.__class__.__name__,
            completed_at=utcnow(),
            duration_ms=elapsed_ms(started),
        )
    except Exception as e:
        logger.error(f"Could not mark run {run.id} as failed: {e}", exc_info=True)


async def optimizer_awaiting_approval(store, business_id) -> bool:
    """True while the latest optimizer run for the business still waits on a human decision."""
    latest = await store.get_latest_run(business_id, AgentType.CAMPAIGN_OPTIMIZER.value)
    return latest is not None and latest.status == RunStatus.NEEDS_APPROVAL.value


class OptimizerService:
    def __init__(self, store):
        self.store = store

    async def run(
        self,
        business_id: str,
        user_id: Optional[str],
        trigger_type: str = TriggerType.MANUAL.value,
        anomalies: Optional[list[Anomaly]] = None,
        campaign_metrics: Optional[list[MetricsSnapshot]] = None,
    ) -> AutomationRun:
        """
        Create and drive one campaign_optimizer run.

        When neither anomalies nor metrics are passed, the latest completed
        performance_monitor run supplies them. Zero recommendations completes
        the run immediately; otherwise it waits for approval.
        """
        business = await self.store.get_business(business_id)
        if business is None:
            raise NotFound("Business not found")

        if anomalies is None and campaign_metrics is None:
            anomalies, campaign_metrics = await self._latest_monitor_findings(business.id)
        anomalies = list(anomalies or [])
        campaign_metrics = list(campaign_metrics or [])

        run = await self.store.create_run(
            business_id=business.id,
            user_id=user_id or business.user_id,
            agent_type=AgentType.CAMPAIGN_OPTIMIZER.value,
            trigger_type=trigger_type,
            trigger_reason=f"Analyzing {len(anomalies)} anomalies across {len(campaign_metrics)} campaigns",
            input_data={
                "anomalies": [a.model_dump(mode="json") for a in anomalies],
                "campaign_metrics": [m.model_dump(mode="json") for m in campaign_metrics],
            },
        )
        started = time.monotonic()

        try:
            recommendations = generate_recommendations(anomalies, campaign_metrics)
            actions = build_actions(recommendations)
            output = RunOutput().with_report(RecommendationSet(
                recommendations=recommendations,
                actions=actions,
                anomalies_analyzed=len(anomalies),
                campaigns_analyzed=len(campaign_metrics),
                generated_at=utcnow(),
            ))
            summary, first_person = summarize_recommendations(recommendations)
        except Exception as e:
            logger.error(f"Optimizer run {run.id} failed: {e}", exc_info=True)
            await fail_run(self.store, run, e, started)
            raise

        fields = {
            "output": output.to_json(),
            "summary": summary,
            "first_person_summary": first_person,
            "duration_ms": elapsed_ms(started),
        }
        if recommendations:
            run = await self.store.transition(run, RunEvent.AWAIT_APPROVAL, requires_approval=True, **fields)
        else:
            run = await self.store.transition(run, RunEvent.COMPLETE, completed_at=utcnow(), **fields)

        logger.info(
            f"Optimizer run {run.id}: {len(recommendations)} recommendations, "
            f"{len(actions)} actions, status={run.status}"
        )
        return run

    async def _latest_monitor_findings(self, business_id) -> tuple[list[Anomaly], list[MetricsSnapshot]]:
        last = await self.store.get_last_completed_run(business_id, AgentType.PERFORMANCE_MONITOR.value)
        if last is None:
            logger.info(f"No completed monitor run for business {business_id}; nothing to analyze")
            return [], []
        report = parse_run_output(last.output).find(AnomalyReport)
        if report is None:
            return [], []
        return list(report.anomalies), list(report.metrics)
