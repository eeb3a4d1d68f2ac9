"""
Monitor Service — Performance monitor agent.

Snapshots every active campaign, compares against the previous completed
monitor run and records an AnomalyReport. Monitor runs never need approval.
When anomalies turn up, the optimizer is started in-process with trigger
"event"; its failure is logged and does not fail the monitor run.
"""

import logging
import time
from typing import Optional

from autopilot.models import AgentType, AutomationRun, Campaign, TriggerType
from autopilot.schemas import AnomalyReport, MetricsSnapshot, MonitorTotals, RunOutput
from autopilot.services.anomaly_service import detect_anomalies, summarize_anomalies
from autopilot.services.errors import NotFound
from autopilot.services.legacy import parse_run_output
from autopilot.services.lifecycle import RunEvent
from autopilot.services.optimizer_service import OptimizerService, elapsed_ms, fail_run, optimizer_awaiting_approval
from autopilot.utils import safe_float, safe_int, utcnow

logger = logging.getLogger(__name__)


def snapshot_from_campaign(campaign: Campaign) -> MetricsSnapshot:
    return MetricsSnapshot.from_counts(
        campaign_id=str(campaign.id),
        campaign_name=campaign.name or "Untitled campaign",
        status=campaign.status,
        daily_budget=safe_int(campaign.daily_budget_cents) / 100,
        spend_today=safe_float(campaign.spend_today),
        impressions=safe_int(campaign.impressions),
        clicks=safe_int(campaign.clicks),
        conversions=safe_int(campaign.conversions),
    )


def compute_totals(metrics: list[MetricsSnapshot]) -> MonitorTotals:
    total_spend = sum(m.spend_today for m in metrics)
    total_conversions = sum(m.conversions for m in metrics)
    return MonitorTotals(
        campaigns=len(metrics),
        total_spend=total_spend,
        total_conversions=total_conversions,
        avg_cpa=total_spend / total_conversions if total_conversions > 0 else 0.0,
    )


class MonitorService:
    def __init__(self, store, optimizer: Optional[OptimizerService] = None):
        self.store = store
        self.optimizer = optimizer or OptimizerService(store)

    async def run(
        self,
        business_id: str,
        user_id: Optional[str],
        trigger_type: str = TriggerType.MANUAL.value,
    ) -> tuple[AutomationRun, Optional[AutomationRun]]:
        """Returns (monitor run, optimizer run or None)."""
        business = await self.store.get_business(business_id)
        if business is None:
            raise NotFound("Business not found")

        run = await self.store.create_run(
            business_id=business.id,
            user_id=user_id or business.user_id,
            agent_type=AgentType.PERFORMANCE_MONITOR.value,
            trigger_type=trigger_type,
            trigger_reason="Checking campaign performance",
            input_data={"business_id": str(business.id)},
        )
        started = time.monotonic()

        try:
            campaigns = await self.store.list_active_campaigns(business.id)
            if not campaigns:
                output = RunOutput().with_report(AnomalyReport(
                    message="No active campaigns to monitor",
                    checked_at=utcnow(),
                ))
                run = await self.store.transition(
                    run,
                    RunEvent.COMPLETE,
                    output=output.to_json(),
                    summary="No active campaigns to monitor.",
                    first_person_summary="You don't have any active campaigns right now, so there's nothing for me to check.",
                    completed_at=utcnow(),
                    duration_ms=elapsed_ms(started),
                )
                return run, None

            metrics = [snapshot_from_campaign(c) for c in campaigns]
            previous = await self._previous_metrics(business.id)
            anomalies = detect_anomalies(metrics, previous)
            totals = compute_totals(metrics)
            summary, first_person = summarize_anomalies(
                anomalies, metrics, totals.total_spend, totals.total_conversions, totals.avg_cpa,
            )
            output = RunOutput().with_report(AnomalyReport(
                metrics=metrics,
                anomalies=anomalies,
                totals=totals,
                checked_at=utcnow(),
            ))
        except Exception as e:
            logger.error(f"Monitor run {run.id} failed: {e}", exc_info=True)
            await fail_run(self.store, run, e, started)
            raise

        run = await self.store.transition(
            run,
            RunEvent.COMPLETE,
            output=output.to_json(),
            summary=summary,
            first_person_summary=first_person,
            completed_at=utcnow(),
            duration_ms=elapsed_ms(started),
        )
        logger.info(f"Monitor run {run.id}: {len(metrics)} campaigns, {len(anomalies)} anomalies")

        optimizer_run = None
        if anomalies and await optimizer_awaiting_approval(self.store, business.id):
            logger.info(f"Monitor run {run.id}: optimizer run already awaiting approval, not starting another")
        elif anomalies:
            try:
                optimizer_run = await self.optimizer.run(
                    business_id=business.id,
                    user_id=user_id or business.user_id,
                    trigger_type=TriggerType.EVENT.value,
                    anomalies=anomalies,
                    campaign_metrics=metrics,
                )
            except Exception as e:
                logger.error(f"Optimizer trigger after monitor run {run.id} failed: {e}", exc_info=True)
        return run, optimizer_run

    async def _previous_metrics(self, business_id) -> list[MetricsSnapshot]:
        last = await self.store.get_last_completed_run(business_id, AgentType.PERFORMANCE_MONITOR.value)
        if last is None:
            return []
        report = parse_run_output(last.output).find(AnomalyReport)
        return list(report.metrics) if report else []
