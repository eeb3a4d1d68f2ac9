"""
Dispatch Service — Decides which agents are due for each enabled business.

Called by the external cron (POST /api/cron/dispatch). Businesses without active
campaigns are skipped. The optimizer is not queued while an earlier run still
awaits approval, or when this sweep's monitor already started one. A business
whose agent raises is reported as an error entry; the rest of the sweep continues.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from autopilot.models import AgentType, TriggerType
from autopilot.services.monitor_service import MonitorService
from autopilot.services.optimizer_service import OptimizerService, optimizer_awaiting_approval
from autopilot.utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_FREQUENCY_HOURS = {
    AgentType.PERFORMANCE_MONITOR.value: 4,
    AgentType.CAMPAIGN_OPTIMIZER.value: 24,
}

# Monitor first: its anomalies may start the optimizer for this sweep
AGENT_ORDER = (AgentType.PERFORMANCE_MONITOR.value, AgentType.CAMPAIGN_OPTIMIZER.value)


def should_run_agent(last_completed_at: Optional[datetime], frequency_hours: int, now: Optional[datetime] = None) -> bool:
    """Due when it never completed, or at least `frequency_hours` have passed since it did."""
    if last_completed_at is None:
        return True
    now = now or utcnow()
    return now - last_completed_at >= timedelta(hours=frequency_hours)


def frequency_for(config, agent_type: str) -> int:
    if agent_type == AgentType.PERFORMANCE_MONITOR.value:
        override = config.monitor_frequency_hours
    else:
        override = config.optimizer_frequency_hours
    return override or DEFAULT_FREQUENCY_HOURS[agent_type]


class Dispatcher:
    def __init__(self, store, monitor: Optional[MonitorService] = None, optimizer: Optional[OptimizerService] = None):
        self.store = store
        self.optimizer = optimizer or OptimizerService(store)
        self.monitor = monitor or MonitorService(store, optimizer=self.optimizer)

    async def dispatch(self, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        configs = await self.store.list_enabled_configs()
        dispatched, skipped, errors = [], [], []

        for config in configs:
            business_id = str(config.business_id)
            try:
                campaigns = await self.store.list_active_campaigns(config.business_id)
            except Exception as e:
                logger.error(f"Dispatch could not load campaigns for business {business_id}: {e}", exc_info=True)
                errors.append({"business_id": business_id, "status": "error", "error": str(e)})
                continue
            if not campaigns:
                skipped.extend(
                    {"business_id": business_id, "agent_type": agent_type, "reason": "no_active_campaigns"}
                    for agent_type in AGENT_ORDER
                )
                continue

            optimizer_started = False
            for agent_type in AGENT_ORDER:
                entry = {"business_id": business_id, "agent_type": agent_type}
                try:
                    if agent_type == AgentType.CAMPAIGN_OPTIMIZER.value and optimizer_started:
                        skipped.append({**entry, "reason": "started_by_monitor"})
                        continue
                    reason = await self._not_due_reason(config, agent_type, now)
                    if reason:
                        skipped.append({**entry, "reason": reason})
                        continue
                    run, optimizer_run = await self._run_agent(config, agent_type)
                    optimizer_started = optimizer_started or optimizer_run is not None
                    dispatched.append({**entry, "run_id": str(run.id), "status": run.status})
                except Exception as e:
                    logger.error(f"Dispatch of {agent_type} for business {business_id} failed: {e}", exc_info=True)
                    errors.append({**entry, "status": "error", "error": str(e)})

        logger.info(
            f"Dispatch sweep: {len(configs)} businesses, {len(dispatched)} runs, "
            f"{len(skipped)} skipped, {len(errors)} errors"
        )
        return {"dispatched": dispatched, "skipped": skipped, "errors": errors}

    async def _not_due_reason(self, config, agent_type: str, now: datetime) -> Optional[str]:
        if agent_type == AgentType.CAMPAIGN_OPTIMIZER.value:
            if await optimizer_awaiting_approval(self.store, config.business_id):
                return "awaiting_approval"
        last = await self.store.get_last_completed_run(config.business_id, agent_type)
        if not should_run_agent(last.completed_at if last else None, frequency_for(config, agent_type), now):
            return "not_due"
        return None

    async def _run_agent(self, config, agent_type: str):
        """Returns (run, optimizer run the monitor started or None)."""
        owner_id = config.business.user_id if config.business else None
        if agent_type == AgentType.PERFORMANCE_MONITOR.value:
            return await self.monitor.run(config.business_id, owner_id, TriggerType.SCHEDULED.value)
        run = await self.optimizer.run(config.business_id, owner_id, TriggerType.SCHEDULED.value)
        return run, None
