"""
Run Store — Persistence for automation runs and the records the pipeline reads.

The automation_runs row is the only state shared between concurrent requests.
Status changes are written with a compare-and-swap on (status, version), so
two approvals racing on one run cannot both win. Lifecycle points commit
immediately: a timed-out request leaves the run in its last committed status.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from autopilot.models import (
    ACTIVE_CAMPAIGN_STATUSES,
    ActivityLog,
    AutomationConfig,
    AutomationRun,
    Business,
    Campaign,
    RunStatus,
)
from autopilot.services.errors import StaleRunError
from autopilot.services.lifecycle import RunEvent, transition
from autopilot.utils import utcnow

logger = logging.getLogger(__name__)


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


class RunStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Businesses & config ───────────────────────────────────────────

    async def get_business(self, business_id) -> Optional[Business]:
        bid = _as_uuid(business_id)
        if bid is None:
            return None
        result = await self.db.execute(select(Business).where(Business.id == bid))
        return result.scalar_one_or_none()

    async def get_automation_config(self, business_id) -> Optional[AutomationConfig]:
        result = await self.db.execute(
            select(AutomationConfig).where(AutomationConfig.business_id == _as_uuid(business_id))
        )
        return result.scalar_one_or_none()

    async def user_owns_business(self, user_id, business_id) -> bool:
        uid, bid = _as_uuid(user_id), _as_uuid(business_id)
        if uid is None or bid is None:
            return False
        result = await self.db.execute(
            select(Business.id).where(Business.id == bid, Business.user_id == uid)
        )
        return result.scalar_one_or_none() is not None

    async def list_enabled_configs(self) -> list[AutomationConfig]:
        result = await self.db.execute(
            select(AutomationConfig)
            .where(AutomationConfig.enabled == True)  # noqa: E712
            .options(selectinload(AutomationConfig.business))
        )
        return list(result.scalars().all())

    # ── Campaigns ─────────────────────────────────────────────────────

    async def list_active_campaigns(self, business_id) -> list[Campaign]:
        result = await self.db.execute(
            select(Campaign)
            .where(
                Campaign.business_id == _as_uuid(business_id),
                Campaign.status.in_(ACTIVE_CAMPAIGN_STATUSES),
            )
            .order_by(Campaign.created_at)
        )
        return list(result.scalars().all())

    async def get_campaign(self, campaign_id) -> Optional[Campaign]:
        """Per-action read during execution. Runs in a savepoint so a failed read leaves the transaction usable."""
        cid = _as_uuid(campaign_id)
        if cid is None:
            return None
        async with self.db.begin_nested():
            result = await self.db.execute(select(Campaign).where(Campaign.id == cid))
            return result.scalar_one_or_none()

    async def set_campaign_status(self, campaign_id, status: str) -> None:
        """Local write-back after a platform call. Runs in a savepoint; raises on failure."""
        async with self.db.begin_nested():
            await self.db.execute(
                update(Campaign)
                .where(Campaign.id == _as_uuid(campaign_id))
                .values(status=status, updated_at=utcnow())
            )

    async def set_campaign_budget(self, campaign_id, daily_budget_cents: int) -> None:
        """Local write-back after a platform call. Runs in a savepoint; raises on failure."""
        async with self.db.begin_nested():
            await self.db.execute(
                update(Campaign)
                .where(Campaign.id == _as_uuid(campaign_id))
                .values(daily_budget_cents=daily_budget_cents, updated_at=utcnow())
            )

    # ── Runs ──────────────────────────────────────────────────────────

    async def create_run(
        self,
        business_id,
        user_id,
        agent_type: str,
        trigger_type: str,
        trigger_reason: str,
        input_data: dict,
    ) -> AutomationRun:
        run = AutomationRun(
            business_id=_as_uuid(business_id),
            user_id=_as_uuid(user_id),
            agent_type=agent_type,
            trigger_type=trigger_type,
            trigger_reason=trigger_reason,
            status=RunStatus.RUNNING.value,
            version=0,
            input=input_data,
            requires_approval=False,
            started_at=utcnow(),
        )
        self.db.add(run)
        await self.db.flush()
        self.db.add(ActivityLog(
            business_id=run.business_id,
            action=f"{agent_type}_started",
            category="automation",
            description=trigger_reason,
            entity_type="automation_run",
            entity_id=str(run.id),
            details={"trigger_type": trigger_type},
        ))
        await self.db.commit()
        logger.info(f"Created {agent_type} run {run.id} for business {business_id} ({trigger_type})")
        return run

    async def get_run(self, run_id) -> Optional[AutomationRun]:
        rid = _as_uuid(run_id)
        if rid is None:
            return None
        result = await self.db.execute(select(AutomationRun).where(AutomationRun.id == rid))
        return result.scalar_one_or_none()

    async def get_last_completed_run(self, business_id, agent_type: str) -> Optional[AutomationRun]:
        result = await self.db.execute(
            select(AutomationRun)
            .where(
                AutomationRun.business_id == _as_uuid(business_id),
                AutomationRun.agent_type == agent_type,
                AutomationRun.status == RunStatus.COMPLETED.value,
            )
            .order_by(AutomationRun.completed_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_latest_run(self, business_id, agent_type: str) -> Optional[AutomationRun]:
        """Most recently started run of this agent, whatever its status."""
        runs = await self.list_runs(business_id=business_id, agent_type=agent_type, limit=1)
        return runs[0] if runs else None

    async def list_runs(
        self,
        business_id=None,
        agent_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> list[AutomationRun]:
        query = select(AutomationRun).order_by(AutomationRun.started_at.desc()).limit(limit)
        if business_id:
            query = query.where(AutomationRun.business_id == _as_uuid(business_id))
        if agent_type:
            query = query.where(AutomationRun.agent_type == agent_type)
        if status:
            query = query.where(AutomationRun.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def transition(self, run: AutomationRun, event: RunEvent, **fields) -> AutomationRun:
        """
        Move `run` along `event` and write `fields` in the same UPDATE.
        Raises InvalidTransition for a disallowed move and StaleRunError when
        the row changed since it was read.
        """
        new_status = transition(run.status, event)
        values = {"status": new_status.value, "version": run.version + 1, **fields}
        result = await self.db.execute(
            update(AutomationRun)
            .where(
                AutomationRun.id == run.id,
                AutomationRun.status == run.status,
                AutomationRun.version == run.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise StaleRunError(f"Run {run.id} changed concurrently and is no longer '{run.status}'")
        await self.db.commit()
        await self.db.refresh(run)
        logger.info(f"Run {run.id}: {event.value} -> {new_status.value}")
        return run

    async def recover(self, run: AutomationRun) -> AutomationRun:
        """Discard uncommitted work after a failure and reload `run` from its last committed state."""
        await self.db.rollback()
        await self.db.refresh(run)
        return run

    async def log_activity(
        self,
        business_id,
        action: str,
        description: str,
        entity_id: Optional[str] = None,
        details: Optional[dict] = None,
        status: str = "success",
    ) -> None:
        self.db.add(ActivityLog(
            business_id=_as_uuid(business_id),
            action=action,
            category="automation",
            description=description,
            entity_type="automation_run",
            entity_id=entity_id,
            details=details,
            status=status,
        ))
        await self.db.flush()
