"""
Shared fixtures: an in-memory RunStore and a scripted Meta client.

FakeRunStore hands out copies of its rows, like a database session would, so
two readers of the same run can race on transition() the way real requests do.
"""

import copy
import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from autopilot.models import RunStatus
from autopilot.services.errors import StaleRunError
from autopilot.services.lifecycle import transition
from autopilot.services.meta_client import MetaResult
from autopilot.utils import utcnow


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeRunStore:
    def __init__(self):
        self.businesses: dict[str, SimpleNamespace] = {}
        self.configs: dict[str, SimpleNamespace] = {}
        self.campaigns: dict[str, SimpleNamespace] = {}
        self.runs: dict[str, SimpleNamespace] = {}
        self.activity: list[dict] = []
        self.failing_writes = False
        self.exploding_campaigns: set[str] = set()

    # ── Seeding ───────────────────────────────────────────────────────

    def add_business(self, user_id=None, token="meta-token"):
        business = SimpleNamespace(
            id=uuid.uuid4(),
            user_id=user_id or uuid.uuid4(),
            business_name="Acme Plumbing",
            facebook_access_token=token,
        )
        self.businesses[str(business.id)] = business
        return business

    def add_config(self, business, max_daily_budget_cents=None, enabled=True,
                   monitor_frequency_hours=None, optimizer_frequency_hours=None):
        config = SimpleNamespace(
            id=uuid.uuid4(),
            business_id=business.id,
            business=business,
            enabled=enabled,
            max_daily_budget_cents=max_daily_budget_cents,
            monitor_frequency_hours=monitor_frequency_hours,
            optimizer_frequency_hours=optimizer_frequency_hours,
        )
        self.configs[str(business.id)] = config
        return config

    def add_campaign(self, business, name="Campaign", status="active", daily_budget_cents=5000,
                     spend_today=0.0, impressions=0, clicks=0, conversions=0,
                     meta_campaign_id="mc_1", meta_adset_id="as_1"):
        campaign = SimpleNamespace(
            id=uuid.uuid4(),
            business_id=business.id,
            name=name,
            status=status,
            daily_budget_cents=daily_budget_cents,
            spend_today=spend_today,
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            meta_campaign_id=meta_campaign_id,
            meta_adset_id=meta_adset_id,
            created_at=utcnow(),
        )
        self.campaigns[str(campaign.id)] = campaign
        return campaign

    def add_run(self, business, agent_type="campaign_optimizer", status=RunStatus.NEEDS_APPROVAL.value,
                requires_approval=True, output=None, completed_at=None, user_id=None):
        run = SimpleNamespace(
            id=uuid.uuid4(),
            business_id=business.id,
            user_id=user_id or business.user_id,
            agent_type=agent_type,
            trigger_type="manual",
            trigger_reason="seeded",
            status=status,
            version=0,
            input={},
            output=output,
            summary=None,
            first_person_summary=None,
            error_message=None,
            duration_ms=None,
            requires_approval=requires_approval,
            approved_at=None,
            approved_action=None,
            approved_by=None,
            started_at=utcnow() - timedelta(minutes=5),
            completed_at=completed_at,
        )
        self.runs[str(run.id)] = run
        return copy.copy(run)

    # ── RunStore interface ────────────────────────────────────────────

    async def get_business(self, business_id):
        return self.businesses.get(str(business_id))

    async def get_automation_config(self, business_id):
        return self.configs.get(str(business_id))

    async def user_owns_business(self, user_id, business_id):
        business = self.businesses.get(str(business_id))
        return business is not None and str(business.user_id) == str(user_id)

    async def list_enabled_configs(self):
        return [c for c in self.configs.values() if c.enabled]

    async def list_active_campaigns(self, business_id):
        return [
            c for c in self.campaigns.values()
            if str(c.business_id) == str(business_id) and c.status in ("active", "ACTIVE", "running")
        ]

    async def get_campaign(self, campaign_id):
        if str(campaign_id) in self.exploding_campaigns:
            raise RuntimeError("connection reset while loading campaign")
        return self.campaigns.get(str(campaign_id))

    async def set_campaign_status(self, campaign_id, status):
        if self.failing_writes:
            raise RuntimeError("database unavailable")
        self.campaigns[str(campaign_id)].status = status

    async def set_campaign_budget(self, campaign_id, daily_budget_cents):
        if self.failing_writes:
            raise RuntimeError("database unavailable")
        self.campaigns[str(campaign_id)].daily_budget_cents = daily_budget_cents

    async def create_run(self, business_id, user_id, agent_type, trigger_type, trigger_reason, input_data):
        business = self.businesses[str(business_id)]
        run = self.add_run(business, agent_type=agent_type, status=RunStatus.RUNNING.value,
                           requires_approval=False, user_id=user_id)
        stored = self.runs[str(run.id)]
        stored.trigger_type = trigger_type
        stored.trigger_reason = trigger_reason
        stored.input = input_data
        stored.started_at = utcnow()
        self.activity.append({"action": f"{agent_type}_started", "entity_id": str(run.id)})
        return copy.copy(stored)

    async def get_run(self, run_id):
        run = self.runs.get(str(run_id))
        return copy.copy(run) if run else None

    async def get_last_completed_run(self, business_id, agent_type):
        done = [
            r for r in self.runs.values()
            if str(r.business_id) == str(business_id) and r.agent_type == agent_type
            and r.status == RunStatus.COMPLETED.value
        ]
        done.sort(key=lambda r: r.completed_at or datetime.min, reverse=True)
        return copy.copy(done[0]) if done else None

    async def get_latest_run(self, business_id, agent_type):
        runs = await self.list_runs(business_id=business_id, agent_type=agent_type, limit=1)
        return runs[0] if runs else None

    async def list_runs(self, business_id=None, agent_type=None, status=None, limit=20):
        runs = list(self.runs.values())
        if business_id:
            runs = [r for r in runs if str(r.business_id) == str(business_id)]
        if agent_type:
            runs = [r for r in runs if r.agent_type == agent_type]
        if status:
            runs = [r for r in runs if r.status == status]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return [copy.copy(r) for r in runs[:limit]]

    async def transition(self, run, event, **fields):
        new_status = transition(run.status, event)
        stored = self.runs[str(run.id)]
        if stored.status != run.status or stored.version != run.version:
            raise StaleRunError(f"Run {run.id} changed concurrently and is no longer '{run.status}'")
        stored.status = new_status.value
        stored.version += 1
        for key, value in fields.items():
            setattr(stored, key, value)
        return copy.copy(stored)

    async def recover(self, run):
        return copy.copy(self.runs[str(run.id)])

    async def log_activity(self, business_id, action, description, entity_id=None, details=None, status="success"):
        self.activity.append({
            "business_id": str(business_id),
            "action": action,
            "description": description,
            "entity_id": entity_id,
            "details": details,
            "status": status,
        })


class FakeMetaClient:
    """Records calls; ids in `rejected` get a Meta error, ids in `exploding` raise."""

    def __init__(self, rejected=(), exploding=()):
        self.rejected = set(rejected)
        self.exploding = set(exploding)
        self.calls: list[tuple] = []

    def _answer(self, resource_id):
        if resource_id in self.exploding:
            raise RuntimeError(f"socket closed talking to Meta about {resource_id}")
        if resource_id in self.rejected:
            return MetaResult(ok=False, data={"error": {"message": "Invalid parameter"}}, error="Invalid parameter")
        return MetaResult(ok=True, data={"success": True})

    async def pause_campaign(self, access_token, meta_campaign_id):
        self.calls.append(("pause", access_token, meta_campaign_id))
        return self._answer(meta_campaign_id)

    async def update_adset_daily_budget(self, access_token, meta_adset_id, daily_budget_minor_units):
        self.calls.append(("budget", access_token, meta_adset_id, daily_budget_minor_units))
        return self._answer(meta_adset_id)


@pytest.fixture
def store():
    return FakeRunStore()


@pytest.fixture
def meta():
    return FakeMetaClient()


@pytest.fixture
def meta_factory():
    return FakeMetaClient


@pytest.fixture
def app(store, meta):
    """The FastAPI app wired to the in-memory store and fake Meta client."""
    from autopilot.main import app
    from autopilot.routers.automation import get_run_store
    from autopilot.services.meta_client import create_meta_client

    app.dependency_overrides[get_run_store] = lambda: store
    app.dependency_overrides[create_meta_client] = lambda: meta
    yield app
    app.dependency_overrides.clear()
