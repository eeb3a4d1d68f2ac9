"""
Automation Router — Optimizer/monitor runs and the approval gate.

POST /optimize and /monitor create runs (operator auth: JWT or API key).
POST /approve is called from the dashboard with the user's JWT.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.auth import bearer_scheme, require_auth, user_id_from_credentials
from autopilot.database import get_db
from autopilot.models import AutomationRun, TriggerType
from autopilot.schemas import Anomaly, MetricsSnapshot
from autopilot.services.approval_service import DECISIONS, ApprovalGate
from autopilot.services.errors import AutomationError, NotFound, ValidationFailed
from autopilot.services.legacy import parse_run_output
from autopilot.services.lifecycle import is_terminal
from autopilot.services.meta_client import MetaGraphClient, create_meta_client
from autopilot.services.monitor_service import MonitorService
from autopilot.services.optimizer_service import OptimizerService
from autopilot.services.run_store import RunStore
from autopilot.utils import isoformat_or_none, parse_uuid, safe_error_detail

logger = logging.getLogger(__name__)

router = APIRouter()

TRIGGER_TYPES = {t.value for t in TriggerType}


def get_run_store(db: AsyncSession = Depends(get_db)) -> RunStore:
    return RunStore(db)


# ── Request Models ────────────────────────────────────────────────────

class OptimizeRequest(BaseModel):
    business_id: Optional[str] = None
    user_id: Optional[str] = None
    trigger_type: str = TriggerType.MANUAL.value
    anomalies: Optional[list[Anomaly]] = None
    campaign_metrics: Optional[list[MetricsSnapshot]] = None


class MonitorRequest(BaseModel):
    business_id: Optional[str] = None
    user_id: Optional[str] = None
    trigger_type: str = TriggerType.MANUAL.value


class ApproveRequest(BaseModel):
    run_id: Optional[str] = None
    action: Optional[str] = None  # approve, dismiss


# ── Helpers ───────────────────────────────────────────────────────────

def _require_business_id(business_id: Optional[str]) -> str:
    if not business_id:
        raise ValidationFailed("business_id is required")
    return str(parse_uuid(business_id, "business_id"))


def _check_trigger(trigger_type: str) -> str:
    if trigger_type not in TRIGGER_TYPES:
        raise ValidationFailed(f"trigger_type must be one of: {', '.join(sorted(TRIGGER_TYPES))}")
    return trigger_type


def serialize_run(run: AutomationRun, include_payload: bool = True) -> dict:
    data = {
        "id": str(run.id),
        "business_id": str(run.business_id),
        "agent_type": run.agent_type,
        "status": run.status,
        "terminal": is_terminal(run.status),
        "trigger_type": run.trigger_type,
        "trigger_reason": run.trigger_reason,
        "summary": run.summary,
        "first_person_summary": run.first_person_summary,
        "requires_approval": bool(run.requires_approval),
        "approved_at": isoformat_or_none(run.approved_at),
        "approved_action": run.approved_action,
        "approved_by": str(run.approved_by) if run.approved_by else None,
        "started_at": isoformat_or_none(run.started_at),
        "completed_at": isoformat_or_none(run.completed_at),
        "duration_ms": run.duration_ms,
        "error_message": run.error_message,
    }
    if include_payload:
        data["input"] = run.input
        data["output"] = parse_run_output(run.output).to_json()
    return data


# ── Run Creation ──────────────────────────────────────────────────────

@router.post("/optimize", dependencies=[Depends(require_auth)])
async def optimize(req: OptimizeRequest, store: RunStore = Depends(get_run_store)):
    """Run the campaign optimizer. Without anomalies/metrics, the latest monitor run supplies them."""
    business_id = _require_business_id(req.business_id)
    trigger_type = _check_trigger(req.trigger_type)
    try:
        run = await OptimizerService(store).run(
            business_id=business_id,
            user_id=req.user_id,
            trigger_type=trigger_type,
            anomalies=req.anomalies,
            campaign_metrics=req.campaign_metrics,
        )
    except AutomationError:
        raise
    except Exception as e:
        raise HTTPException(500, safe_error_detail(e, "Optimizer run failed and was marked as failed."))
    return serialize_run(run)


@router.post("/monitor", dependencies=[Depends(require_auth)])
async def monitor(req: MonitorRequest, store: RunStore = Depends(get_run_store)):
    """Check campaign performance; starts the optimizer when anomalies are found."""
    business_id = _require_business_id(req.business_id)
    trigger_type = _check_trigger(req.trigger_type)
    try:
        run, optimizer_run = await MonitorService(store).run(
            business_id=business_id,
            user_id=req.user_id,
            trigger_type=trigger_type,
        )
    except AutomationError:
        raise
    except Exception as e:
        raise HTTPException(500, safe_error_detail(e, "Monitor run failed and was marked as failed."))
    data = serialize_run(run)
    data["optimizer_run_id"] = str(optimizer_run.id) if optimizer_run else None
    return data


# ── Approval Gate ─────────────────────────────────────────────────────

@router.post("/approve")
async def approve_run(
    req: ApproveRequest,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: RunStore = Depends(get_run_store),
    platform: MetaGraphClient = Depends(create_meta_client),
):
    """
    Approve or dismiss a run awaiting approval.
    Approve executes the run's actions against Meta before responding.
    """
    if not req.run_id or not req.action:
        raise ValidationFailed("run_id and action are required")
    if req.action not in DECISIONS:
        raise ValidationFailed('action must be "approve" or "dismiss"')

    user_id = user_id_from_credentials(credentials)
    return await ApprovalGate(store, platform).decide(req.run_id, req.action, user_id)


# ── Read Endpoints ────────────────────────────────────────────────────

@router.get("/runs", dependencies=[Depends(require_auth)])
async def list_runs(
    business_id: Optional[str] = Query(None),
    agent_type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=200),
    store: RunStore = Depends(get_run_store),
):
    if business_id:
        business_id = str(parse_uuid(business_id, "business_id"))
    runs = await store.list_runs(business_id=business_id, agent_type=agent_type, status=status, limit=limit)
    return [serialize_run(r, include_payload=False) for r in runs]


@router.get("/runs/{run_id}", dependencies=[Depends(require_auth)])
async def get_run(run_id: str, store: RunStore = Depends(get_run_store)):
    run = await store.get_run(parse_uuid(run_id, "run_id"))
    if run is None:
        raise NotFound("Run not found")
    return serialize_run(run)
