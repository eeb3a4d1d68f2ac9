"""
Cron / Scheduled Jobs — Endpoint for Upstash QStash or any external cron.

Verifies CRON_SECRET, then runs every agent that is due for each business with
automation enabled (performance monitor every 4h, optimizer every 24h unless
the business overrides the frequency).

  POST https://your-app/api/cron/dispatch
  Header: X-Cron-Secret: <CRON_SECRET>   (or Authorization: Bearer <CRON_SECRET>)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from autopilot.config import get_settings
from autopilot.routers.automation import get_run_store
from autopilot.services.dispatch_service import Dispatcher
from autopilot.services.run_store import RunStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def require_cron_secret(
    x_cron_secret: Optional[str] = Header(None, alias="X-Cron-Secret"),
    authorization: Optional[str] = Header(None),
) -> None:
    """Verify request came from the scheduler with a valid secret."""
    secret = get_settings().cron_secret
    if not secret:
        raise HTTPException(500, "CRON_SECRET not configured")
    token = x_cron_secret
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
    if token != secret:
        raise HTTPException(401, "Invalid cron secret")


@router.post("/dispatch")
async def cron_dispatch(
    _: None = Depends(require_cron_secret),
    store: RunStore = Depends(get_run_store),
):
    result = await Dispatcher(store).dispatch()
    return {"status": "ok", **result}
