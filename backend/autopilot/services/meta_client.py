"""
Meta Graph API Client
Wraps the two write primitives the executor needs: pause a campaign and
update an ad set's daily budget. Form-encoded POST to graph.facebook.com.

Every call returns a MetaResult and never raises: platform failures are
per-action outcomes, not exceptions.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from autopilot.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetaResult:
    ok: bool
    data: Any = None
    error: Optional[str] = None


class MetaGraphClient:
    """
    One instance per request. The access token is passed per call because it
    belongs to the business being acted on, not to this service.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.meta_graph_base).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.meta_timeout_seconds
        self._transport = transport

    async def _post(self, resource_id: str, params: dict[str, Any], access_token: str) -> MetaResult:
        form = {k: str(v) for k, v in params.items()}
        form["access_token"] = access_token

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http:
                response = await http.post(f"{self.base_url}/{resource_id}", data=form)
        except httpx.HTTPError as e:
            logger.error(f"Meta call failed for {resource_id}: {e}")
            return MetaResult(ok=False, data=None, error=str(e) or "Network error")

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}

        error_obj = data.get("error") if isinstance(data, dict) else None
        if response.is_error or error_obj:
            message = None
            if isinstance(error_obj, dict):
                message = error_obj.get("message")
            message = message or f"Meta returned {response.status_code}"
            logger.warning(f"Meta rejected update to {resource_id}: {message}")
            return MetaResult(ok=False, data=data, error=message)

        return MetaResult(ok=True, data=data)

    async def pause_campaign(self, access_token: str, meta_campaign_id: str) -> MetaResult:
        """Set campaign status to PAUSED."""
        logger.info(f"Meta: pausing campaign {meta_campaign_id}")
        return await self._post(meta_campaign_id, {"status": "PAUSED"}, access_token)

    async def update_adset_daily_budget(
        self, access_token: str, meta_adset_id: str, daily_budget_minor_units: int,
    ) -> MetaResult:
        """
        Update an ad set's daily budget. Meta expects the account's smallest
        currency unit (cents for USD) as an integer.
        """
        budget = int(round(daily_budget_minor_units))
        logger.info(f"Meta: setting ad set {meta_adset_id} daily budget to {budget}")
        return await self._post(meta_adset_id, {"daily_budget": budget}, access_token)


def create_meta_client() -> MetaGraphClient:
    """Factory used as a FastAPI dependency; tests override it with a fake."""
    return MetaGraphClient()
