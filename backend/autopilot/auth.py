"""
Authentication — JWT (dashboard users) and API-key (operators, programmatic).

- Approvals: user JWT only. Include: Authorization: Bearer <jwt>
- Run creation / listing: JWT or API_KEY. Include: Authorization: Bearer <token>

In development with no API_KEY set, operator auth is skipped for local dev.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from autopilot.config import get_settings
from autopilot.services.auth_service import decode_access_token
from autopilot.services.errors import Unauthorized

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def require_auth(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    """
    Accept either JWT (user login) or API_KEY (programmatic).
    Returns "jwt" if JWT valid, or the API key string if API_KEY matched.
    """
    settings = get_settings()
    api_key = settings.api_key

    if not api_key:
        if settings.is_production:
            raise HTTPException(
                status_code=500,
                detail="Server misconfiguration: API_KEY must be set in production.",
            )
        return "dev-no-auth"

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Include header: Authorization: Bearer <token>",
        )

    token = credentials.credentials
    payload = decode_access_token(token)
    if payload and payload.get("sub"):
        return "jwt"
    if token == api_key:
        return token

    raise HTTPException(status_code=401, detail="Invalid or expired token. Please log in again.")


def user_id_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    """JWT `sub` of the caller, or 401."""
    if not credentials:
        raise Unauthorized("Missing authorization")
    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise Unauthorized("Invalid or expired token. Please log in again.")
    return str(payload["sub"])

