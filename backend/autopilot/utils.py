"""
Shared utility functions.
"""

import logging
import math
import uuid as uuid_mod
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def parse_uuid(value: Optional[str], field_name: str = "id") -> uuid_mod.UUID:
    """
    Parse a string as UUID, raising a 400 ValidationFailed on invalid input
    instead of letting a bare ValueError bubble up as a 500.
    """
    from autopilot.services.errors import ValidationFailed

    if isinstance(value, uuid_mod.UUID):
        return value
    try:
        return uuid_mod.UUID(value)
    except (ValueError, AttributeError, TypeError):
        raise ValidationFailed(f"Invalid UUID for '{field_name}': {value!r}")


def safe_error_detail(exc: Exception, fallback: str = "An internal error occurred. Please try again later.") -> str:
    """
    Return a sanitized error message safe for client consumption.
    Logs the real exception detail server-side.
    """
    logger.error(f"Operation failed: {exc}", exc_info=True)
    return fallback


def utcnow() -> datetime:
    """
    Return the current UTC time as a naive datetime (no tzinfo).
    Naive datetimes are used because our DB columns are TIMESTAMP WITHOUT TIME ZONE.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def safe_float(val: Any, default: float = 0.0) -> float:
    try:
        return float(val) if val is not None else default
    except (ValueError, TypeError):
        return default


def safe_int(val: Any, default: int = 0) -> int:
    try:
        return int(val) if val is not None else default
    except (ValueError, TypeError):
        return default


def isoformat_or_none(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None
