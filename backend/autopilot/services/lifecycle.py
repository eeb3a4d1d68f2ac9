"""
Run lifecycle — the allowed AutomationRun status transitions.

    running ──complete──────────▶ completed
    running ──await_approval────▶ needs_approval ──approve──▶ approved ──finish_execution──▶ completed
    running ──fail──────────────▶ failed          └─dismiss──▶ dismissed

completed, failed and dismissed are terminal. Every status change goes
through transition(); RunStore persists the result with a compare-and-swap.
"""

import enum

from autopilot.models import RunStatus
from autopilot.services.errors import InvalidTransition


class RunEvent(str, enum.Enum):
    COMPLETE = "complete"
    AWAIT_APPROVAL = "await_approval"
    FAIL = "fail"
    APPROVE = "approve"
    DISMISS = "dismiss"
    FINISH_EXECUTION = "finish_execution"


TRANSITIONS: dict[tuple[RunStatus, RunEvent], RunStatus] = {
    (RunStatus.RUNNING, RunEvent.COMPLETE): RunStatus.COMPLETED,
    (RunStatus.RUNNING, RunEvent.AWAIT_APPROVAL): RunStatus.NEEDS_APPROVAL,
    (RunStatus.RUNNING, RunEvent.FAIL): RunStatus.FAILED,
    (RunStatus.NEEDS_APPROVAL, RunEvent.APPROVE): RunStatus.APPROVED,
    (RunStatus.NEEDS_APPROVAL, RunEvent.DISMISS): RunStatus.DISMISSED,
    (RunStatus.APPROVED, RunEvent.FINISH_EXECUTION): RunStatus.COMPLETED,
}

TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.DISMISSED})


def transition(status: str, event: RunEvent) -> RunStatus:
    """Return the status after `event`, or raise InvalidTransition."""
    try:
        current = RunStatus(status)
    except ValueError:
        raise InvalidTransition(str(status), RunEvent(event).value)
    target = TRANSITIONS.get((current, RunEvent(event)))
    if target is None:
        raise InvalidTransition(current.value, RunEvent(event).value)
    return target


def is_terminal(status: str) -> bool:
    return status in {s.value for s in TERMINAL_STATUSES}
