"""
Automation errors — carry the HTTP status the API layer should answer with.
Registered as an exception handler in main.py so services never import FastAPI.
"""


class AutomationError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(AutomationError):
    status_code = 400


class Unauthorized(AutomationError):
    status_code = 401


class Forbidden(AutomationError):
    status_code = 403


class NotFound(AutomationError):
    status_code = 404


class StaleRunError(AutomationError):
    """Compare-and-swap on automation_runs lost: another writer moved the run first."""
    status_code = 400


class InvalidTransition(AutomationError):
    status_code = 400

    def __init__(self, current: str, event: str):
        super().__init__(f"Cannot apply '{event}' to a run in '{current}' status")
        self.current = current
        self.event = event
