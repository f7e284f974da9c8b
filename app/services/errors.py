"""Error taxonomy for the payment lifecycle.

Each error carries the HTTP status and a machine-readable ``code`` so the API
layer can render it without knowing about individual failure modes.
"""

from __future__ import annotations

from typing import Any


class ScheduleError(Exception):
    status_code = 400
    code = "bad_request"

    def __init__(self, reason: str, *, code: str | None = None, **details: Any):
        super().__init__(reason)
        self.reason = reason
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.reason, "code": self.code, **self.details}


class InvalidRequest(ScheduleError):
    pass


class ScheduleNotFound(ScheduleError):
    status_code = 404
    code = "not_found"

    def __init__(self, schedule_id: str):
        super().__init__("Payment not found", scheduleId=schedule_id)


class PreconditionFailed(ScheduleError):
    """The compare-and-swap predicate did not match.

    ``reason`` comes from a diagnostic re-read and is informational only.
    """

    status_code = 409
    code = "unavailable"


class TerminalState(PreconditionFailed):
    code = "failed"

    def __init__(self, schedule_id: str, reason: str = "Payment status is failed"):
        super().__init__(reason, scheduleId=schedule_id, currentStatus="failed")
