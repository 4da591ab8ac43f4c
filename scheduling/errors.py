"""Error taxonomy raised by the scheduling core.

Each error carries the HTTP status the services answer with, so route handlers
can let them propagate to the shared exception handler in ``common.errors``.
"""
from __future__ import annotations

from datetime import time
from typing import Any, Dict, List, Optional


class SchedulingError(Exception):
    """Base class for every scheduling failure."""

    status_code = 400
    error = "scheduling_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "detail": self.message}


class ValidationError(SchedulingError):
    """A request violates a booking rule; ``rule`` names the rule."""

    status_code = 422
    error = "validation_error"

    def __init__(self, rule: str, message: str) -> None:
        super().__init__(message)
        self.rule = rule

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["rule"] = self.rule
        return payload


class InvalidOperatingWindow(ValidationError):
    def __init__(self, message: str) -> None:
        super().__init__("invalid_operating_window", message)


class ConflictError(SchedulingError):
    """Lost a race for an overlapping range; re-fetch availability and pick again."""

    status_code = 409
    error = "conflict"


class NotFoundError(SchedulingError):
    status_code = 404
    error = "not_found"


class ForbiddenError(SchedulingError):
    status_code = 403
    error = "forbidden"


class InvalidStateError(SchedulingError):
    status_code = 409
    error = "invalid_state"


class PartialFailureError(SchedulingError):
    """Some slots of a multi-slot booking stayed committed after a failure."""

    status_code = 409
    error = "partial_failure"

    def __init__(
        self,
        message: str,
        committed: List[time],
        failed: List[time],
        uncancelled: Optional[List[time]] = None,
    ) -> None:
        super().__init__(message)
        self.committed = list(committed)
        self.failed = list(failed)
        self.uncancelled = list(uncancelled or [])

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["committed"] = [slot.strftime("%H:%M") for slot in self.committed]
        payload["failed"] = [slot.strftime("%H:%M") for slot in self.failed]
        payload["uncancelled"] = [slot.strftime("%H:%M") for slot in self.uncancelled]
        return payload
