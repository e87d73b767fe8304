from __future__ import annotations

from typing import Any


class RowValidationError(ValueError):
    def __init__(self, field: str, raw: Any, message: str | None = None):
        self.field = field
        self.raw = raw
        super().__init__(message or f"Invalid {field}: {raw!r}")


class IllegalTransitionError(ValueError):
    def __init__(self, current_status: str, attempted_status: str):
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__(f"Illegal status transition {current_status} -> {attempted_status}")

    def as_dict(self) -> dict[str, str]:
        return {
            "error": "illegal_transition",
            "current_status": self.current_status,
            "attempted_status": self.attempted_status,
        }


class DuplicateSubmissionError(Exception):
    def __init__(self, decision):
        self.decision = decision
        super().__init__(decision.message)


class LeadNotFoundError(Exception):
    pass


class AlertNotFoundError(Exception):
    pass


class VendorNotFoundError(Exception):
    pass


class ConcurrentUpdateError(Exception):
    def __init__(self, lead_id: int, attempts: int):
        self.lead_id = lead_id
        self.attempts = attempts
        super().__init__(f"Lead {lead_id} changed concurrently; gave up after {attempts} attempts")
