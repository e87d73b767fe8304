from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.orm import Session

from leadflow.services.record_matcher import RecordMatcher
from leadflow.services.side_effects import NotificationService, SideEffects

OUTCOME_CREATED = "created"
OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_ERROR = "error"


class RowRejected(Exception):
    """A row that cannot be applied; recorded against its row number."""

    def __init__(self, message: str, data: dict[str, Any] | None = None):
        super().__init__(message)
        self.data = data


class RowConflict(Exception):
    """A row kept losing optimistic-lock races and was given up on."""

    def __init__(self, attempts: int):
        super().__init__(f"Concurrent update, gave up after {attempts} attempts")
        self.attempts = attempts


@dataclass
class RowOutcome:
    outcome: str
    created: int = 0
    updated: int = 0
    lead_ids: list[int] = field(default_factory=list)


@dataclass
class RowContext:
    actor_id: str | None
    side_effects: SideEffects
    notifier: NotificationService
    counts: Counter
    vendor_cache: dict[str, int] = field(default_factory=dict)
    matcher: RecordMatcher = field(default_factory=RecordMatcher)


@dataclass
class RowError:
    row: int
    error: str
    data: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"row": self.row, "error": self.error, "data": self.data}


@dataclass
class PipelineResult:
    kind: str
    total_rows: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    error_count: int = 0
    errors: list[RowError] = field(default_factory=list)
    counts: Counter = field(default_factory=Counter)
    cancelled: bool = False

    def record_error(self, error: RowError, cap: int) -> None:
        self.error_count += 1
        if len(self.errors) < cap:
            self.errors.append(error)

    def as_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "total_rows": self.total_rows,
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "error_count": self.error_count,
            "errors": [error.as_dict() for error in self.errors],
            "counts": dict(self.counts),
            "cancelled": self.cancelled,
        }


RowHandler = Callable[[Session, dict[str, str], dict[str, str], RowContext], RowOutcome]


def identifier_data(fields: dict[str, str]) -> dict[str, str]:
    keys = ("mbi", "first_name", "last_name", "phone", "tracking_number")
    return {key: fields.get(key, "") for key in keys}
