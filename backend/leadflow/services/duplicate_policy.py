"""Duplicate-submission rules for an MBI and test type.

Pure decision logic: callers load the existing leads and pass them in.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence

from leadflow.models.lead import LeadStatus, LeadTestType

DUPLICATE_COOLDOWN_DAYS = 21
SAME_TEST_ALWAYS_BLOCKS = True

STATUS_ALLOWED = "ALLOWED"
STATUS_BLOCKED = "BLOCKED"

REASON_SAME_TEST = "SAME_TEST"
REASON_RECENT_CONSULTATION = "RECENT_CONSULTATION"
REASON_TOO_SOON = "TOO_SOON"

CONSULTED_STATUSES = frozenset(
    {
        LeadStatus.sent_to_consult,
        LeadStatus.approved,
        LeadStatus.ready_to_ship,
        LeadStatus.shipped,
        LeadStatus.delivered,
        LeadStatus.kit_returning,
        LeadStatus.collections,
        LeadStatus.kit_completed,
    }
)

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class ExistingRecord:
    id: int | None
    test_type: LeadTestType
    status: LeadStatus
    created_at: datetime
    consult_date: datetime | None = None
    vendor: str | None = None

    @classmethod
    def from_lead(cls, lead) -> "ExistingRecord":
        vendor = getattr(lead, "vendor", None)
        return cls(
            id=lead.id,
            test_type=LeadTestType(lead.test_type),
            status=LeadStatus(lead.status),
            created_at=lead.created_at,
            consult_date=lead.consult_date,
            vendor=vendor.name if vendor is not None else None,
        )


@dataclass(frozen=True)
class RecordEvidence:
    id: int | None
    test_type: LeadTestType
    submitted_at: datetime
    days_since: int
    status: LeadStatus
    was_consulted: bool
    consultation_date: datetime | None
    vendor: str | None

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "testType": self.test_type.value,
            "submittedAt": self.submitted_at.isoformat(),
            "daysSince": self.days_since,
            "vendor": self.vendor,
            "status": self.status.value,
            "wasConsulted": self.was_consulted,
            "consultationDate": self.consultation_date.isoformat() if self.consultation_date else None,
        }


@dataclass(frozen=True)
class Decision:
    status: str
    message: str
    reason_code: str | None = None
    evidence: list[RecordEvidence] = field(default_factory=list)
    days_since: int | None = None
    required_wait_days: int | None = None

    @property
    def allowed(self) -> bool:
        return self.status == STATUS_ALLOWED

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "status": self.status,
            "message": self.message,
            "existingLeads": [item.as_dict() for item in self.evidence],
        }
        if self.reason_code:
            payload["reason"] = self.reason_code
        if self.days_since is not None:
            payload["daysSince"] = self.days_since
        if self.required_wait_days is not None:
            payload["requiredWaitDays"] = self.required_wait_days
        return payload


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole calendar days between two instants, rounded up."""
    delta = abs((as_utc(later) - as_utc(earlier)).total_seconds())
    return math.ceil(delta / _SECONDS_PER_DAY)


def is_consulted(status: LeadStatus | str) -> bool:
    return LeadStatus(status) in CONSULTED_STATUSES


def _evidence(record: ExistingRecord, now: datetime) -> RecordEvidence:
    return RecordEvidence(
        id=record.id,
        test_type=record.test_type,
        submitted_at=as_utc(record.created_at),
        days_since=days_between(record.created_at, now),
        status=record.status,
        was_consulted=is_consulted(record.status),
        consultation_date=as_utc(record.consult_date) if record.consult_date else None,
        vendor=record.vendor,
    )


def decide(
    candidate_mbi: str,
    candidate_test_type: LeadTestType | str,
    existing: Iterable[ExistingRecord],
    *,
    now: datetime | None = None,
    cooldown_days: int = DUPLICATE_COOLDOWN_DAYS,
) -> Decision:
    test_type = LeadTestType(candidate_test_type)
    now = as_utc(now or datetime.now(timezone.utc))
    records: Sequence[ExistingRecord] = sorted(
        existing, key=lambda item: as_utc(item.created_at), reverse=True
    )

    if not records:
        return Decision(status=STATUS_ALLOWED, message="MBI is available for this test type")

    if SAME_TEST_ALWAYS_BLOCKS:
        for record in records:
            if record.test_type != test_type:
                continue
            evidence = _evidence(record, now)
            if evidence.was_consulted:
                message = (
                    f"Patient already consulted for {test_type.value} test "
                    f"(Status: {record.status.value}). Cannot submit duplicate."
                )
            else:
                message = (
                    f"Patient already has {test_type.value} test in system. "
                    "Cannot submit duplicate."
                )
            return Decision(
                status=STATUS_BLOCKED,
                reason_code=REASON_SAME_TEST,
                message=message,
                evidence=[evidence],
            )

    for record in records:
        evidence = _evidence(record, now)
        if evidence.days_since >= cooldown_days:
            continue
        if evidence.was_consulted:
            return Decision(
                status=STATUS_BLOCKED,
                reason_code=REASON_RECENT_CONSULTATION,
                message=(
                    f"Patient was consulted for {record.test_type.value} test "
                    f"{evidence.days_since} days ago (Status: {record.status.value}). "
                    f"Must wait {cooldown_days} days between different tests after consultation."
                ),
                evidence=[evidence],
                days_since=evidence.days_since,
                required_wait_days=cooldown_days,
            )
        return Decision(
            status=STATUS_BLOCKED,
            reason_code=REASON_TOO_SOON,
            message=(
                f"Patient submitted {record.test_type.value} test {evidence.days_since} days ago "
                f"(Status: {record.status.value}). Must wait {cooldown_days} days between different tests."
            ),
            evidence=[evidence],
            days_since=evidence.days_since,
            required_wait_days=cooldown_days,
        )

    evidence = [_evidence(record, now) for record in records]
    latest = evidence[0]
    kind = "consultation" if latest.was_consulted else "test"
    return Decision(
        status=STATUS_ALLOWED,
        message=(
            f"Available for {test_type.value} test (previous {latest.test_type.value} "
            f"{kind} was {latest.days_since} days ago)"
        ),
        evidence=evidence,
    )
