"""Lead status transitions.

Every status change, manual or automated, goes through this module so that
legality, stage timestamps and the audit trail stay in one place.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from leadflow.core.settings import settings
from leadflow.models.lead import DoctorApprovalStatus, Lead, LeadStatus
from leadflow.services.audit import log_event
from leadflow.services.errors import ConcurrentUpdateError, IllegalTransitionError, LeadNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LifecycleEvent(str, enum.Enum):
    doctor_approved = "DOCTOR_APPROVED"
    doctor_denied = "DOCTOR_DENIED"
    doctor_pending = "DOCTOR_PENDING"
    shipped = "SHIPPED"
    outbound_delivered = "OUTBOUND_DELIVERED"
    outbound_exception = "OUTBOUND_EXCEPTION"
    inbound_in_transit = "INBOUND_IN_TRANSIT"
    kit_returned = "KIT_RETURNED"
    imported_status = "IMPORTED_STATUS"


STATUS_RANK: dict[LeadStatus, int] = {
    LeadStatus.submitted: 0,
    LeadStatus.advocate_review: 1,
    LeadStatus.qualified: 2,
    LeadStatus.sent_to_consult: 3,
    LeadStatus.approved: 4,
    LeadStatus.ready_to_ship: 5,
    LeadStatus.shipped: 6,
    LeadStatus.delivered: 7,
    LeadStatus.kit_returning: 8,
    LeadStatus.collections: 9,
    LeadStatus.kit_completed: 10,
}

AUTOMATION_FINAL = frozenset({LeadStatus.kit_completed, LeadStatus.returned})

STAGE_TIMESTAMPS: dict[LeadStatus, str] = {
    LeadStatus.advocate_review: "advocate_reviewed_at",
    LeadStatus.sent_to_consult: "consult_date",
    LeadStatus.approved: "doctor_approval_date",
    LeadStatus.shipped: "kit_shipped_date",
    LeadStatus.delivered: "kit_delivered_date",
    LeadStatus.kit_completed: "kit_returned_date",
}

# Stages implied by later evidence; a kit cannot ship unapproved or come back unshipped.
EVIDENCE_STAGES = (LeadStatus.approved, LeadStatus.shipped)

# Physical carrier evidence outranks an earlier disqualification.
SHIPPING_EVIDENCE_EVENTS = frozenset(
    {
        LifecycleEvent.shipped,
        LifecycleEvent.outbound_delivered,
        LifecycleEvent.kit_returned,
    }
)

MANUAL_TRANSITIONS: dict[LeadStatus, frozenset[LeadStatus]] = {
    LeadStatus.submitted: frozenset(
        {
            LeadStatus.advocate_review,
            LeadStatus.qualified,
            LeadStatus.doesnt_qualify,
            LeadStatus.returned,
        }
    ),
    LeadStatus.advocate_review: frozenset(
        {
            LeadStatus.qualified,
            LeadStatus.doesnt_qualify,
            LeadStatus.submitted,
            LeadStatus.returned,
        }
    ),
    LeadStatus.qualified: frozenset(
        {LeadStatus.sent_to_consult, LeadStatus.doesnt_qualify, LeadStatus.advocate_review}
    ),
    LeadStatus.sent_to_consult: frozenset({LeadStatus.approved, LeadStatus.doesnt_qualify}),
    LeadStatus.approved: frozenset(
        {LeadStatus.ready_to_ship, LeadStatus.shipped, LeadStatus.doesnt_qualify}
    ),
    LeadStatus.ready_to_ship: frozenset({LeadStatus.shipped, LeadStatus.approved}),
    LeadStatus.shipped: frozenset(
        {
            LeadStatus.delivered,
            LeadStatus.returned,
            LeadStatus.kit_returning,
            LeadStatus.collections,
        }
    ),
    LeadStatus.delivered: frozenset(
        {
            LeadStatus.kit_returning,
            LeadStatus.collections,
            LeadStatus.kit_completed,
            LeadStatus.returned,
        }
    ),
    LeadStatus.kit_returning: frozenset(
        {LeadStatus.kit_completed, LeadStatus.collections, LeadStatus.returned}
    ),
    LeadStatus.collections: frozenset(
        {LeadStatus.kit_returning, LeadStatus.kit_completed, LeadStatus.returned}
    ),
    LeadStatus.kit_completed: frozenset(),
    LeadStatus.returned: frozenset(),
    LeadStatus.doesnt_qualify: frozenset({LeadStatus.advocate_review}),
}


@dataclass
class TransitionResult:
    lead_id: int
    previous_status: LeadStatus
    status: LeadStatus
    path: list[LeadStatus] = field(default_factory=list)
    forced: bool = False
    fields_changed: bool = False

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status

    @property
    def touched(self) -> bool:
        return self.changed or self.fields_changed


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def rank(status: LeadStatus) -> int | None:
    return STATUS_RANK.get(status)


def stamp_stage(lead: Lead, status: LeadStatus, at: datetime) -> bool:
    attr = STAGE_TIMESTAMPS.get(status)
    if not attr or getattr(lead, attr) is not None:
        return False
    setattr(lead, attr, at)
    return True


def is_legal_manual_transition(current: LeadStatus, target: LeadStatus) -> bool:
    if current == target:
        return True
    return target in MANUAL_TRANSITIONS.get(current, frozenset())


def _forced_path(current: LeadStatus, target: LeadStatus) -> list[LeadStatus]:
    current_rank = rank(current)
    floor = -1 if current_rank is None else current_rank
    target_rank = STATUS_RANK[target]
    path = [
        stage
        for stage in EVIDENCE_STAGES
        if floor < STATUS_RANK[stage] < target_rank
    ]
    path.append(target)
    return path


def _record_step(
    session: Session,
    lead: Lead,
    *,
    before: LeadStatus,
    after: LeadStatus,
    forced: bool,
    event: str,
    actor_id: str | None,
) -> None:
    log_event(
        session,
        actor_id=actor_id,
        action="lead.status_forced" if forced else "lead.status_changed",
        entity_type="lead",
        entity_id=lead.id,
        before_data={"status": before.value},
        after_data={"status": after.value, "event": event},
    )


def _walk(
    session: Session,
    lead: Lead,
    path: list[LeadStatus],
    *,
    at: datetime,
    event: str,
    actor_id: str | None,
) -> None:
    for index, stage in enumerate(path):
        before = lead.status
        lead.status = stage
        stamp_stage(lead, stage, at)
        forced = index < len(path) - 1
        if forced:
            logger.info(
                "Forced progression %s -> %s for lead %s",
                before.value,
                stage.value,
                lead.id,
                extra={"lead_id": lead.id, "event": event},
            )
        _record_step(
            session, lead, before=before, after=stage, forced=forced, event=event, actor_id=actor_id
        )


def advance_to(
    session: Session,
    lead: Lead,
    target: LeadStatus,
    *,
    event: LifecycleEvent,
    at: datetime | None = None,
    actor_id: str | None = None,
) -> TransitionResult:
    """Move a lead forward to ``target``, filling in implied stages.

    Never moves a lead backwards and never touches a lead automation treats as final.
    """
    previous = lead.status
    result = TransitionResult(lead_id=lead.id, previous_status=previous, status=previous)
    if previous in AUTOMATION_FINAL:
        return result
    if previous == LeadStatus.doesnt_qualify and event not in SHIPPING_EVIDENCE_EVENTS:
        return result
    current_rank = rank(previous)
    if current_rank is not None and current_rank >= STATUS_RANK[target]:
        return result

    path = _forced_path(previous, target)
    _walk(session, lead, path, at=at or utcnow(), event=event.value, actor_id=actor_id)
    result.status = lead.status
    result.path = path
    result.forced = len(path) > 1
    return result


def apply_event(
    session: Session,
    lead: Lead,
    event: LifecycleEvent,
    *,
    at: datetime | None = None,
    target_status: LeadStatus | None = None,
    actor_id: str | None = None,
) -> TransitionResult:
    at = at or utcnow()
    previous = lead.status

    if event == LifecycleEvent.doctor_approved:
        result = advance_to(session, lead, LeadStatus.approved, event=event, at=at, actor_id=actor_id)
        if result.changed or (
            previous not in AUTOMATION_FINAL and previous != LeadStatus.doesnt_qualify
        ):
            if lead.doctor_approval_status != DoctorApprovalStatus.approved:
                lead.doctor_approval_status = DoctorApprovalStatus.approved
                result.fields_changed = True
        return result

    if event == LifecycleEvent.doctor_denied:
        result = TransitionResult(lead_id=lead.id, previous_status=previous, status=previous)
        current_rank = rank(previous)
        if current_rank is None or current_rank >= STATUS_RANK[LeadStatus.shipped]:
            return result
        lead.doctor_approval_status = DoctorApprovalStatus.declined
        _walk(session, lead, [LeadStatus.doesnt_qualify], at=at, event=event.value, actor_id=actor_id)
        result.status = lead.status
        result.path = [LeadStatus.doesnt_qualify]
        result.fields_changed = True
        return result

    if event == LifecycleEvent.doctor_pending:
        result = TransitionResult(lead_id=lead.id, previous_status=previous, status=previous)
        if lead.doctor_approval_status is None:
            lead.doctor_approval_status = DoctorApprovalStatus.pending
            result.fields_changed = True
        return result

    if event == LifecycleEvent.shipped:
        return advance_to(session, lead, LeadStatus.shipped, event=event, at=at, actor_id=actor_id)

    if event == LifecycleEvent.outbound_delivered:
        return advance_to(session, lead, LeadStatus.delivered, event=event, at=at, actor_id=actor_id)

    if event == LifecycleEvent.outbound_exception:
        return TransitionResult(lead_id=lead.id, previous_status=previous, status=previous)

    if event == LifecycleEvent.inbound_in_transit:
        if previous not in (LeadStatus.shipped, LeadStatus.delivered):
            return TransitionResult(lead_id=lead.id, previous_status=previous, status=previous)
        return advance_to(
            session, lead, LeadStatus.kit_returning, event=event, at=at, actor_id=actor_id
        )

    if event == LifecycleEvent.kit_returned:
        return advance_to(
            session, lead, LeadStatus.kit_completed, event=event, at=at, actor_id=actor_id
        )

    if event == LifecycleEvent.imported_status:
        if target_status is None or rank(target_status) is None:
            return TransitionResult(lead_id=lead.id, previous_status=previous, status=previous)
        return advance_to(session, lead, target_status, event=event, at=at, actor_id=actor_id)

    raise ValueError(f"Unsupported lifecycle event: {event}")


def transition_manual(
    session: Session,
    lead: Lead,
    target: LeadStatus,
    *,
    actor_id: str | None,
    at: datetime | None = None,
) -> TransitionResult:
    previous = lead.status
    result = TransitionResult(lead_id=lead.id, previous_status=previous, status=previous)
    if previous == target:
        return result
    if not is_legal_manual_transition(previous, target):
        raise IllegalTransitionError(previous.value, target.value)
    _walk(session, lead, [target], at=at or utcnow(), event="MANUAL", actor_id=actor_id)
    result.status = lead.status
    result.path = [target]
    return result


def lock_lead(session: Session, lead_id: int) -> Lead:
    """Re-read a lead, row-locked where the database supports it."""
    lead = session.get(Lead, lead_id, with_for_update=True, populate_existing=True)
    if lead is None:
        raise LeadNotFoundError(f"Lead {lead_id} not found")
    return lead


def apply_serialized(
    session: Session,
    lead_id: int,
    mutate: Callable[[Lead], T],
    *,
    attempts: int | None = None,
) -> T:
    """Run ``mutate`` against a freshly read lead, retrying on a lost race.

    ``mutate`` must hold the whole unit of work for the lead: a conflict rolls
    back the session before the lead is re-read and ``mutate`` re-evaluated.
    """
    attempts = attempts or settings.lifecycle_max_attempts
    for attempt in range(1, attempts + 1):
        lead = lock_lead(session, lead_id)
        try:
            result = mutate(lead)
            session.flush()
            return result
        except StaleDataError:
            session.rollback()
            logger.warning(
                "Lead %s changed concurrently (attempt %s/%s); re-reading",
                lead_id,
                attempt,
                attempts,
                extra={"lead_id": lead_id},
            )
    raise ConcurrentUpdateError(lead_id, attempts)
