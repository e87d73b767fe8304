from __future__ import annotations

from sqlalchemy.orm import Session

from leadflow.models.lead import DoctorApprovalStatus
from leadflow.services.column_aliases import classify_approval, parse_datetime
from leadflow.services.lifecycle import LifecycleEvent, apply_event, lock_lead, utcnow
from leadflow.services.reconciliation.common import match_leads, notify_transition, require_identifier
from leadflow.services.reconciliation.types import (
    OUTCOME_UNCHANGED,
    OUTCOME_UPDATED,
    RowContext,
    RowOutcome,
)

APPROVAL_EVENTS = {
    DoctorApprovalStatus.approved: LifecycleEvent.doctor_approved,
    DoctorApprovalStatus.declined: LifecycleEvent.doctor_denied,
    DoctorApprovalStatus.pending: LifecycleEvent.doctor_pending,
}

APPROVAL_COUNTERS = {
    DoctorApprovalStatus.approved: "approved",
    DoctorApprovalStatus.declined: "denied",
    DoctorApprovalStatus.pending: "pending",
}


def handle_row(
    session: Session, fields: dict[str, str], row: dict[str, str], ctx: RowContext
) -> RowOutcome:
    require_identifier(
        fields,
        ("mbi", "first_name", "last_name", "phone"),
        "Missing patient identifier (need MBI, name, or phone)",
    )
    approval = classify_approval(fields.get("approval_status"))
    decided_at = parse_datetime(fields.get("approval_date"), "approval_date") or utcnow()

    outcome = RowOutcome(outcome=OUTCOME_UNCHANGED)
    for match in match_leads(session, fields, ctx):
        lead = lock_lead(session, match.id)
        result = apply_event(
            session, lead, APPROVAL_EVENTS[approval], at=decided_at, actor_id=ctx.actor_id
        )
        if result.touched:
            outcome.outcome = OUTCOME_UPDATED
            outcome.updated += 1
            outcome.lead_ids.append(lead.id)
        notify_transition(ctx, lead, result)

    ctx.counts[APPROVAL_COUNTERS[approval]] += 1
    return outcome
