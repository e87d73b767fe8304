from __future__ import annotations

from sqlalchemy.orm import Session

from leadflow.models.lead import CollectionsDisposition, LeadStatus
from leadflow.services.column_aliases import parse_datetime
from leadflow.services.lifecycle import LifecycleEvent, apply_event, lock_lead, utcnow
from leadflow.services.reconciliation.common import (
    fill_if_empty,
    match_leads,
    notify_transition,
    require_identifier,
)
from leadflow.services.reconciliation.types import (
    OUTCOME_UNCHANGED,
    OUTCOME_UPDATED,
    RowContext,
    RowOutcome,
)


def handle_row(
    session: Session, fields: dict[str, str], row: dict[str, str], ctx: RowContext
) -> RowOutcome:
    require_identifier(
        fields,
        ("mbi", "first_name", "last_name", "phone", "tracking_number", "return_tracking_number"),
        "Missing patient identifier (need MBI, name, phone, or tracking number)",
    )
    returned_at = parse_datetime(fields.get("returned_date"), "returned_date") or utcnow()
    return_tracking = fields.get("return_tracking_number") or None

    outcome = RowOutcome(outcome=OUTCOME_UNCHANGED)
    for match in match_leads(session, fields, ctx):
        lead = lock_lead(session, match.id)
        touched = fill_if_empty(lead, "inbound_tracking_number", return_tracking)
        result = apply_event(
            session, lead, LifecycleEvent.kit_returned, at=returned_at, actor_id=ctx.actor_id
        )
        if lead.status == LeadStatus.kit_completed and (
            lead.collections_disposition != CollectionsDisposition.kit_completed
        ):
            lead.collections_disposition = CollectionsDisposition.kit_completed
            touched = True
        if result.touched or touched:
            outcome.outcome = OUTCOME_UPDATED
            outcome.updated += 1
            outcome.lead_ids.append(lead.id)
        if result.changed:
            ctx.counts["completed"] += 1
        notify_transition(ctx, lead, result)
    return outcome
