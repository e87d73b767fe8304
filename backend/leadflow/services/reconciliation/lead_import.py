"""Lead-creating imports: vendor bulk lead sheets and the lab master-data sheet."""
from __future__ import annotations

from sqlalchemy.orm import Session

from leadflow.core.settings import settings
from leadflow.models.lead import Lead, LeadStatus, LeadTestType
from leadflow.services.alerts import check_for_duplicate
from leadflow.services.audit import log_event
from leadflow.services.column_aliases import (
    map_test_type,
    normalize_phone,
    parse_date,
    validate_mbi,
)
from leadflow.services.duplicate_policy import ExistingRecord, decide
from leadflow.services.lifecycle import LifecycleEvent, apply_event, lock_lead
from leadflow.services.reconciliation.common import fill_if_empty, notify_transition
from leadflow.services.reconciliation.types import (
    OUTCOME_CREATED,
    OUTCOME_UNCHANGED,
    OUTCOME_UPDATED,
    RowContext,
    RowOutcome,
    RowRejected,
    identifier_data,
)
from leadflow.services.reconciliation.vendors import resolve_or_create_vendor
from leadflow.services.record_matcher import (
    LEAD_IMPORT_STRATEGIES,
    STRATEGY_MBI,
    IdentifierBundle,
    RecordMatcher,
)

IMPORT_MATCHER = RecordMatcher(LEAD_IMPORT_STRATEGIES)

PROFILE_FIELDS = ("email", "street", "city", "state", "zip_code")


def imported_status(fields: dict[str, str]) -> LeadStatus:
    completion = fields.get("completion_status", "").lower()
    notes = fields.get("notes", "").lower()
    delivery = fields.get("delivery_status", "").lower()
    if "completed" in completion or "completed" in notes or "arrived" in notes:
        return LeadStatus.kit_completed
    if "delivered" in delivery:
        return LeadStatus.shipped
    if "delayed" in delivery:
        return LeadStatus.ready_to_ship
    return LeadStatus.submitted


def _profile_updates(lead: Lead, fields: dict[str, str], date_of_birth, phone) -> bool:
    changed = False
    for attr in PROFILE_FIELDS:
        changed = fill_if_empty(lead, attr, fields.get(attr) or None) or changed
    if date_of_birth and lead.date_of_birth is None:
        lead.date_of_birth = date_of_birth
        changed = True
    changed = fill_if_empty(lead, "phone", phone) or changed
    changed = fill_if_empty(lead, "tracking_number", fields.get("tracking_number") or None) or changed
    changed = (
        fill_if_empty(lead, "inbound_tracking_number", fields.get("return_tracking_number") or None)
        or changed
    )
    return changed


def _import_row(
    session: Session,
    fields: dict[str, str],
    ctx: RowContext,
    *,
    required: tuple[str, ...],
    default_test_type: LeadTestType,
    status_from_row: bool,
) -> RowOutcome:
    missing = [key for key in required if not fields.get(key)]
    if missing:
        raise RowRejected(
            "Missing required fields: " + ", ".join(missing), identifier_data(fields)
        )

    mbi = validate_mbi(fields["mbi"]) if fields.get("mbi") else None
    phone = normalize_phone(fields.get("phone"))
    if not mbi and not phone:
        raise RowRejected("Missing patient identifier (need MBI or phone)", identifier_data(fields))
    date_of_birth = parse_date(fields.get("date_of_birth"), "date_of_birth")
    test_type = map_test_type(fields.get("test_type"), default=default_test_type)
    target_status = imported_status(fields) if status_from_row else LeadStatus.submitted

    bundle = IdentifierBundle(
        mbi=mbi,
        first_name=fields.get("first_name"),
        last_name=fields.get("last_name"),
        phone=phone,
    )
    match = IMPORT_MATCHER.match(session, bundle)
    same_test = [lead for lead in match.leads if lead.test_type == test_type]

    if same_test:
        outcome = RowOutcome(outcome=OUTCOME_UNCHANGED)
        for existing in same_test:
            lead = lock_lead(session, existing.id)
            touched = _profile_updates(lead, fields, date_of_birth, phone)
            result = apply_event(
                session,
                lead,
                LifecycleEvent.imported_status,
                target_status=target_status,
                actor_id=ctx.actor_id,
            )
            if touched or result.touched:
                outcome.outcome = OUTCOME_UPDATED
                outcome.updated += 1
                outcome.lead_ids.append(lead.id)
            notify_transition(ctx, lead, result)
        return outcome

    if mbi and match.strategy == STRATEGY_MBI:
        decision = decide(
            mbi,
            test_type,
            [ExistingRecord.from_lead(lead) for lead in match.leads],
            cooldown_days=settings.duplicate_cooldown_days,
        )
        if not decision.allowed:
            raise RowRejected(decision.message, {"mbi": mbi, "reason": decision.reason_code})

    vendor = resolve_or_create_vendor(session, fields.get("lab"), ctx.vendor_cache)
    lead = Lead(
        mbi=mbi,
        first_name=fields["first_name"],
        last_name=fields["last_name"],
        date_of_birth=date_of_birth,
        phone=phone,
        email=fields.get("email") or None,
        street=fields.get("street") or None,
        city=fields.get("city") or None,
        state=fields.get("state") or None,
        zip_code=fields.get("zip_code") or None,
        test_type=test_type,
        status=LeadStatus.submitted,
        vendor_id=vendor.id,
        vendor_code=vendor.code,
        tracking_number=fields.get("tracking_number") or None,
        inbound_tracking_number=fields.get("return_tracking_number") or None,
    )
    session.add(lead)
    session.flush()
    log_event(
        session,
        actor_id=ctx.actor_id,
        action="lead.imported",
        entity_type="lead",
        entity_id=lead.id,
        after_data={"vendor_code": vendor.code, "test_type": test_type.value},
    )
    if target_status != LeadStatus.submitted:
        apply_event(
            session,
            lead,
            LifecycleEvent.imported_status,
            target_status=target_status,
            actor_id=ctx.actor_id,
        )
    if mbi:
        check_for_duplicate(session, lead.id)
    return RowOutcome(outcome=OUTCOME_CREATED, created=1, lead_ids=[lead.id])


def handle_bulk_lead_row(
    session: Session, fields: dict[str, str], row: dict[str, str], ctx: RowContext
) -> RowOutcome:
    return _import_row(
        session,
        fields,
        ctx,
        required=("first_name", "last_name"),
        default_test_type=LeadTestType.immune,
        status_from_row=False,
    )


def handle_master_data_row(
    session: Session, fields: dict[str, str], row: dict[str, str], ctx: RowContext
) -> RowOutcome:
    return _import_row(
        session,
        fields,
        ctx,
        required=("first_name", "last_name", "phone", "lab"),
        default_test_type=LeadTestType.neuro,
        status_from_row=True,
    )
