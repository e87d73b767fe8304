from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload, sessionmaker

from leadflow.core.settings import settings
from leadflow.models.lead import (
    AdvocateDisposition,
    CollectionsDisposition,
    Lead,
    LeadStatus,
    LeadTestType,
)
from leadflow.models.vendor import Vendor
from leadflow.services import lifecycle
from leadflow.services.alerts import check_for_duplicate, mark_lead_duplicate
from leadflow.services.audit import log_event, snapshot_fields
from leadflow.services.column_aliases import normalize_mbi, normalize_phone, validate_mbi
from leadflow.services.duplicate_policy import Decision, ExistingRecord, decide
from leadflow.services.errors import (
    DuplicateSubmissionError,
    IllegalTransitionError,
    LeadNotFoundError,
    VendorNotFoundError,
)
from leadflow.services.lifecycle import LifecycleEvent, TransitionResult
from leadflow.services.side_effects import (
    LeadSnapshot,
    NotificationService,
    ShippingLabelService,
    SideEffects,
    event_for_status,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "first_name",
    "last_name",
    "date_of_birth",
    "phone",
    "email",
    "street",
    "city",
    "state",
    "zip_code",
    "notes",
    "advocate_notes",
    "collections_notes",
    "tracking_number",
    "inbound_tracking_number",
)

AUDITED_FIELDS = ("status", "advocate_disposition", "collections_disposition", "is_duplicate")


def get_lead(session: Session, lead_id: int) -> Lead:
    lead = session.get(Lead, lead_id)
    if lead is None:
        raise LeadNotFoundError(f"Lead {lead_id} not found")
    return lead


def load_existing_records(
    session: Session, mbi: str, *, exclude_lead_id: int | None = None
) -> list[ExistingRecord]:
    stmt = select(Lead).options(joinedload(Lead.vendor)).where(Lead.mbi == mbi)
    if exclude_lead_id is not None:
        stmt = stmt.where(Lead.id != exclude_lead_id)
    leads = session.scalars(stmt.order_by(Lead.created_at.desc())).all()
    return [ExistingRecord.from_lead(lead) for lead in leads]


def check_duplicate(
    session: Session,
    mbi: str,
    test_type: LeadTestType | str,
    *,
    exclude_lead_id: int | None = None,
    now: datetime | None = None,
) -> Decision:
    candidate = normalize_mbi(mbi)
    existing = load_existing_records(session, candidate, exclude_lead_id=exclude_lead_id)
    return decide(
        candidate,
        test_type,
        existing,
        now=now,
        cooldown_days=settings.duplicate_cooldown_days,
    )


def _resolve_vendor(session: Session, code: str) -> Vendor:
    vendor = session.scalar(select(Vendor).where(Vendor.code == code.strip()))
    if vendor is None or not vendor.is_active:
        raise VendorNotFoundError(f"Vendor {code} not found or inactive")
    return vendor


def submit_lead(session: Session, data: dict[str, Any], *, actor_id: str | None) -> Lead:
    mbi = validate_mbi(data["mbi"])
    test_type = LeadTestType(data["test_type"])
    vendor = _resolve_vendor(session, data["vendor_code"])
    sub_vendor = None
    if data.get("sub_vendor_code"):
        sub_vendor = _resolve_vendor(session, data["sub_vendor_code"])

    decision = check_duplicate(session, mbi, test_type)
    if not decision.allowed:
        logger.info(
            "Submission blocked: %s",
            decision.reason_code,
            extra={"vendor_code": vendor.code, "reason": decision.reason_code},
        )
        raise DuplicateSubmissionError(decision)

    lead = Lead(
        mbi=mbi,
        first_name=data["first_name"].strip(),
        last_name=data["last_name"].strip(),
        date_of_birth=data.get("date_of_birth"),
        phone=normalize_phone(data.get("phone")),
        email=data.get("email"),
        street=data.get("street"),
        city=data.get("city"),
        state=data.get("state"),
        zip_code=data.get("zip_code"),
        test_type=test_type,
        status=LeadStatus.submitted,
        vendor_id=vendor.id,
        vendor_code=vendor.code,
        sub_vendor_id=sub_vendor.id if sub_vendor else None,
        notes=data.get("notes"),
    )
    session.add(lead)
    session.flush()
    log_event(
        session,
        actor_id=actor_id,
        action="lead.created",
        entity_type="lead",
        entity_id=lead.id,
        after_data=snapshot_fields(lead, ("status", "test_type", "vendor_code")),
    )
    check_for_duplicate(session, lead.id)
    return lead


def _apply_updates(model, updates: dict) -> bool:
    changed = False
    for key, value in updates.items():
        if getattr(model, key) != value:
            setattr(model, key, value)
            changed = True
    return changed


def _apply_dispositions(
    session: Session,
    lead: Lead,
    *,
    advocate: AdvocateDisposition | None,
    collections: CollectionsDisposition | None,
    actor_id: str | None,
) -> list[TransitionResult]:
    results: list[TransitionResult] = []
    if advocate is None and collections is None:
        return results

    if lead.status == LeadStatus.submitted:
        results.append(
            lifecycle.transition_manual(session, lead, LeadStatus.advocate_review, actor_id=actor_id)
        )

    if advocate is not None:
        lead.advocate_disposition = advocate
        if lead.advocate_id is None:
            lead.advocate_id = actor_id
        lifecycle.stamp_stage(lead, LeadStatus.advocate_review, lifecycle.utcnow())
        if advocate == AdvocateDisposition.dupe:
            mark_lead_duplicate(session, lead.id, actor_id or "system")
        elif advocate == AdvocateDisposition.doesnt_qualify:
            results.append(
                lifecycle.transition_manual(
                    session, lead, LeadStatus.doesnt_qualify, actor_id=actor_id
                )
            )

    if collections is not None:
        lead.collections_disposition = collections
        if collections == CollectionsDisposition.kit_completed:
            results.append(
                lifecycle.apply_event(
                    session, lead, LifecycleEvent.kit_returned, actor_id=actor_id
                )
            )
    return results


def update_lead(
    session: Session,
    lead_id: int,
    updates: dict[str, Any],
    *,
    actor_id: str | None,
    notifier: NotificationService | None = None,
    side_effects: SideEffects | None = None,
) -> Lead:
    updates = dict(updates)
    target_status = updates.pop("status", None)
    advocate = updates.pop("advocate_disposition", None)
    collections = updates.pop("collections_disposition", None)
    field_updates = {key: value for key, value in updates.items() if key in EDITABLE_FIELDS}
    if "phone" in field_updates:
        field_updates["phone"] = normalize_phone(field_updates["phone"])

    def mutate(lead: Lead) -> list[TransitionResult]:
        before = snapshot_fields(lead, AUDITED_FIELDS)
        _apply_updates(lead, field_updates)
        results = _apply_dispositions(
            session,
            lead,
            advocate=AdvocateDisposition(advocate) if advocate else None,
            collections=CollectionsDisposition(collections) if collections else None,
            actor_id=actor_id,
        )
        if target_status is not None:
            results.append(
                lifecycle.transition_manual(
                    session, lead, LeadStatus(target_status), actor_id=actor_id
                )
            )
        log_event(
            session,
            actor_id=actor_id,
            action="lead.updated",
            entity_type="lead",
            entity_id=lead.id,
            before_data=before,
            after_data=snapshot_fields(lead, AUDITED_FIELDS),
        )
        return results

    results = lifecycle.apply_serialized(session, lead_id, mutate)
    lead = get_lead(session, lead_id)
    if side_effects is not None and notifier is not None:
        for result in results:
            if result.changed:
                side_effects.notify(notifier, lead, event_for_status(result.status))
    return lead


def request_shipment(
    session: Session,
    lead_id: int,
    *,
    actor_id: str | None,
    side_effects: SideEffects,
    label_service: ShippingLabelService,
    session_factory: sessionmaker,
) -> Lead:
    def mutate(lead: Lead) -> TransitionResult:
        if lead.status not in (LeadStatus.approved, LeadStatus.ready_to_ship):
            raise IllegalTransitionError(lead.status.value, LeadStatus.ready_to_ship.value)
        return lifecycle.transition_manual(
            session, lead, LeadStatus.ready_to_ship, actor_id=actor_id
        )

    lifecycle.apply_serialized(session, lead_id, mutate)
    lead = get_lead(session, lead_id)
    if lead.tracking_number:
        logger.info(
            "Lead %s already has outbound tracking; no new label requested",
            lead.id,
            extra={"lead_id": lead.id, "tracking_number": lead.tracking_number},
        )
        return lead
    side_effects.add(
        record_shipping_label,
        session_factory,
        label_service,
        LeadSnapshot.from_lead(lead),
        actor_id=actor_id,
        description=f"shipping label for lead {lead.id}",
    )
    return lead


def record_shipping_label(
    session_factory: sessionmaker,
    label_service: ShippingLabelService,
    snapshot: LeadSnapshot,
    *,
    actor_id: str | None = None,
) -> None:
    session: Session = session_factory()
    try:
        current = get_lead(session, snapshot.id)
        if current.tracking_number:
            logger.info(
                "Lead %s was labelled meanwhile; skipping label request",
                snapshot.id,
                extra={"lead_id": snapshot.id, "tracking_number": current.tracking_number},
            )
            return
        label = label_service.create(snapshot)

        def mutate(lead: Lead) -> bool:
            if lead.tracking_number:
                return False
            lead.tracking_number = label.tracking_number
            if label.return_tracking_number:
                lead.inbound_tracking_number = label.return_tracking_number
            log_event(
                session,
                actor_id=actor_id,
                action="lead.label_created",
                entity_type="lead",
                entity_id=lead.id,
                after_data={
                    "tracking_number": label.tracking_number,
                    "inbound_tracking_number": label.return_tracking_number,
                },
            )
            return True

        recorded = lifecycle.apply_serialized(session, snapshot.id, mutate)
        session.commit()
        logger.info(
            "%s shipping label for lead %s",
            "Recorded" if recorded else "Discarded duplicate",
            snapshot.id,
            extra={"lead_id": snapshot.id, "tracking_number": label.tracking_number},
        )
    finally:
        session.close()
