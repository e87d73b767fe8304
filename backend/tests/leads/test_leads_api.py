from sqlalchemy import select

from leadflow.db.session import SessionLocal
from leadflow.main import app
from leadflow.models.audit_log import AuditLog
from leadflow.models.lead import Lead, LeadStatus, LeadTestType
from leadflow.schemas.actor import Role
from leadflow.services.alerts import check_for_duplicate
from leadflow.services.leads import record_shipping_label
from leadflow.services.side_effects import LeadSnapshot, ShippingLabel, get_label_service

MBI = "1EG4TE5MK73"


def lead_payload(**overrides):
    payload = {
        "mbi": "1EG4-TE5-MK73",
        "first_name": "Ann",
        "last_name": "Lee",
        "phone": "(202) 555-0111",
        "test_type": "IMMUNE",
        "vendor_code": "ACME",
    }
    payload.update(overrides)
    return payload


class FakeLabelService:
    def __init__(self):
        self.requested = []

    def create(self, lead):
        self.requested.append(lead.id)
        return ShippingLabel(tracking_number="1ZOUT0001", return_tracking_number="1ZRET0001")


class BrokenLabelService:
    def create(self, lead):
        raise RuntimeError("carrier API unavailable")


def test_submit_then_check_same_test_is_blocked(client, auth_headers, vendor):
    response = client.post("/leads", json=lead_payload(), headers=auth_headers(Role.vendor))
    assert response.status_code == 201, response.text
    lead = response.json()
    assert lead["mbi"] == MBI
    assert lead["phone"] == "2025550111"
    assert lead["status"] == "SUBMITTED"

    check = client.post(
        "/leads/check-mbi-duplicate",
        json={"mbi": MBI, "testType": "IMMUNE"},
        headers=auth_headers(),
    ).json()
    assert check["status"] == "BLOCKED"
    assert check["reason"] == "SAME_TEST"

    excluded = client.post(
        "/leads/check-mbi-duplicate",
        json={"mbi": MBI, "testType": "IMMUNE", "excludeLeadId": lead["id"]},
        headers=auth_headers(),
    ).json()
    assert excluded["status"] == "ALLOWED"
    assert excluded["existingLeads"] == []


def test_blocked_submission_returns_decision(client, auth_headers, vendor):
    client.post("/leads", json=lead_payload(), headers=auth_headers())
    response = client.post(
        "/leads", json=lead_payload(test_type="NEURO"), headers=auth_headers()
    )
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["status"] == "BLOCKED"
    assert detail["reason"] == "TOO_SOON"


def test_submission_validation(client, auth_headers, vendor):
    bad_mbi = client.post("/leads", json=lead_payload(mbi="0000"), headers=auth_headers())
    assert bad_mbi.status_code == 422

    unknown_vendor = client.post(
        "/leads", json=lead_payload(vendor_code="NOPE"), headers=auth_headers()
    )
    assert unknown_vendor.status_code == 404

    other_vendor = client.post(
        "/leads",
        json=lead_payload(),
        headers=auth_headers(Role.vendor, vendor_code="OTHER"),
    )
    assert other_vendor.status_code == 403


def test_get_lead_runs_duplicate_check(client, auth_headers, make_lead):
    make_lead(mbi=MBI)
    second = make_lead(mbi=MBI, test_type=LeadTestType.neuro)

    response = client.get(f"/leads/{second.id}", headers=auth_headers())
    assert response.status_code == 200, response.text
    assert response.json()["has_active_alerts"] is True
    assert client.get("/leads/999", headers=auth_headers()).status_code == 404


def test_illegal_manual_transition(client, auth_headers, make_lead):
    lead = make_lead(status=LeadStatus.shipped)
    response = client.patch(
        f"/leads/{lead.id}", json={"status": "SUBMITTED"}, headers=auth_headers(Role.advocate)
    )
    assert response.status_code == 422
    assert response.json()["detail"] == {
        "error": "illegal_transition",
        "current_status": "SHIPPED",
        "attempted_status": "SUBMITTED",
    }


def test_vendor_cannot_edit_leads(client, auth_headers, make_lead):
    lead = make_lead()
    response = client.patch(f"/leads/{lead.id}", json={"notes": "x"}, headers=auth_headers(Role.vendor))
    assert response.status_code == 403


def test_dupe_disposition_closes_duplicate_alerts(client, auth_headers, session, make_lead, notifier):
    make_lead(mbi=MBI)
    second = make_lead(mbi=MBI, test_type=LeadTestType.neuro)
    check_for_duplicate(session, second.id)
    session.commit()

    response = client.patch(
        f"/leads/{second.id}",
        json={"advocate_disposition": "DUPE", "advocate_notes": "same patient"},
        headers=auth_headers(Role.advocate, subject="adv-1"),
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["is_duplicate"] is True
    assert body["has_active_alerts"] is False
    assert body["status"] == "ADVOCATE_REVIEW"
    assert body["advocate_id"] == "adv-1"
    assert notifier.sent == [(second.id, "status_changed")]


def test_doesnt_qualify_disposition_moves_status(client, auth_headers, make_lead):
    lead = make_lead()
    response = client.patch(
        f"/leads/{lead.id}",
        json={"advocate_disposition": "DOESNT_QUALIFY"},
        headers=auth_headers(Role.advocate),
    )
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "DOESNT_QUALIFY"


def test_collections_kit_completed_disposition(client, auth_headers, make_lead):
    lead = make_lead(status=LeadStatus.collections)
    response = client.patch(
        f"/leads/{lead.id}",
        json={"collections_disposition": "KIT_COMPLETED"},
        headers=auth_headers(Role.collections),
    )
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "KIT_COMPLETED"
    assert response.json()["kit_returned_date"] is not None


def test_ship_records_label_after_commit(client, auth_headers, session, make_lead):
    labels = FakeLabelService()
    app.dependency_overrides[get_label_service] = lambda: labels
    lead = make_lead(status=LeadStatus.approved)

    response = client.post(f"/leads/{lead.id}/ship", headers=auth_headers(Role.advocate))
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "READY_TO_SHIP"
    assert labels.requested == [lead.id]

    stored = session.scalar(select(Lead).where(Lead.id == lead.id).execution_options(populate_existing=True))
    assert stored.tracking_number == "1ZOUT0001"
    assert stored.inbound_tracking_number == "1ZRET0001"
    actions = session.scalars(select(AuditLog.action).where(AuditLog.entity_id == str(lead.id))).all()
    assert "lead.label_created" in actions


def test_repeated_ship_buys_one_label(client, auth_headers, session, make_lead):
    labels = FakeLabelService()
    app.dependency_overrides[get_label_service] = lambda: labels
    lead = make_lead(status=LeadStatus.approved)

    first = client.post(f"/leads/{lead.id}/ship", headers=auth_headers(Role.advocate))
    second = client.post(f"/leads/{lead.id}/ship", headers=auth_headers(Role.advocate))

    assert first.status_code == 200, first.text
    assert second.status_code == 200, second.text
    assert second.json()["status"] == "READY_TO_SHIP"
    assert labels.requested == [lead.id]
    stored = session.scalar(select(Lead).where(Lead.id == lead.id).execution_options(populate_existing=True))
    assert stored.tracking_number == "1ZOUT0001"


def test_queued_label_skipped_when_lead_already_labelled(session, make_lead):
    labels = FakeLabelService()
    lead = make_lead(status=LeadStatus.ready_to_ship)
    snapshot = LeadSnapshot.from_lead(lead)
    lead.tracking_number = "1ZFIRST"
    session.commit()

    record_shipping_label(SessionLocal, labels, snapshot, actor_id="user-1")

    assert labels.requested == []
    stored = session.scalar(select(Lead).where(Lead.id == lead.id).execution_options(populate_existing=True))
    assert stored.tracking_number == "1ZFIRST"


def test_label_failure_keeps_status(client, auth_headers, session, make_lead):
    app.dependency_overrides[get_label_service] = lambda: BrokenLabelService()
    lead = make_lead(status=LeadStatus.approved)

    response = client.post(f"/leads/{lead.id}/ship", headers=auth_headers(Role.advocate))
    assert response.status_code == 200, response.text

    stored = session.scalar(select(Lead).where(Lead.id == lead.id).execution_options(populate_existing=True))
    assert stored.status == LeadStatus.ready_to_ship
    assert stored.tracking_number is None


def test_ship_requires_approval(client, auth_headers, make_lead):
    lead = make_lead()
    response = client.post(f"/leads/{lead.id}/ship", headers=auth_headers(Role.advocate))
    assert response.status_code == 422
    assert response.json()["detail"]["attempted_status"] == "READY_TO_SHIP"
