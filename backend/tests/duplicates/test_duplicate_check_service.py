from datetime import datetime, timedelta, timezone

from leadflow.models.lead import LeadStatus, LeadTestType
from leadflow.services.duplicate_policy import REASON_SAME_TEST, STATUS_ALLOWED, STATUS_BLOCKED
from leadflow.services.leads import check_duplicate


def test_check_blocks_same_test_and_allows_with_self_excluded(session, make_lead):
    lead = make_lead(mbi="1EG4TE5MK73", test_type=LeadTestType.immune)

    blocked = check_duplicate(session, "1eg4-te5-mk73", LeadTestType.immune)
    assert blocked.status == STATUS_BLOCKED
    assert blocked.reason_code == REASON_SAME_TEST
    assert blocked.evidence[0].id == lead.id

    allowed = check_duplicate(session, "1EG4TE5MK73", LeadTestType.immune, exclude_lead_id=lead.id)
    assert allowed.status == STATUS_ALLOWED
    assert allowed.evidence == []


def test_check_uses_lead_history_for_other_test(session, make_lead):
    now = datetime.now(timezone.utc)
    make_lead(
        mbi="1EG4TE5MK73",
        test_type=LeadTestType.immune,
        status=LeadStatus.sent_to_consult,
        created_at=now - timedelta(days=10),
    )
    decision = check_duplicate(session, "1EG4TE5MK73", LeadTestType.neuro, now=now)
    assert decision.status == STATUS_BLOCKED
    assert decision.evidence[0].vendor == "Acme Labs"


def test_check_endpoint(client, auth_headers, make_lead):
    lead = make_lead(mbi="1EG4TE5MK73", test_type=LeadTestType.immune)

    response = client.post(
        "/leads/check-mbi-duplicate",
        json={"mbi": "1EG4TE5MK73", "testType": "IMMUNE"},
        headers=auth_headers(),
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "BLOCKED"
    assert body["reason"] == "SAME_TEST"
    assert body["existingLeads"][0]["id"] == lead.id

    response = client.post(
        "/leads/check-mbi-duplicate",
        json={"mbi": "1EG4TE5MK73", "testType": "IMMUNE", "excludeLeadId": lead.id},
        headers=auth_headers(),
    )
    assert response.json()["status"] == "ALLOWED"
    assert response.json()["existingLeads"] == []


def test_check_endpoint_requires_token(client):
    response = client.post("/leads/check-mbi-duplicate", json={"mbi": "1EG4TE5MK73", "testType": "IMMUNE"})
    assert response.status_code == 401


def test_check_endpoint_rejects_malformed_mbi(client, auth_headers):
    for mbi in ("abc", "0EG4TE5MK73", "1EG4TE5MK7"):
        response = client.post(
            "/leads/check-mbi-duplicate",
            json={"mbi": mbi, "testType": "IMMUNE"},
            headers=auth_headers(),
        )
        assert response.status_code == 422, mbi


def test_check_endpoint_normalises_mbi(client, auth_headers, make_lead):
    make_lead(mbi="1EG4TE5MK73", test_type=LeadTestType.immune)
    response = client.post(
        "/leads/check-mbi-duplicate",
        json={"mbi": "1eg4-te5-mk73", "testType": "IMMUNE"},
        headers=auth_headers(),
    )
    assert response.status_code == 200, response.text
    assert response.json()["reason"] == "SAME_TEST"
