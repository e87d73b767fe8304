from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from leadflow.models.batch_job import UploadKind
from leadflow.models.lead import CollectionsDisposition, DoctorApprovalStatus, Lead, LeadStatus
from leadflow.services.reconciliation import pipeline
from leadflow.services.reconciliation.pipeline import run_pipeline
from leadflow.services.reconciliation.source import read_rows
from leadflow.services.reconciliation.types import OUTCOME_UPDATED, RowOutcome
from leadflow.services.side_effects import SideEffects


class Notifier:
    def __init__(self):
        self.sent = []

    def notify(self, lead, event_kind):
        self.sent.append((lead.id, event_kind))


def reload(session, lead_id) -> Lead:
    return session.scalar(select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True))


def test_doctor_approval_sheet(session, make_lead):
    approved = make_lead(mbi="1EG4TE5MK71", status=LeadStatus.sent_to_consult)
    denied = make_lead(mbi="1EG4TE5MK72", status=LeadStatus.sent_to_consult)
    pending = make_lead(first_name="Cy", last_name="Ro", phone="2025550177")
    rows = [
        {"MBI": "1EG4-TE5-MK71", "Status": "Approved", "Date Seen": "03/01/2025"},
        {"MBI": "1EG4TE5MK72", "Status": "Denied"},
        {"First Name": "Cy", "Last Name": "Ro", "Phone": "202-555-0177", "Status": "Waiting"},
        {"MBI": "9ZZ9ZZ9ZZ99", "Status": "Approved", "First Name": "No", "Last Name": "Body"},
    ]

    result = run_pipeline(session, UploadKind.doctor_approval, rows, actor_id="admin-1")

    assert result.updated == 3
    assert result.counts["approved"] == 1
    assert result.counts["denied"] == 1
    assert result.counts["pending"] == 1
    assert result.error_count == 1
    assert result.errors[0].row == 5
    assert result.errors[0].error == "No matching lead found for No Body (9ZZ9ZZ9ZZ99)"

    assert reload(session, approved.id).status == LeadStatus.approved
    assert reload(session, approved.id).doctor_approval_date is not None
    assert reload(session, denied.id).status == LeadStatus.doesnt_qualify
    assert reload(session, pending.id).doctor_approval_status == DoctorApprovalStatus.pending


def test_negated_approval_disqualifies(session, make_lead):
    lead = make_lead(mbi="1EG4TE5MK71", status=LeadStatus.sent_to_consult)

    result = run_pipeline(
        session,
        UploadKind.doctor_approval,
        [{"MBI": "1EG4TE5MK71", "Status": "Not Approved"}],
        actor_id="admin-1",
    )

    assert result.counts["denied"] == 1
    assert "approved" not in result.counts
    stored = reload(session, lead.id)
    assert stored.status == LeadStatus.doesnt_qualify
    assert stored.doctor_approval_status == DoctorApprovalStatus.declined
    assert stored.doctor_approval_date is None


def test_shipping_report_fills_tracking_but_never_overwrites(session, make_lead):
    fresh = make_lead(mbi="1EG4TE5MK71", status=LeadStatus.approved)
    labelled = make_lead(mbi="1EG4TE5MK72", status=LeadStatus.shipped, tracking_number="1ZKEEP")
    rows = [
        {"MBI": "1EG4TE5MK71", "Tracking Number": "1ZNEW", "Return Tracking #": "1ZBACK", "Shipped Date": "2025-03-01"},
        {"MBI": "1EG4TE5MK72", "Tracking Number": "1ZSTALE"},
    ]

    result = run_pipeline(session, UploadKind.shipping_report, rows, actor_id="admin-1")

    assert result.counts["shipped"] == 1
    assert result.unchanged == 1
    stored = reload(session, fresh.id)
    assert stored.status == LeadStatus.shipped
    assert stored.tracking_number == "1ZNEW"
    assert stored.inbound_tracking_number == "1ZBACK"
    assert reload(session, labelled.id).tracking_number == "1ZKEEP"


def test_kit_return_sheet_matches_by_return_tracking(session, make_lead):
    lead = make_lead(status=LeadStatus.kit_returning, inbound_tracking_number="1ZBACK")
    rows = [{"Return Tracking Number": "1ZBACK", "Returned Date": "03/09/2025"}]

    result = run_pipeline(session, UploadKind.kit_return, rows, actor_id="admin-1")

    assert result.counts["completed"] == 1
    stored = reload(session, lead.id)
    assert stored.status == LeadStatus.kit_completed
    assert stored.collections_disposition == CollectionsDisposition.kit_completed
    assert stored.kit_returned_date is not None


def test_notifications_wait_in_the_outbox(session, make_lead):
    lead = make_lead(mbi="1EG4TE5MK71", status=LeadStatus.sent_to_consult)
    outbox = SideEffects()
    notifier = Notifier()

    run_pipeline(
        session,
        UploadKind.doctor_approval,
        [{"MBI": "1EG4TE5MK71", "Status": "Approved"}],
        actor_id="admin-1",
        side_effects=outbox,
        notifier=notifier,
    )

    assert len(outbox) == 1
    assert notifier.sent == []
    assert outbox.run() == 0
    assert notifier.sent == [(lead.id, "status_changed")]


def test_failed_row_queues_no_notifications(session, make_lead):
    make_lead(mbi="1EG4TE5MK71", status=LeadStatus.sent_to_consult)
    outbox = SideEffects()
    result = run_pipeline(
        session,
        UploadKind.doctor_approval,
        [{"MBI": "1EG4TE5MK71", "Status": "Approved", "Date Seen": "31/31/2025"}],
        actor_id="admin-1",
        side_effects=outbox,
    )
    assert result.error_count == 1
    assert len(outbox) == 0


def test_stale_row_is_retried(session, make_lead, monkeypatch):
    lead = make_lead()
    attempts = []

    def flaky_handler(db, fields, row, ctx):
        attempts.append(row)
        if len(attempts) == 1:
            raise StaleDataError("lead changed underneath us")
        current = db.get(Lead, lead.id)
        current.notes = "reconciled"
        return RowOutcome(outcome=OUTCOME_UPDATED, updated=1, lead_ids=[lead.id])

    monkeypatch.setitem(pipeline.ROW_HANDLERS, UploadKind.kit_return, flaky_handler)
    result = run_pipeline(session, UploadKind.kit_return, [{"MBI": "x"}], actor_id="admin-1")

    assert len(attempts) == 2
    assert result.updated == 1
    assert result.error_count == 0
    assert reload(session, lead.id).notes == "reconciled"


def test_read_rows_detects_tabs_and_skips_blank_lines():
    content = "\ufeffMBI\tFirst Name\n1EG4TE5MK71\tAnn\n\t\n1EG4TE5MK72\tBo\n".encode("utf-8")
    rows = read_rows(content)
    assert rows == [
        {"MBI": "1EG4TE5MK71", "First Name": "Ann"},
        {"MBI": "1EG4TE5MK72", "First Name": "Bo"},
    ]
    assert read_rows(b"") == []


def test_row_that_keeps_conflicting_is_reported(session, make_lead, monkeypatch):
    def always_stale(db, fields, row, ctx):
        raise StaleDataError("lead changed underneath us")

    monkeypatch.setitem(pipeline.ROW_HANDLERS, UploadKind.kit_return, always_stale)
    result = run_pipeline(session, UploadKind.kit_return, [{"MBI": "x"}], actor_id="admin-1")

    assert result.processed == 0
    assert result.errors[0].row == 2
    assert result.errors[0].error == "Concurrent update, gave up after 3 attempts"


def test_errors_point_at_file_lines_past_blank_lines(session, vendor):
    content = b"First Name,Last Name,Phone\nAnn,Lee,2025550101\n\n\nBo,,2025550102\n"
    rows = read_rows(content)
    assert [row.line_number for row in rows] == [2, 5]

    result = run_pipeline(session, UploadKind.bulk_lead, rows, actor_id="admin-1")

    assert result.created == 1
    assert result.errors[0].row == 5
    assert result.errors[0].error == "Missing required fields: last_name"
