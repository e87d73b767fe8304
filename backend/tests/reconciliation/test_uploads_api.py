from sqlalchemy import select

from leadflow.db.session import SessionLocal
from leadflow.models.batch_job import BatchJobStatus, UploadKind
from leadflow.models.lead import Lead
from leadflow.schemas.actor import Role
from leadflow.services.reconciliation.pipeline import create_batch_job, run_batch_job

BULK_CSV = (
    "First Name,Last Name,Phone,MBI,Test Type\n"
    "Ann,Lee,(202) 555-0101,1EG4TE5MK71,Neuro\n"
    "Bo,,202-555-0102,1EG4TE5MK72,Immune\n"
)


def _csv(text: str = BULK_CSV):
    return {"file": ("leads.csv", text.encode("utf-8"), "text/csv")}


def test_sync_upload_reports_rows(client, auth_headers, session, notifier):
    resp = client.post("/uploads/BULK_LEAD", files=_csv(), headers=auth_headers())
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["kind"] == "BULK_LEAD"
    assert body["total_rows"] == 2
    assert body["created"] == 1
    assert body["error_count"] == 1
    assert body["errors"][0]["row"] == 3
    assert body["errors"][0]["error"] == "Missing required fields: last_name"

    lead = session.scalar(select(Lead).where(Lead.mbi == "1EG4TE5MK71"))
    assert lead.phone == "2025550101"
    assert lead.vendor_code == "BULK_UPLOAD"


def test_upload_requires_admin(client, auth_headers):
    resp = client.post("/uploads/BULK_LEAD", files=_csv(), headers=auth_headers(Role.advocate))
    assert resp.status_code == 403


def test_empty_upload_is_rejected(client, auth_headers):
    resp = client.post("/uploads/BULK_LEAD", files=_csv("First Name,Last Name\n"), headers=auth_headers())
    assert resp.status_code == 400


def test_batch_upload_runs_in_background(client, auth_headers, notifier):
    resp = client.post("/uploads/batch/BULK_LEAD", files=_csv(), headers=auth_headers(subject="admin-7"))
    assert resp.status_code == 202, resp.text
    job_id = resp.json()["id"]
    assert resp.json()["total_rows"] == 2

    status_resp = client.get(f"/uploads/batch/{job_id}", headers=auth_headers())
    assert status_resp.status_code == 200
    job = status_resp.json()
    assert job["status"] == "COMPLETED"
    assert job["processed_rows"] == 2
    assert job["created_count"] == 1
    assert job["error_count"] == 1
    assert job["uploaded_by"] == "admin-7"
    assert job["errors_json"][0]["row"] == 3
    assert job["summary_json"]["created"] == 1


def test_unknown_batch_job_is_404(client, auth_headers):
    assert client.get("/uploads/batch/999", headers=auth_headers()).status_code == 404


def test_cancelled_job_never_starts(client, auth_headers, session):
    job = create_batch_job(session, UploadKind.bulk_lead, file_name="leads.csv", total_rows=2, uploaded_by="admin-1")
    session.commit()

    resp = client.post(f"/uploads/batch/{job.id}/cancel", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json()["cancel_requested"] is True

    run_batch_job(SessionLocal, job.id, [{"First Name": "Ann", "Last Name": "Lee", "Phone": "2025550101"}], actor_id="admin-1")

    session.expire_all()
    assert session.get(type(job), job.id).status == BatchJobStatus.cancelled
    assert session.scalar(select(Lead)) is None


def test_cancel_after_completion_is_a_no_op(client, auth_headers, session):
    job = create_batch_job(session, UploadKind.bulk_lead, file_name=None, total_rows=1, uploaded_by=None)
    session.commit()
    run_batch_job(SessionLocal, job.id, [{"First Name": "Ann", "Last Name": "Lee", "Phone": "2025550101"}], actor_id=None)

    resp = client.post(f"/uploads/batch/{job.id}/cancel", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"
    assert resp.json()["cancel_requested"] is False
