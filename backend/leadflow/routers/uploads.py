from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.orm import Session, sessionmaker

from leadflow.db.session import get_db, get_session_factory
from leadflow.deps import get_side_effects, require_admin
from leadflow.models.batch_job import BatchJob, UploadKind
from leadflow.schemas.actor import Actor
from leadflow.schemas.upload import BatchJobOut, UploadResultOut
from leadflow.services.reconciliation.pipeline import (
    create_batch_job,
    request_cancel,
    run_batch_job,
    run_pipeline,
)
from leadflow.services.reconciliation.source import read_rows
from leadflow.services.side_effects import NotificationService, SideEffects, get_notification_service

router = APIRouter(prefix="/uploads", tags=["uploads"])

MAX_UPLOAD_BYTES = 20 * 1024 * 1024


def _read_upload(file: UploadFile) -> list[dict[str, str]]:
    content = file.file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Upload too large"
        )
    rows = read_rows(content)
    if not rows:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Upload has no data rows")
    return rows


def get_job_or_404(db: Session, job_id: int) -> BatchJob:
    job = db.get(BatchJob, job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch job not found")
    return job


@router.post("/batch/{kind}", response_model=BatchJobOut, status_code=status.HTTP_202_ACCEPTED)
def start_batch_upload(
    kind: UploadKind,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    admin: Actor = Depends(require_admin),
    session_factory: sessionmaker = Depends(get_session_factory),
    notifier: NotificationService = Depends(get_notification_service),
):
    rows = _read_upload(file)
    job = create_batch_job(db, kind, file_name=file.filename, total_rows=len(rows), uploaded_by=admin.id)
    db.commit()
    db.refresh(job)
    background_tasks.add_task(
        run_batch_job, session_factory, job.id, rows, actor_id=admin.id, notifier=notifier
    )
    return job


@router.get("/batch/{job_id}", response_model=BatchJobOut)
def get_batch_job(
    job_id: int,
    db: Session = Depends(get_db),
    _admin: Actor = Depends(require_admin),
):
    return get_job_or_404(db, job_id)


@router.post("/batch/{job_id}/cancel", response_model=BatchJobOut)
def cancel_batch_job(
    job_id: int,
    db: Session = Depends(get_db),
    _admin: Actor = Depends(require_admin),
):
    job = request_cancel(db, get_job_or_404(db, job_id))
    db.commit()
    db.refresh(job)
    return job


@router.post("/{kind}", response_model=UploadResultOut)
def upload(
    kind: UploadKind,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    admin: Actor = Depends(require_admin),
    side_effects: SideEffects = Depends(get_side_effects),
    notifier: NotificationService = Depends(get_notification_service),
):
    rows = _read_upload(file)
    result = run_pipeline(
        db, kind, rows, actor_id=admin.id, side_effects=side_effects, notifier=notifier
    )
    background_tasks.add_task(side_effects.run)
    return result.as_dict()
