from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from leadflow.core.settings import settings
from leadflow.models.batch_job import BatchJob, BatchJobStatus, UploadKind
from leadflow.services.column_aliases import resolve_fields
from leadflow.services.errors import IllegalTransitionError, RowValidationError
from leadflow.services.reconciliation import doctor_approval, kit_return, lead_import, shipping_report
from leadflow.services.reconciliation.types import (
    OUTCOME_UNCHANGED,
    PipelineResult,
    RowConflict,
    RowContext,
    RowError,
    RowHandler,
    RowOutcome,
    RowRejected,
)
from leadflow.services.side_effects import (
    LoggingNotificationService,
    NotificationService,
    SideEffects,
)

logger = logging.getLogger(__name__)

ROW_HANDLERS: dict[UploadKind, RowHandler] = {
    UploadKind.doctor_approval: doctor_approval.handle_row,
    UploadKind.shipping_report: shipping_report.handle_row,
    UploadKind.kit_return: kit_return.handle_row,
    UploadKind.bulk_lead: lead_import.handle_bulk_lead_row,
    UploadKind.master_data: lead_import.handle_master_data_row,
}

FIRST_DATA_ROW = 2


def _run_row(
    session: Session,
    handler: RowHandler,
    row: dict[str, str],
    *,
    base_ctx: RowContext,
    attempts: int,
) -> tuple[RowOutcome, SideEffects]:
    fields = resolve_fields(row)
    for attempt in range(1, attempts + 1):
        row_effects = SideEffects()
        ctx = RowContext(
            actor_id=base_ctx.actor_id,
            side_effects=row_effects,
            notifier=base_ctx.notifier,
            counts=Counter(),
            vendor_cache=base_ctx.vendor_cache,
            matcher=base_ctx.matcher,
        )
        try:
            outcome = handler(session, fields, row, ctx)
            session.commit()
        except StaleDataError:
            session.rollback()
            logger.warning("Row conflicted with a concurrent update (attempt %s/%s)", attempt, attempts)
            continue
        except Exception:
            session.rollback()
            raise
        base_ctx.counts.update(ctx.counts)
        return outcome, row_effects
    raise RowConflict(attempts)


def run_pipeline(
    session: Session,
    kind: UploadKind | str,
    rows: Sequence[dict[str, str]],
    *,
    actor_id: str | None,
    should_cancel: Callable[[], bool] | None = None,
    side_effects: SideEffects | None = None,
    notifier: NotificationService | None = None,
    error_cap: int | None = None,
    on_progress: Callable[[PipelineResult], None] | None = None,
    progress_every: int | None = None,
) -> PipelineResult:
    """Apply uploaded rows one at a time, each in its own transaction.

    A failing row is rolled back and recorded; rows already committed stay.
    Side effects for a row are queued into ``side_effects`` after its commit,
    or run straight away when no outbox is supplied. Rows from ``read_rows``
    report errors against their file line; plain dicts count from line 2.
    """
    kind = UploadKind(kind)
    handler = ROW_HANDLERS[kind]
    cap = settings.upload_error_cap if error_cap is None else error_cap
    every = progress_every or settings.batch_progress_every
    result = PipelineResult(kind=kind.value, total_rows=len(rows))
    base_ctx = RowContext(
        actor_id=actor_id,
        side_effects=side_effects or SideEffects(),
        notifier=notifier or LoggingNotificationService(),
        counts=result.counts,
    )

    for index, row in enumerate(rows):
        row_number = getattr(row, "line_number", None) or index + FIRST_DATA_ROW
        if should_cancel is not None and should_cancel():
            result.cancelled = True
            logger.info("Pipeline cancelled before row %s", row_number)
            break
        try:
            outcome, row_effects = _run_row(
                session,
                handler,
                row,
                base_ctx=base_ctx,
                attempts=settings.lifecycle_max_attempts,
            )
        except (RowRejected, RowValidationError, IllegalTransitionError) as exc:
            data = getattr(exc, "data", None) or row
            result.record_error(RowError(row=row_number, error=str(exc), data=data), cap)
        except RowConflict as exc:
            result.record_error(RowError(row=row_number, error=str(exc), data=row), cap)
        except SQLAlchemyError as exc:
            logger.exception("Database error on row %s", row_number)
            result.record_error(RowError(row=row_number, error=str(exc.__cause__ or exc), data=row), cap)
        else:
            result.processed += 1
            result.created += outcome.created
            result.updated += outcome.updated
            if outcome.outcome == OUTCOME_UNCHANGED:
                result.unchanged += 1
            if side_effects is not None:
                side_effects.pending.extend(row_effects.pending)
            else:
                row_effects.run()
        if on_progress is not None and (index + 1) % every == 0:
            on_progress(result)

    logger.info(
        "Reconciled %s upload: %s processed, %s created, %s updated, %s errors",
        kind.value,
        result.processed,
        result.created,
        result.updated,
        result.error_count,
        extra={"kind": kind.value, "cancelled": result.cancelled},
    )
    return result


def create_batch_job(
    session: Session,
    kind: UploadKind | str,
    *,
    file_name: str | None,
    total_rows: int,
    uploaded_by: str | None,
) -> BatchJob:
    job = BatchJob(
        kind=UploadKind(kind),
        file_name=file_name,
        status=BatchJobStatus.pending,
        total_rows=total_rows,
        uploaded_by=uploaded_by,
        progress_message="Queued",
    )
    session.add(job)
    session.flush()
    return job


def request_cancel(session: Session, job: BatchJob) -> BatchJob:
    if job.status in (BatchJobStatus.pending, BatchJobStatus.processing):
        job.cancel_requested = True
        job.progress_message = "Cancellation requested"
    return job


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_batch_job(
    session_factory: sessionmaker,
    job_id: int,
    rows: Iterable[dict[str, str]],
    *,
    actor_id: str | None,
    notifier: NotificationService | None = None,
) -> None:
    rows = list(rows)
    session: Session = session_factory()
    control: Session = session_factory()
    try:
        job = control.get(BatchJob, job_id)
        if job is None:
            logger.warning("Batch job %s vanished before processing", job_id)
            return
        if job.cancel_requested:
            job.status = BatchJobStatus.cancelled
            job.finished_at = _utcnow()
            job.progress_message = "Cancelled before start"
            control.commit()
            return
        job.status = BatchJobStatus.processing
        job.started_at = _utcnow()
        job.progress_message = f"Processing {len(rows)} rows"
        control.commit()

        def should_cancel() -> bool:
            control.expire(job, ["cancel_requested"])
            return bool(job.cancel_requested)

        def on_progress(partial: PipelineResult) -> None:
            job.processed_rows = partial.processed + partial.error_count
            job.created_count = partial.created
            job.updated_count = partial.updated
            job.error_count = partial.error_count
            job.progress_message = f"Processed {job.processed_rows} of {job.total_rows} rows"
            control.commit()

        try:
            result = run_pipeline(
                session,
                job.kind,
                rows,
                actor_id=actor_id,
                should_cancel=should_cancel,
                notifier=notifier,
                on_progress=on_progress,
            )
        except Exception:
            logger.exception("Batch job %s failed", job_id)
            control.rollback()
            job.status = BatchJobStatus.failed
            job.finished_at = _utcnow()
            job.progress_message = "Failed; see server logs"
            control.commit()
            raise

        job.processed_rows = result.processed + result.error_count
        job.created_count = result.created
        job.updated_count = result.updated
        job.error_count = result.error_count
        job.errors_json = [error.as_dict() for error in result.errors]
        job.summary_json = result.as_dict()
        job.finished_at = _utcnow()
        if result.cancelled:
            job.status = BatchJobStatus.cancelled
            job.progress_message = f"Cancelled after {job.processed_rows} of {job.total_rows} rows"
        else:
            job.status = BatchJobStatus.completed
            job.progress_message = f"Completed {job.processed_rows} of {job.total_rows} rows"
        control.commit()
    finally:
        session.close()
        control.close()
