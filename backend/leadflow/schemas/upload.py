from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from leadflow.models.batch_job import BatchJobStatus, UploadKind


class RowErrorOut(BaseModel):
    row: int
    error: str
    data: Optional[dict[str, Any]] = None


class UploadResultOut(BaseModel):
    kind: str
    total_rows: int
    processed: int
    created: int
    updated: int
    unchanged: int
    error_count: int
    errors: list[RowErrorOut] = []
    counts: dict[str, int] = {}
    cancelled: bool = False


class BatchJobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: UploadKind
    file_name: Optional[str] = None
    status: BatchJobStatus
    total_rows: int
    processed_rows: int
    created_count: int
    updated_count: int
    error_count: int
    errors_json: Optional[list[dict[str, Any]]] = None
    summary_json: Optional[dict[str, Any]] = None
    cancel_requested: bool
    uploaded_by: Optional[str] = None
    progress_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime
