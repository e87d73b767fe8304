from leadflow.models.base import Base
from leadflow.models.vendor import Vendor
from leadflow.models.lead import (
    AdvocateDisposition,
    CollectionsDisposition,
    DoctorApprovalStatus,
    Lead,
    LeadStatus,
    LeadTestType,
)
from leadflow.models.lead_alert import AlertSeverity, AlertType, LeadAlert
from leadflow.models.tracking_event import TrackingDirection, TrackingEvent
from leadflow.models.batch_job import BatchJob, BatchJobStatus, UploadKind
from leadflow.models.audit_log import AuditLog

__all__ = [
    "Base",
    "Vendor",
    "Lead",
    "LeadStatus",
    "LeadTestType",
    "AdvocateDisposition",
    "CollectionsDisposition",
    "DoctorApprovalStatus",
    "LeadAlert",
    "AlertType",
    "AlertSeverity",
    "TrackingEvent",
    "TrackingDirection",
    "BatchJob",
    "BatchJobStatus",
    "UploadKind",
    "AuditLog",
]
