from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from leadflow.models.lead import LeadStatus
from leadflow.models.lead_alert import AlertSeverity, AlertType


class AlertLeadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    mbi: Optional[str] = None
    status: LeadStatus
    vendor_code: str


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lead_id: int
    type: AlertType
    severity: AlertSeverity
    message: str
    related_lead_id: Optional[int] = None
    metadata_json: Optional[dict[str, Any]] = None
    is_acknowledged: bool
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    created_at: datetime


class ActiveAlertOut(AlertOut):
    lead: AlertLeadOut


class BulkScanOut(BaseModel):
    leads_scanned: int
    alerts_created: int
    duplicate_groups: list[dict[str, Any]] = []
