from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr

from leadflow.models.lead import (
    AdvocateDisposition,
    CollectionsDisposition,
    DoctorApprovalStatus,
    LeadStatus,
    LeadTestType,
)


class LeadCreate(BaseModel):
    mbi: str
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    test_type: LeadTestType = LeadTestType.immune
    vendor_code: str
    sub_vendor_code: Optional[str] = None
    notes: Optional[str] = None


class LeadUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    notes: Optional[str] = None
    advocate_notes: Optional[str] = None
    collections_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    inbound_tracking_number: Optional[str] = None
    status: Optional[LeadStatus] = None
    advocate_disposition: Optional[AdvocateDisposition] = None
    collections_disposition: Optional[CollectionsDisposition] = None


class LeadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    mbi: Optional[str] = None
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    status: LeadStatus
    test_type: LeadTestType
    vendor_code: str
    advocate_id: Optional[str] = None
    advocate_disposition: Optional[AdvocateDisposition] = None
    collections_disposition: Optional[CollectionsDisposition] = None
    doctor_approval_status: Optional[DoctorApprovalStatus] = None
    is_duplicate: bool
    has_active_alerts: bool
    advocate_reviewed_at: Optional[datetime] = None
    consult_date: Optional[datetime] = None
    doctor_approval_date: Optional[datetime] = None
    kit_shipped_date: Optional[datetime] = None
    kit_delivered_date: Optional[datetime] = None
    kit_returned_date: Optional[datetime] = None
    last_tracking_update: Optional[datetime] = None
    tracking_number: Optional[str] = None
    inbound_tracking_number: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
