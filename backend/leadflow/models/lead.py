from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadflow.models.base import Base, TimestampMixin


class LeadTestType(str, enum.Enum):
    immune = "IMMUNE"
    neuro = "NEURO"


class LeadStatus(str, enum.Enum):
    submitted = "SUBMITTED"
    advocate_review = "ADVOCATE_REVIEW"
    qualified = "QUALIFIED"
    sent_to_consult = "SENT_TO_CONSULT"
    approved = "APPROVED"
    ready_to_ship = "READY_TO_SHIP"
    shipped = "SHIPPED"
    delivered = "DELIVERED"
    kit_returning = "KIT_RETURNING"
    collections = "COLLECTIONS"
    kit_completed = "KIT_COMPLETED"
    returned = "RETURNED"
    doesnt_qualify = "DOESNT_QUALIFY"


class AdvocateDisposition(str, enum.Enum):
    doesnt_qualify = "DOESNT_QUALIFY"
    compliance_issue = "COMPLIANCE_ISSUE"
    patient_declined = "PATIENT_DECLINED"
    call_back = "CALL_BACK"
    connected_to_compliance = "CONNECTED_TO_COMPLIANCE"
    call_dropped = "CALL_DROPPED"
    dupe = "DUPE"


class CollectionsDisposition(str, enum.Enum):
    no_answer = "NO_ANSWER"
    scheduled_callback = "SCHEDULED_CALLBACK"
    kit_completed = "KIT_COMPLETED"


class DoctorApprovalStatus(str, enum.Enum):
    pending = "PENDING"
    approved = "APPROVED"
    declined = "DECLINED"


class Lead(Base, TimestampMixin):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    mbi: Mapped[str | None] = mapped_column(String(11), nullable=True, index=True)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    street: Mapped[str | None] = mapped_column(String(200), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    status: Mapped[LeadStatus] = mapped_column(
        Enum(LeadStatus, name="lead_status"),
        default=LeadStatus.submitted,
        nullable=False,
        index=True,
    )
    test_type: Mapped[LeadTestType] = mapped_column(
        Enum(LeadTestType, name="test_type"), default=LeadTestType.immune, nullable=False
    )
    vendor_id: Mapped[int] = mapped_column(ForeignKey("vendors.id"), nullable=False, index=True)
    vendor_code: Mapped[str] = mapped_column(String(64), nullable=False)
    sub_vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id"), nullable=True)

    advocate_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    advocate_disposition: Mapped[AdvocateDisposition | None] = mapped_column(
        Enum(AdvocateDisposition, name="advocate_disposition"), nullable=True
    )
    advocate_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    collections_disposition: Mapped[CollectionsDisposition | None] = mapped_column(
        Enum(CollectionsDisposition, name="collections_disposition"), nullable=True
    )
    collections_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    doctor_approval_status: Mapped[DoctorApprovalStatus | None] = mapped_column(
        Enum(DoctorApprovalStatus, name="doctor_approval_status"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_active_alerts: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    advocate_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consult_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    doctor_approval_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    kit_shipped_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    kit_delivered_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    kit_returned_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_tracking_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tracking_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    inbound_tracking_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    vendor = relationship("Vendor", foreign_keys=[vendor_id], lazy="joined", innerjoin=True)
    sub_vendor = relationship("Vendor", foreign_keys=[sub_vendor_id])
    alerts = relationship(
        "LeadAlert",
        back_populates="lead",
        cascade="all, delete-orphan",
        foreign_keys="LeadAlert.lead_id",
        order_by="LeadAlert.created_at.desc()",
    )
    tracking_events = relationship(
        "TrackingEvent",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="TrackingEvent.id",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
