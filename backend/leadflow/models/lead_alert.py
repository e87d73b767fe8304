from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadflow.models.base import Base


class AlertType(str, enum.Enum):
    mbi_duplicate = "MBI_DUPLICATE"
    shipping_exception = "SHIPPING_EXCEPTION"
    data_quality = "DATA_QUALITY"
    compliance_issue = "COMPLIANCE_ISSUE"


class AlertSeverity(str, enum.Enum):
    low = "LOW"
    medium = "MEDIUM"
    high = "HIGH"
    critical = "CRITICAL"


SEVERITY_RANK = {
    AlertSeverity.low: 0,
    AlertSeverity.medium: 1,
    AlertSeverity.high: 2,
    AlertSeverity.critical: 3,
}

OPEN_ALERT_INDEX_COLUMNS = ("lead_id", "type", "dedupe_key")
OPEN_ALERT_PREDICATES = {
    "postgresql": "NOT is_acknowledged",
    "sqlite": "is_acknowledged = 0",
}


class LeadAlert(Base):
    __tablename__ = "lead_alerts"
    __table_args__ = (
        # at most one unacknowledged alert per (lead, type, dedupe key)
        Index(
            "uq_lead_alerts_open",
            *OPEN_ALERT_INDEX_COLUMNS,
            unique=True,
            postgresql_where=text(OPEN_ALERT_PREDICATES["postgresql"]),
            sqlite_where=text(OPEN_ALERT_PREDICATES["sqlite"]),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    lead_id: Mapped[int] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[AlertType] = mapped_column(Enum(AlertType, name="alert_type"), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(
        Enum(AlertSeverity, name="alert_severity"), default=AlertSeverity.medium, nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_lead_id: Mapped[int | None] = mapped_column(
        ForeignKey("leads.id", ondelete="SET NULL"), nullable=True
    )
    dedupe_key: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    is_acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    acknowledged_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    lead = relationship("Lead", back_populates="alerts", foreign_keys=[lead_id])
    related_lead = relationship("Lead", foreign_keys=[related_lead_id])
