from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadflow.models.base import Base


class TrackingDirection(str, enum.Enum):
    outbound = "OUTBOUND"
    inbound = "INBOUND"


class TrackingEvent(Base):
    __tablename__ = "tracking_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    lead_id: Mapped[int] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tracking_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    direction: Mapped[TrackingDirection] = mapped_column(
        Enum(TrackingDirection, name="tracking_direction"), nullable=False
    )
    activity_type: Mapped[str | None] = mapped_column(String(8), nullable=True)
    activity_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    event_date: Mapped[str | None] = mapped_column(String(8), nullable=True)
    event_time: Mapped[str | None] = mapped_column(String(6), nullable=True)
    occurred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    lead = relationship("Lead", back_populates="tracking_events")
