"""Carrier tracking webhook: scans for outbound kits and their return shipments."""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from leadflow.core.settings import settings
from leadflow.models.lead import Lead, LeadStatus
from leadflow.models.lead_alert import AlertSeverity, AlertType
from leadflow.models.tracking_event import TrackingDirection, TrackingEvent
from leadflow.services.alerts import raise_alert
from leadflow.services.lifecycle import LifecycleEvent, TransitionResult, apply_event, apply_serialized, utcnow
from leadflow.services.record_matcher import TRACKING_STRATEGIES, IdentifierBundle, RecordMatcher
from leadflow.services.side_effects import (
    EVENT_SHIPPING_EXCEPTION,
    NotificationService,
    SideEffects,
    event_for_status,
)

logger = logging.getLogger(__name__)

ACTIVITY_DELIVERED = "D"
ACTIVITY_IN_TRANSIT = "I"
ACTIVITY_EXCEPTION = "X"
ACTIVITY_PICKUP = "P"
ACTIVITY_MANIFEST = "M"

MESSAGE_PROCESSED = "Tracking event processed successfully"
MESSAGE_LEAD_NOT_FOUND = "Lead not found"

TRACKING_MATCHER = RecordMatcher(TRACKING_STRATEGIES)

_OUTBOUND_EVENTS = {
    ACTIVITY_DELIVERED: LifecycleEvent.outbound_delivered,
    ACTIVITY_IN_TRANSIT: LifecycleEvent.shipped,
    ACTIVITY_PICKUP: LifecycleEvent.shipped,
    ACTIVITY_EXCEPTION: LifecycleEvent.outbound_exception,
}

_INBOUND_EVENTS = {
    ACTIVITY_DELIVERED: LifecycleEvent.kit_returned,
    ACTIVITY_IN_TRANSIT: LifecycleEvent.inbound_in_transit,
    ACTIVITY_PICKUP: LifecycleEvent.inbound_in_transit,
}


class CarrierAuthError(Exception):
    pass


def verify_credentials(credential: str | None, user_agent: str | None) -> None:
    expected = settings.carrier_webhook_credential
    if not credential or not expected:
        raise CarrierAuthError("Unauthorized")
    if settings.carrier_webhook_user_agent and user_agent != settings.carrier_webhook_user_agent:
        raise CarrierAuthError("Unauthorized")
    if not hmac.compare_digest(credential.encode("utf-8"), expected.encode("utf-8")):
        raise CarrierAuthError("Invalid credential")


def _parse_carrier_date(value: str | None) -> datetime | None:
    if not value or len(value) < 8:
        return None
    try:
        return datetime.strptime(value[:8], "%Y%m%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _format_location(location: dict[str, Any] | None) -> str | None:
    if not location:
        return None
    city = location.get("city") or ""
    state = location.get("stateProvince") or ""
    postal = location.get("postalCode") or ""
    text = f"{city}, {state} {postal}".strip(" ,")
    return text or None


@dataclass(frozen=True)
class CarrierActivity:
    tracking_number: str
    activity_type: str | None
    activity_code: str | None
    description: str | None
    location: str | None
    event_date: str | None
    event_time: str | None
    delivery_date: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CarrierActivity":
        status = payload.get("activityStatus") or {}
        return cls(
            tracking_number=(payload.get("trackingNumber") or "").strip(),
            activity_type=(status.get("type") or "").strip().upper() or None,
            activity_code=status.get("code"),
            description=status.get("description"),
            location=_format_location(payload.get("activityLocation")),
            event_date=payload.get("localActivityDate"),
            event_time=payload.get("localActivityTime"),
            delivery_date=payload.get("actualDeliveryDate"),
        )

    @property
    def occurred_at(self) -> datetime | None:
        occurred = _parse_carrier_date(self.event_date)
        if occurred is None:
            return None
        time_text = (self.event_time or "")[:6]
        if len(time_text) == 6 and time_text.isdigit():
            occurred = occurred.replace(
                hour=min(int(time_text[:2]), 23),
                minute=min(int(time_text[2:4]), 59),
                second=min(int(time_text[4:6]), 59),
            )
        return occurred

    @property
    def delivered_at(self) -> datetime | None:
        return _parse_carrier_date(self.delivery_date) or self.occurred_at


@dataclass
class WebhookResult:
    message: str
    lead_id: int | None = None
    direction: TrackingDirection | None = None
    previous_status: LeadStatus | None = None
    status: LeadStatus | None = None

    @property
    def status_changed(self) -> bool:
        return self.previous_status is not None and self.previous_status != self.status

    def as_dict(self) -> dict[str, object]:
        return {
            "message": self.message,
            "lead_id": self.lead_id,
            "direction": self.direction.value if self.direction else None,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "status": self.status.value if self.status else None,
        }


def _direction_for(lead: Lead, tracking_number: str) -> TrackingDirection:
    if lead.tracking_number == tracking_number:
        return TrackingDirection.outbound
    return TrackingDirection.inbound


def _event_for(direction: TrackingDirection, activity_type: str | None) -> LifecycleEvent | None:
    if direction == TrackingDirection.outbound:
        return _OUTBOUND_EVENTS.get(activity_type or "")
    return _INBOUND_EVENTS.get(activity_type or "")


def handle_tracking_event(
    session: Session,
    payload: dict[str, Any],
    *,
    side_effects: SideEffects,
    notifier: NotificationService,
) -> WebhookResult:
    """Record one carrier scan and move the lead forward if the scan proves progress.

    Flushes but does not commit; notifications are queued on ``side_effects``
    for the caller to run after its commit.
    """
    activity = CarrierActivity.from_payload(payload)
    if not activity.tracking_number:
        return WebhookResult(message=MESSAGE_LEAD_NOT_FOUND)

    match = TRACKING_MATCHER.match(session, IdentifierBundle(tracking_number=activity.tracking_number))
    if not match.matched:
        logger.info(
            "No lead for tracking number %s",
            activity.tracking_number,
            extra={"tracking_number": activity.tracking_number},
        )
        return WebhookResult(message=MESSAGE_LEAD_NOT_FOUND)

    lead_id = match.leads[0].id
    direction = _direction_for(match.leads[0], activity.tracking_number)
    event = _event_for(direction, activity.activity_type)
    at = activity.delivered_at if activity.activity_type == ACTIVITY_DELIVERED else activity.occurred_at

    def mutate(lead: Lead) -> TransitionResult:
        session.add(
            TrackingEvent(
                lead_id=lead.id,
                tracking_number=activity.tracking_number,
                direction=direction,
                activity_type=activity.activity_type,
                activity_code=activity.activity_code,
                description=activity.description,
                location=activity.location,
                event_date=(activity.event_date or "")[:8] or None,
                event_time=(activity.event_time or "")[:6] or None,
                occurred_at=activity.occurred_at,
            )
        )
        lead.last_tracking_update = utcnow()
        if event is None:
            return TransitionResult(lead_id=lead.id, previous_status=lead.status, status=lead.status)
        return apply_event(session, lead, event, at=at or utcnow(), actor_id="carrier")

    result = apply_serialized(session, lead_id, mutate)
    lead = session.get(Lead, lead_id)

    if activity.activity_type == ACTIVITY_EXCEPTION and direction == TrackingDirection.outbound:
        alert_id = raise_alert(
            session,
            lead_id,
            alert_type=AlertType.shipping_exception,
            severity=AlertSeverity.high,
            message=f"Shipping exception: {activity.description or 'unknown'}",
            dedupe_key=f"exception:{activity.tracking_number}:{activity.event_date or ''}{activity.event_time or ''}",
            metadata={"tracking_number": activity.tracking_number, "code": activity.activity_code},
        )
        # Redelivered scans hit the open alert and stay quiet.
        if alert_id is not None:
            side_effects.notify(notifier, lead, EVENT_SHIPPING_EXCEPTION)
    if result.changed and result.status == LeadStatus.delivered:
        raise_alert(
            session,
            lead_id,
            alert_type=AlertType.data_quality,
            severity=AlertSeverity.medium,
            message=f"Test kit delivered to {lead.first_name} {lead.last_name}. Ready for follow-up.",
            dedupe_key=f"delivered:{activity.tracking_number}",
        )

    if result.changed:
        side_effects.notify(notifier, lead, event_for_status(result.status))

    logger.info(
        "Carrier scan %s %s for lead %s: %s -> %s",
        direction.value,
        activity.activity_type,
        lead_id,
        result.previous_status.value,
        result.status.value,
        extra={"lead_id": lead_id, "tracking_number": activity.tracking_number},
    )
    return WebhookResult(
        message=MESSAGE_PROCESSED,
        lead_id=lead_id,
        direction=direction,
        previous_status=result.previous_status,
        status=result.status,
    )
