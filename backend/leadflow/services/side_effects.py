"""Post-commit side effects and the collaborators they call.

Notifications and label requests are collected while a unit of work runs and
dispatched only after it commits. A failing collaborator is logged; it never
rolls back lead state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

EVENT_STATUS_CHANGED = "status_changed"
EVENT_KIT_SHIPPED = "kit_shipped"
EVENT_KIT_DELIVERED = "kit_delivered"
EVENT_KIT_RETURNED = "kit_returned"
EVENT_SHIPPING_EXCEPTION = "shipping_exception"


_STATUS_EVENTS = {
    "SHIPPED": EVENT_KIT_SHIPPED,
    "DELIVERED": EVENT_KIT_DELIVERED,
    "KIT_COMPLETED": EVENT_KIT_RETURNED,
}


def event_for_status(status) -> str:
    value = getattr(status, "value", status)
    return _STATUS_EVENTS.get(value, EVENT_STATUS_CHANGED)


@dataclass(frozen=True)
class LeadSnapshot:
    """Detached view of a lead for collaborators that run after the session closes."""

    id: int
    first_name: str
    last_name: str
    phone: str | None
    email: str | None
    status: str
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    tracking_number: str | None = None

    @classmethod
    def from_lead(cls, lead) -> "LeadSnapshot":
        return cls(
            id=lead.id,
            first_name=lead.first_name,
            last_name=lead.last_name,
            phone=lead.phone,
            email=lead.email,
            status=lead.status.value,
            street=lead.street,
            city=lead.city,
            state=lead.state,
            zip_code=lead.zip_code,
            tracking_number=lead.tracking_number,
        )


@dataclass(frozen=True)
class ShippingLabel:
    tracking_number: str
    return_tracking_number: str | None = None


class NotificationService(Protocol):
    def notify(self, lead: LeadSnapshot, event_kind: str) -> None:
        raise NotImplementedError


class ShippingLabelService(Protocol):
    def create(self, lead: LeadSnapshot) -> ShippingLabel:
        raise NotImplementedError


class LoggingNotificationService:
    def notify(self, lead: LeadSnapshot, event_kind: str) -> None:
        logger.info(
            "Notification %s for lead %s (%s)",
            event_kind,
            lead.id,
            lead.status,
            extra={"lead_id": lead.id, "event_kind": event_kind},
        )


class UnconfiguredLabelService:
    def create(self, lead: LeadSnapshot) -> ShippingLabel:
        raise RuntimeError("No shipping label service configured")


_notification_service: NotificationService = LoggingNotificationService()
_label_service: ShippingLabelService = UnconfiguredLabelService()


def get_notification_service() -> NotificationService:
    return _notification_service


def get_label_service() -> ShippingLabelService:
    return _label_service


@dataclass
class _PendingCall:
    fn: Callable[..., Any]
    args: tuple
    kwargs: dict
    description: str


@dataclass
class SideEffects:
    """Outbox of calls to make once the surrounding transaction has committed."""

    pending: list[_PendingCall] = field(default_factory=list)

    def add(self, fn: Callable[..., Any], *args, description: str | None = None, **kwargs) -> None:
        self.pending.append(
            _PendingCall(fn=fn, args=args, kwargs=kwargs, description=description or fn.__name__)
        )

    def notify(self, notifier: NotificationService, lead, event_kind: str) -> None:
        snapshot = LeadSnapshot.from_lead(lead)
        self.add(
            notifier.notify,
            snapshot,
            event_kind,
            description=f"notify lead {snapshot.id} {event_kind}",
        )

    def discard(self) -> None:
        self.pending.clear()

    def __len__(self) -> int:
        return len(self.pending)

    def run(self) -> int:
        calls, self.pending = self.pending, []
        failures = 0
        for call in calls:
            try:
                call.fn(*call.args, **call.kwargs)
            except Exception:
                failures += 1
                logger.exception("Side effect failed: %s", call.description)
        return failures
