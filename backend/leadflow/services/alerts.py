from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import case, func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, joinedload

from leadflow.models.lead import Lead
from leadflow.models.lead_alert import (
    OPEN_ALERT_INDEX_COLUMNS,
    OPEN_ALERT_PREDICATES,
    SEVERITY_RANK,
    AlertSeverity,
    AlertType,
    LeadAlert,
)
from leadflow.services.audit import log_event
from leadflow.services.errors import AlertNotFoundError, LeadNotFoundError

logger = logging.getLogger(__name__)

ACTIVE_ALERT_LIMIT = 50

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class BulkScanResult:
    leads_scanned: int = 0
    alerts_created: int = 0
    duplicate_groups: list[dict[str, object]] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "leads_scanned": self.leads_scanned,
            "alerts_created": self.alerts_created,
            "duplicate_groups": self.duplicate_groups,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def insert_alert_if_absent(
    session: Session,
    *,
    lead_id: int,
    alert_type: AlertType,
    severity: AlertSeverity,
    message: str,
    dedupe_key: str,
    related_lead_id: int | None = None,
    metadata: dict | None = None,
) -> int | None:
    """Insert an open alert unless one with the same key is already open.

    Returns the new alert id, or None when the open-alert index already held one.
    """
    dialect = session.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Alert insert not supported for dialect {dialect}")
    stmt = (
        insert(LeadAlert)
        .values(
            lead_id=lead_id,
            type=alert_type,
            severity=severity,
            message=message,
            dedupe_key=dedupe_key,
            related_lead_id=related_lead_id,
            metadata_json=metadata,
            is_acknowledged=False,
        )
        .on_conflict_do_nothing(
            index_elements=list(OPEN_ALERT_INDEX_COLUMNS),
            index_where=text(OPEN_ALERT_PREDICATES[dialect]),
        )
        .returning(LeadAlert.id)
    )
    return session.execute(stmt).scalar_one_or_none()


def refresh_alert_flags(session: Session, lead_id: int) -> bool:
    open_count = session.scalar(
        select(func.count())
        .select_from(LeadAlert)
        .where(LeadAlert.lead_id == lead_id, LeadAlert.is_acknowledged.is_(False))
    )
    has_active = bool(open_count)
    # cached flag; bypasses the version counter so it never races status updates
    session.execute(
        update(Lead)
        .where(Lead.id == lead_id)
        .values(has_active_alerts=has_active)
        .execution_options(synchronize_session="fetch")
    )
    return has_active


def _duplicate_message(other: Lead) -> str:
    vendor = other.vendor.name if other.vendor is not None else other.vendor_code
    submitted = other.created_at.strftime("%m/%d/%Y") if other.created_at else "unknown date"
    return (
        f"Duplicate MBI detected: {other.first_name} {other.last_name} "
        f"from {vendor} (submitted {submitted})"
    )


def _duplicate_metadata(other: Lead) -> dict:
    return {
        "duplicate_lead": {
            "id": other.id,
            "name": other.full_name,
            "vendor": other.vendor.name if other.vendor is not None else other.vendor_code,
            "test_type": other.test_type.value,
            "status": other.status.value,
            "submitted_at": other.created_at.isoformat() if other.created_at else None,
        }
    }


def _pair_alert_exists(session: Session, lead_id: int, related_lead_id: int) -> bool:
    existing = session.scalar(
        select(LeadAlert.id)
        .where(
            LeadAlert.lead_id == lead_id,
            LeadAlert.type == AlertType.mbi_duplicate,
            LeadAlert.dedupe_key == str(related_lead_id),
        )
        .limit(1)
    )
    return existing is not None


def _raise_duplicate_alert(session: Session, lead_id: int, other: Lead) -> int | None:
    if _pair_alert_exists(session, lead_id, other.id):
        return None
    return insert_alert_if_absent(
        session,
        lead_id=lead_id,
        alert_type=AlertType.mbi_duplicate,
        severity=AlertSeverity.high,
        message=_duplicate_message(other),
        dedupe_key=str(other.id),
        related_lead_id=other.id,
        metadata=_duplicate_metadata(other),
    )


def check_for_duplicate(session: Session, lead_id: int) -> list[int]:
    lead = session.get(Lead, lead_id)
    if lead is None:
        raise LeadNotFoundError(f"Lead {lead_id} not found")
    if not lead.mbi:
        return []

    others = session.scalars(
        select(Lead)
        .options(joinedload(Lead.vendor))
        .where(Lead.mbi == lead.mbi, Lead.id != lead.id)
        .order_by(Lead.created_at, Lead.id)
    ).all()

    created: list[int] = []
    for other in others:
        alert_id = _raise_duplicate_alert(session, lead.id, other)
        if alert_id is not None:
            created.append(alert_id)

    if created:
        logger.info(
            "Raised %s duplicate MBI alert(s) for lead %s",
            len(created),
            lead.id,
            extra={"lead_id": lead.id},
        )
    refresh_alert_flags(session, lead.id)
    return created


def raise_alert(
    session: Session,
    lead_id: int,
    *,
    alert_type: AlertType,
    severity: AlertSeverity,
    message: str,
    dedupe_key: str = "",
    metadata: dict | None = None,
) -> int | None:
    alert_id = insert_alert_if_absent(
        session,
        lead_id=lead_id,
        alert_type=alert_type,
        severity=severity,
        message=message,
        dedupe_key=dedupe_key,
        metadata=metadata,
    )
    refresh_alert_flags(session, lead_id)
    return alert_id


def acknowledge_alert(session: Session, alert_id: int, actor_id: str) -> LeadAlert:
    alert = session.get(LeadAlert, alert_id)
    if alert is None:
        raise AlertNotFoundError(f"Alert {alert_id} not found")
    if not alert.is_acknowledged:
        alert.is_acknowledged = True
        alert.acknowledged_by = actor_id
        alert.acknowledged_at = _utcnow()
        session.flush()
        log_event(
            session,
            actor_id=actor_id,
            action="alert.acknowledged",
            entity_type="lead_alert",
            entity_id=alert.id,
            before_data={"is_acknowledged": False},
            after_data={"is_acknowledged": True, "lead_id": alert.lead_id},
        )
    refresh_alert_flags(session, alert.lead_id)
    return alert


def mark_lead_duplicate(session: Session, lead_id: int, actor_id: str) -> int:
    """Advocate confirmed the lead is a duplicate; close its open duplicate alerts."""
    lead = session.get(Lead, lead_id)
    if lead is None:
        raise LeadNotFoundError(f"Lead {lead_id} not found")
    lead.is_duplicate = True
    if lead.advocate_id is None:
        lead.advocate_id = actor_id
    if lead.advocate_reviewed_at is None:
        lead.advocate_reviewed_at = _utcnow()

    open_alerts = session.scalars(
        select(LeadAlert).where(
            LeadAlert.lead_id == lead_id,
            LeadAlert.type == AlertType.mbi_duplicate,
            LeadAlert.is_acknowledged.is_(False),
        )
    ).all()
    now = _utcnow()
    for alert in open_alerts:
        alert.is_acknowledged = True
        alert.acknowledged_by = actor_id
        alert.acknowledged_at = now
    session.flush()
    refresh_alert_flags(session, lead_id)
    return len(open_alerts)


def list_lead_alerts(session: Session, lead_id: int) -> list[LeadAlert]:
    return list(
        session.scalars(
            select(LeadAlert)
            .where(LeadAlert.lead_id == lead_id)
            .order_by(LeadAlert.created_at.desc(), LeadAlert.id.desc())
        )
    )


def list_active_alerts(session: Session, limit: int = ACTIVE_ALERT_LIMIT) -> list[LeadAlert]:
    severity_order = case(
        *[(LeadAlert.severity == severity, weight) for severity, weight in SEVERITY_RANK.items()],
        else_=0,
    )
    stmt = (
        select(LeadAlert)
        .options(joinedload(LeadAlert.lead).joinedload(Lead.vendor))
        .where(LeadAlert.is_acknowledged.is_(False))
        .order_by(severity_order.desc(), LeadAlert.created_at.desc(), LeadAlert.id.desc())
        .limit(limit)
    )
    return list(session.scalars(stmt).unique())


def bulk_duplicate_scan(session: Session) -> BulkScanResult:
    result = BulkScanResult()
    group_rows = session.execute(
        select(Lead.mbi, func.count(Lead.id))
        .where(Lead.mbi.is_not(None))
        .group_by(Lead.mbi)
    ).all()

    for mbi, count in group_rows:
        result.leads_scanned += count
        if count < 2:
            continue
        leads = session.scalars(
            select(Lead)
            .options(joinedload(Lead.vendor))
            .where(Lead.mbi == mbi)
            .order_by(Lead.created_at, Lead.id)
        ).all()
        canonical, duplicates = leads[0], leads[1:]
        result.duplicate_groups.append(
            {"mbi": mbi, "canonical_lead_id": canonical.id, "lead_ids": [lead.id for lead in leads]}
        )
        for duplicate in duplicates:
            alert_id = _raise_duplicate_alert(session, duplicate.id, canonical)
            if alert_id is not None:
                result.alerts_created += 1
                refresh_alert_flags(session, duplicate.id)

    logger.info(
        "Bulk duplicate scan: %s leads, %s groups, %s alerts created",
        result.leads_scanned,
        len(result.duplicate_groups),
        result.alerts_created,
    )
    return result
