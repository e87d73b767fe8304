from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from leadflow.db.session import SessionLocal
from leadflow.models.lead import LeadStatus, LeadTestType
from leadflow.models.lead_alert import AlertSeverity, AlertType, LeadAlert
from leadflow.services.alerts import (
    acknowledge_alert,
    bulk_duplicate_scan,
    check_for_duplicate,
    insert_alert_if_absent,
    list_active_alerts,
    raise_alert,
)

MBI = "1EG4TE5MK73"


def open_alert_count(session, lead_id, alert_type=AlertType.mbi_duplicate) -> int:
    return session.scalar(
        select(func.count())
        .select_from(LeadAlert)
        .where(
            LeadAlert.lead_id == lead_id,
            LeadAlert.type == alert_type,
            LeadAlert.is_acknowledged.is_(False),
        )
    )


def test_duplicate_mbi_raises_alert_against_older_lead(session, make_lead):
    first = make_lead(
        mbi=MBI,
        first_name="Ann",
        last_name="Lee",
        created_at=datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc),
    )
    second = make_lead(mbi=MBI, test_type=LeadTestType.neuro)

    created = check_for_duplicate(session, second.id)
    session.commit()

    assert len(created) == 1
    alert = session.get(LeadAlert, created[0])
    assert alert.type == AlertType.mbi_duplicate
    assert alert.severity == AlertSeverity.high
    assert alert.related_lead_id == first.id
    assert alert.message == "Duplicate MBI detected: Ann Lee from Acme Labs (submitted 01/15/2025)"
    assert alert.metadata_json["duplicate_lead"]["id"] == first.id
    session.refresh(second)
    assert second.has_active_alerts is True


def test_repeated_checks_do_not_duplicate_alerts(session, make_lead):
    make_lead(mbi=MBI)
    second = make_lead(mbi=MBI, test_type=LeadTestType.neuro)

    assert len(check_for_duplicate(session, second.id)) == 1
    session.commit()
    assert check_for_duplicate(session, second.id) == []
    session.commit()
    assert open_alert_count(session, second.id) == 1


def test_acknowledged_pair_is_not_raised_again(session, make_lead):
    make_lead(mbi=MBI)
    second = make_lead(mbi=MBI, test_type=LeadTestType.neuro)
    alert_id = check_for_duplicate(session, second.id)[0]
    session.commit()

    acknowledge_alert(session, alert_id, "advocate-1")
    session.commit()
    session.refresh(second)
    assert second.has_active_alerts is False

    assert check_for_duplicate(session, second.id) == []
    session.commit()
    assert open_alert_count(session, second.id) == 0


def test_racing_inserts_leave_one_open_alert(session, make_lead):
    make_lead(mbi=MBI)
    second = make_lead(mbi=MBI, test_type=LeadTestType.neuro)
    other = SessionLocal()
    try:
        kwargs = dict(
            lead_id=second.id,
            alert_type=AlertType.mbi_duplicate,
            severity=AlertSeverity.high,
            message="Duplicate MBI detected",
            dedupe_key="1",
        )
        first_id = insert_alert_if_absent(session, **kwargs)
        session.commit()
        # the second writer skipped the existence check and lost the race
        second_id = insert_alert_if_absent(other, **kwargs)
        other.commit()
    finally:
        other.close()

    assert first_id is not None
    assert second_id is None
    assert open_alert_count(session, second.id) == 1


def test_acknowledged_alert_frees_the_open_slot(session, make_lead):
    lead = make_lead()
    first_id = raise_alert(
        session,
        lead.id,
        alert_type=AlertType.shipping_exception,
        severity=AlertSeverity.high,
        message="Shipping exception: damaged",
        dedupe_key="exception:1Z999",
    )
    session.commit()
    acknowledge_alert(session, first_id, "collections-1")
    session.commit()

    again = raise_alert(
        session,
        lead.id,
        alert_type=AlertType.shipping_exception,
        severity=AlertSeverity.high,
        message="Shipping exception: damaged",
        dedupe_key="exception:1Z999",
    )
    session.commit()
    assert again is not None
    assert again != first_id


def test_active_alerts_sorted_by_severity_then_recency(session, make_lead):
    lead = make_lead()
    for severity, key in (
        (AlertSeverity.medium, "a"),
        (AlertSeverity.critical, "b"),
        (AlertSeverity.low, "c"),
        (AlertSeverity.high, "d"),
    ):
        raise_alert(
            session,
            lead.id,
            alert_type=AlertType.data_quality,
            severity=severity,
            message=f"check {key}",
            dedupe_key=key,
        )
    session.commit()

    alerts = list_active_alerts(session)
    assert [alert.severity for alert in alerts] == [
        AlertSeverity.critical,
        AlertSeverity.high,
        AlertSeverity.medium,
        AlertSeverity.low,
    ]
    assert alerts[0].lead.id == lead.id
    assert len(list_active_alerts(session, limit=2)) == 2


def test_bulk_scan_alerts_every_later_lead_against_the_first(session, make_lead):
    now = datetime.now(timezone.utc)
    canonical = make_lead(mbi=MBI, created_at=now - timedelta(days=40))
    later = make_lead(mbi=MBI, test_type=LeadTestType.neuro, created_at=now - timedelta(days=5))
    latest = make_lead(mbi=MBI, status=LeadStatus.shipped, created_at=now)
    make_lead(mbi="2EG4TE5MK73")

    result = bulk_duplicate_scan(session)
    session.commit()

    assert result.leads_scanned == 4
    assert result.alerts_created == 2
    assert result.duplicate_groups == [
        {"mbi": MBI, "canonical_lead_id": canonical.id, "lead_ids": [canonical.id, later.id, latest.id]}
    ]
    assert open_alert_count(session, later.id) == 1
    assert open_alert_count(session, latest.id) == 1
    assert open_alert_count(session, canonical.id) == 0

    rerun = bulk_duplicate_scan(session)
    session.commit()
    assert rerun.alerts_created == 0
