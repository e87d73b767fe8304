from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from leadflow.db.session import get_db
from leadflow.deps import get_current_actor, require_admin
from leadflow.schemas.actor import Actor
from leadflow.schemas.alert import ActiveAlertOut, AlertOut, BulkScanOut
from leadflow.services.alerts import (
    ACTIVE_ALERT_LIMIT,
    acknowledge_alert,
    bulk_duplicate_scan,
    list_active_alerts,
)
from leadflow.services.errors import AlertNotFoundError

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=list[ActiveAlertOut])
def active_alerts(
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
    limit: int = Query(default=ACTIVE_ALERT_LIMIT, ge=1, le=500),
):
    return list_active_alerts(db, limit=limit)


@router.post("/{alert_id}/acknowledge", response_model=AlertOut)
def acknowledge(
    alert_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        alert = acknowledge_alert(db, alert_id, actor.id)
    except AlertNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    db.commit()
    db.refresh(alert)
    return alert


@router.post("/bulk-check", response_model=BulkScanOut)
def bulk_check(
    db: Session = Depends(get_db),
    _admin: Actor = Depends(require_admin),
):
    result = bulk_duplicate_scan(db)
    db.commit()
    return result.as_dict()
