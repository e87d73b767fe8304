import logging

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from leadflow.db.session import get_db
from leadflow.deps import get_side_effects
from leadflow.schemas.webhook import CarrierWebhookOut
from leadflow.services.carrier_webhook import CarrierAuthError, handle_tracking_event, verify_credentials
from leadflow.services.errors import ConcurrentUpdateError
from leadflow.services.side_effects import NotificationService, SideEffects, get_notification_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/carrier-tracking", response_model=CarrierWebhookOut)
def carrier_tracking(
    background_tasks: BackgroundTasks,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    credential: str | None = Header(default=None),
    user_agent: str | None = Header(default=None),
    side_effects: SideEffects = Depends(get_side_effects),
    notifier: NotificationService = Depends(get_notification_service),
):
    try:
        verify_credentials(credential, user_agent)
    except CarrierAuthError as exc:
        logger.warning("Rejected carrier webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))

    try:
        result = handle_tracking_event(db, payload, side_effects=side_effects, notifier=notifier)
    except ConcurrentUpdateError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()
    background_tasks.add_task(side_effects.run)
    return result.as_dict()
