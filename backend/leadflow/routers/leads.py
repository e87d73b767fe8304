from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session, sessionmaker

from leadflow.db.session import get_db, get_session_factory
from leadflow.deps import get_current_actor, get_side_effects, require_roles
from leadflow.schemas.actor import Actor, Role
from leadflow.schemas.alert import AlertOut
from leadflow.schemas.duplicate_check import DuplicateCheckRequest, DuplicateCheckResponse
from leadflow.schemas.lead import LeadCreate, LeadOut, LeadUpdate
from leadflow.services import leads as lead_service
from leadflow.services.alerts import check_for_duplicate, list_lead_alerts
from leadflow.services.errors import (
    ConcurrentUpdateError,
    DuplicateSubmissionError,
    IllegalTransitionError,
    LeadNotFoundError,
    RowValidationError,
    VendorNotFoundError,
)
from leadflow.services.side_effects import (
    NotificationService,
    ShippingLabelService,
    SideEffects,
    get_label_service,
    get_notification_service,
)

router = APIRouter(prefix="/leads", tags=["leads"])

_staff = require_roles(Role.admin, Role.advocate, Role.collections)


@router.post("/check-mbi-duplicate", response_model=DuplicateCheckResponse)
def check_mbi_duplicate(
    payload: DuplicateCheckRequest,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    decision = lead_service.check_duplicate(
        db, payload.mbi, payload.test_type, exclude_lead_id=payload.exclude_lead_id
    )
    return decision.as_dict()


@router.post("", response_model=LeadOut, status_code=status.HTTP_201_CREATED)
def create_lead(
    payload: LeadCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    data = payload.model_dump()
    if actor.role == Role.vendor:
        if actor.vendor_code and actor.vendor_code != payload.vendor_code:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    try:
        lead = lead_service.submit_lead(db, data, actor_id=actor.id)
    except RowValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except VendorNotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except DuplicateSubmissionError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.decision.as_dict())
    db.commit()
    db.refresh(lead)
    return lead


@router.get("/{lead_id}", response_model=LeadOut)
def get_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    try:
        check_for_duplicate(db, lead_id)
    except LeadNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    db.commit()
    lead = lead_service.get_lead(db, lead_id)
    db.refresh(lead)
    return lead


@router.patch("/{lead_id}", response_model=LeadOut)
def update_lead(
    lead_id: int,
    payload: LeadUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(_staff),
    side_effects: SideEffects = Depends(get_side_effects),
    notifier: NotificationService = Depends(get_notification_service),
):
    updates = payload.model_dump(exclude_unset=True)
    try:
        lead = lead_service.update_lead(
            db,
            lead_id,
            updates,
            actor_id=actor.id,
            notifier=notifier,
            side_effects=side_effects,
        )
    except LeadNotFoundError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    except IllegalTransitionError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.as_dict())
    except ConcurrentUpdateError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()
    db.refresh(lead)
    background_tasks.add_task(side_effects.run)
    return lead


@router.post("/{lead_id}/ship", response_model=LeadOut)
def ship_lead(
    lead_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(_staff),
    side_effects: SideEffects = Depends(get_side_effects),
    label_service: ShippingLabelService = Depends(get_label_service),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    try:
        lead = lead_service.request_shipment(
            db,
            lead_id,
            actor_id=actor.id,
            side_effects=side_effects,
            label_service=label_service,
            session_factory=session_factory,
        )
    except LeadNotFoundError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    except IllegalTransitionError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.as_dict())
    except ConcurrentUpdateError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    db.commit()
    db.refresh(lead)
    background_tasks.add_task(side_effects.run)
    return lead


@router.get("/{lead_id}/alerts", response_model=list[AlertOut])
def lead_alerts(
    lead_id: int,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(get_current_actor),
):
    try:
        lead_service.get_lead(db, lead_id)
    except LeadNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    return list_lead_alerts(db, lead_id)
