from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from runclub.database import get_db
from runclub.errors import NotFound
from runclub.models.event import Event
from runclub.models.payer import MemberPayer
from runclub.schemas.payment import ReconciliationTaskResponse, DriftResponse
from runclub.schemas.user import CurrentUser
from runclub.services.auth import get_current_admin
from runclub.services.projector import RegistrationProjector, Drift
from runclub.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/admin", tags=["admin"])


def drift_response(entry: Drift) -> DriftResponse:
    return DriftResponse(
        payer_kind="member" if isinstance(entry.payer, MemberPayer) else "guest",
        payer_id=entry.payer.id,
        transaction_id=entry.transaction_id,
        current=entry.current.value,
        expected=entry.expected.value
    )


def get_event(db: Session, event_id: str) -> Event:
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise NotFound("Event not found")
    return event


@router.get("/reconciliation", response_model=List[ReconciliationTaskResponse])
def pending_reconciliation(
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return ReconciliationService.list_pending(db)


@router.post("/reconciliation/retry")
def retry_reconciliation(
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return ReconciliationService.retry_pending(db)


@router.get("/events/{event_id}/payment-drift", response_model=List[DriftResponse])
def payment_drift(
    event_id: str,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    event = get_event(db, event_id)
    return [drift_response(entry) for entry in RegistrationProjector.find_drift(db, event.id)]


@router.post("/events/{event_id}/resync", response_model=List[DriftResponse])
def resync_event(
    event_id: str,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    event = get_event(db, event_id)
    return [drift_response(entry) for entry in RegistrationProjector.resync(db, event.id)]
