from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from runclub.database import get_db
from runclub.errors import NotFound
from runclub.models.registration import Attendee, AttendeeStatus
from runclub.schemas.event import AttendeeResponse
from runclub.schemas.user import CurrentUser
from runclub.services.auth import get_current_admin

router = APIRouter(prefix="/attendees", tags=["attendees"])


def get_attendee(db: Session, attendee_id: str) -> Attendee:
    attendee = db.query(Attendee).filter(Attendee.id == attendee_id).first()
    if not attendee:
        raise NotFound("Attendee not found")
    return attendee


# Check-in state is staff-owned and never touches payment_status.
@router.post("/{attendee_id}/checkin", response_model=AttendeeResponse)
def check_in(
    attendee_id: str,
    staff: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    attendee = get_attendee(db, attendee_id)
    attendee.status = AttendeeStatus.CHECKED_IN
    attendee.checked_in_at = datetime.utcnow()
    db.commit()
    db.refresh(attendee)
    return attendee


@router.post("/{attendee_id}/undo-checkin", response_model=AttendeeResponse)
def undo_check_in(
    attendee_id: str,
    staff: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    attendee = get_attendee(db, attendee_id)
    attendee.status = AttendeeStatus.PENDING
    attendee.checked_in_at = None
    db.commit()
    db.refresh(attendee)
    return attendee
