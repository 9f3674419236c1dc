from typing import List
from fastapi import APIRouter, Depends, BackgroundTasks
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from runclub.database import get_db, get_session_factory
from runclub.dependencies import get_dispatcher
from runclub.errors import BadRequest, NotFound
from runclub.models.event import Event
from runclub.models.registration import Attendee, PaymentStatus
from runclub.schemas.event import EventCreate, EventResponse, AttendeeCreate, AttendeeResponse
from runclub.schemas.user import CurrentUser
from runclub.services.auth import get_current_admin
from runclub.services.notifications import NotificationDispatcher, dispatch_in_background, new_event_message

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=List[EventResponse])
def list_events(db: Session = Depends(get_db)):
    return db.query(Event).order_by(Event.date.asc()).all()


@router.post("", response_model=EventResponse, status_code=201)
def create_event(
    body: EventCreate,
    background_tasks: BackgroundTasks,
    admin: CurrentUser = Depends(get_current_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    session_factory=Depends(get_session_factory),
    db: Session = Depends(get_db)
):
    event = Event(**body.model_dump())
    db.add(event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise BadRequest(f"An event with slug '{body.slug}' already exists")
    db.refresh(event)

    # Runs after the response is sent; its outcome never affects creation.
    background_tasks.add_task(
        dispatch_in_background,
        dispatcher,
        session_factory,
        new_event_message(event)
    )
    return event


@router.post("/{event_id}/attendees", response_model=AttendeeResponse, status_code=201)
def register_guest(
    event_id: str,
    body: AttendeeCreate,
    db: Session = Depends(get_db)
):
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise NotFound("Event not found")

    attendee = Attendee(
        event_id=event.id,
        name=body.name,
        email=body.email,
        phone=body.phone,
        payment_status=PaymentStatus.PENDING
    )
    db.add(attendee)
    db.commit()
    db.refresh(attendee)
    return attendee
