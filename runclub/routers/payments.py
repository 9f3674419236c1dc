import logging
from dataclasses import dataclass
from typing import Optional
from fastapi import APIRouter, Depends, Request, Header, BackgroundTasks
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from runclub.database import get_db, get_session_factory
from runclub.dependencies import get_checkout_service, get_dispatcher, get_processor, get_refund_coordinator
from runclub.errors import BadRequest
from runclub.limiter import limiter
from runclub.models.event import Event
from runclub.models.member import Member
from runclub.models.payer import MemberPayer
from runclub.models.registration import Attendee
from runclub.models.transaction import PaymentTransaction
from runclub.schemas.payment import (
    RefundRequest, RefundResponse, WarningInfo, CheckoutRequest, CheckoutResponse,
    CustomerPayments, TransactionResponse, CancelRegistrationRequest, CancelRegistrationResponse,
    SyncPaymentRequest, SyncPaymentResponse
)
from runclub.schemas.user import CurrentUser
from runclub.services.auth import get_current_admin, get_current_user_required
from runclub.services.checkout import CheckoutService
from runclub.services.email import EmailService
from runclub.services.ledger import LedgerService
from runclub.services.notifications import (
    NotificationDispatcher, PushMessage, dispatch_in_background, payment_confirmed_message
)
from runclub.services.processor import StripeProcessor
from runclub.services.refund import RefundCoordinator

router = APIRouter(prefix="/payments", tags=["payments"])
logger = logging.getLogger(__name__)


@dataclass
class PaymentConfirmation:
    """Plain values needed to notify a payer, read while the session is still usable."""
    email: Optional[str]
    name: Optional[str]
    event_title: str
    amount: float
    currency: str
    member_id: Optional[str] = None
    push: Optional[PushMessage] = None


def payer_contact(db: Session, transaction: PaymentTransaction):
    """(email, name) for the payer of a transaction, or (None, None)."""
    payer = transaction.payer
    if isinstance(payer, MemberPayer):
        member = db.query(Member).filter(Member.id == payer.id).first()
        return (member.email, member.full_name or member.email) if member else (None, None)
    attendee = db.query(Attendee).filter(Attendee.id == payer.id).first()
    return (attendee.email, attendee.name) if attendee else (None, None)


def payment_confirmation(db: Session, transaction: PaymentTransaction) -> Optional[PaymentConfirmation]:
    club_event = db.query(Event).filter(Event.id == transaction.event_id).first()
    if not club_event:
        return None
    email, name = payer_contact(db, transaction)
    return PaymentConfirmation(
        email=email,
        name=name,
        event_title=club_event.title,
        amount=transaction.amount,
        currency=transaction.currency,
        member_id=transaction.member_id,
        push=payment_confirmed_message(club_event, transaction.member_id) if transaction.member_id else None
    )


def queue_confirmation(
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher,
    session_factory,
    confirmation: PaymentConfirmation
) -> None:
    if confirmation.email:
        background_tasks.add_task(
            EmailService.send_payment_confirmation,
            confirmation.email,
            confirmation.name,
            confirmation.event_title,
            confirmation.amount,
            confirmation.currency
        )
    if confirmation.push:
        background_tasks.add_task(
            dispatch_in_background,
            dispatcher,
            session_factory,
            confirmation.push,
            confirmation.member_id
        )


def queue_refund_notice(background_tasks: BackgroundTasks, db: Session, transaction_id: str) -> None:
    transaction = LedgerService.get(db, transaction_id)
    email, name = payer_contact(db, transaction)
    event = db.query(Event).filter(Event.id == transaction.event_id).first()
    if email and event:
        background_tasks.add_task(
            EmailService.send_refund_notice,
            email,
            name,
            event.title,
            transaction.amount,
            transaction.currency
        )


@router.post("/refund", response_model=RefundResponse, response_model_exclude_none=True)
@limiter.limit("10/minute")
def refund_transaction(
    request: Request,
    body: RefundRequest,
    background_tasks: BackgroundTasks,
    admin: CurrentUser = Depends(get_current_admin),
    coordinator: RefundCoordinator = Depends(get_refund_coordinator),
    db: Session = Depends(get_db)
):
    result = coordinator.refund(db, body.transaction_id, body.reason)
    logger.info(f"Admin {admin.id} refunded transaction {body.transaction_id} ({result.refund_id})")

    response = RefundResponse(refund_id=result.refund_id, status=result.status)
    if result.reconciliation_pending:
        warning = result.warnings[0]
        response.warning = WarningInfo(code=warning.code, message=warning.message)
        return response

    queue_refund_notice(background_tasks, db, body.transaction_id)
    return response


@router.post("/cancel-registration", response_model=CancelRegistrationResponse, response_model_exclude_none=True)
@limiter.limit("10/minute")
def cancel_registration(
    request: Request,
    body: CancelRegistrationRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user_required),
    coordinator: RefundCoordinator = Depends(get_refund_coordinator),
    db: Session = Depends(get_db)
):
    result = coordinator.cancel_registration(db, user.id, body.registration_id)
    response = CancelRegistrationResponse(registration_id=result.registration_id)
    if result.refund is None:
        return response

    response.refund_id = result.refund.refund_id
    response.refund_status = result.refund.status
    if result.refund.reconciliation_pending:
        warning = result.refund.warnings[0]
        response.warning = WarningInfo(code=warning.code, message=warning.message)
    else:
        queue_refund_notice(background_tasks, db, result.refund.transaction_id)
    return response


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    body: CheckoutRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
    db: Session = Depends(get_db)
):
    session = checkout.start_checkout(
        db,
        event_id=body.event_id,
        member_id=body.member_id,
        attendee_id=body.attendee_id
    )
    return CheckoutResponse(session_id=session.id, url=session.url)


@router.post("/sync-payment", response_model=SyncPaymentResponse)
@limiter.limit("10/minute")
def sync_payment(
    request: Request,
    body: SyncPaymentRequest,
    background_tasks: BackgroundTasks,
    checkout: CheckoutService = Depends(get_checkout_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    session_factory=Depends(get_session_factory),
    db: Session = Depends(get_db)
):
    outcome = checkout.sync_payment(db, body.session_id)
    transaction = outcome.transaction

    if outcome.confirmed:
        confirmation = payment_confirmation(db, transaction)
        if confirmation:
            queue_confirmation(background_tasks, dispatcher, session_factory, confirmation)

    return SyncPaymentResponse(transaction_id=transaction.id, status=transaction.status, confirmed=outcome.confirmed)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str = Header(None, alias="stripe-signature"),
    processor: StripeProcessor = Depends(get_processor),
    checkout: CheckoutService = Depends(get_checkout_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    session_factory=Depends(get_session_factory),
    db: Session = Depends(get_db)
):
    if not stripe_signature:
        raise BadRequest("Missing signature")

    payload = await request.body()

    try:
        event = processor.verify_webhook_signature(payload, stripe_signature)
    except ValueError:
        raise BadRequest("Invalid signature")

    def apply_event() -> Optional[PaymentConfirmation]:
        outcome = checkout.handle_event(db, event)
        if outcome.confirmed and outcome.transaction is not None:
            return payment_confirmation(db, outcome.transaction)
        return None

    # Session work stays off the event loop
    confirmation = await run_in_threadpool(apply_event)
    if confirmation:
        queue_confirmation(background_tasks, dispatcher, session_factory, confirmation)

    return {"received": True}


@router.get("/customer/{customer_ref}", response_model=CustomerPayments)
def customer_payments(
    customer_ref: str,
    admin: CurrentUser = Depends(get_current_admin),
    processor: StripeProcessor = Depends(get_processor)
):
    return CustomerPayments(
        payment_history=processor.list_payment_history(customer_ref),
        payment_methods=processor.list_payment_methods(customer_ref)
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return LedgerService.get(db, transaction_id)
