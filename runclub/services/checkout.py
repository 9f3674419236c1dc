import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from runclub.errors import ClubError, NotFound, BadRequest, InvalidState
from runclub.models.event import Event
from runclub.models.member import Member
from runclub.models.payer import MemberPayer, GuestPayer, payer_from_ids
from runclub.models.registration import EventRegistration, Attendee, PaymentStatus, RegistrationStatus
from runclub.models.transaction import PaymentTransaction, TransactionStatus
from runclub.services.ledger import LedgerService
from runclub.services.processor import StripeProcessor, CheckoutSession
from runclub.services.projector import RegistrationProjector

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
FAILURE_EVENTS = {
    "payment_intent.payment_failed",
    "payment_intent.canceled",
    "checkout.session.async_payment_failed",
}


@dataclass
class WebhookOutcome:
    event_type: str
    transaction: Optional[PaymentTransaction] = None
    confirmed: bool = False


class CheckoutService:
    """Starts paid checkouts and applies Stripe's callbacks to the ledger and projection."""

    def __init__(self, processor: StripeProcessor):
        self.processor = processor

    def start_checkout(
        self,
        db: Session,
        event_id: str,
        member_id: Optional[str] = None,
        attendee_id: Optional[str] = None
    ) -> CheckoutSession:
        try:
            payer = payer_from_ids(member_id, attendee_id)
        except ValueError as e:
            raise BadRequest(str(e))

        event = db.query(Event).filter(Event.id == event_id).first()
        if not event:
            raise NotFound("Event not found")
        if event.is_free:
            raise BadRequest("This event does not require payment")

        self._check_capacity(db, event, payer)

        customer_email = None
        customer_id = None
        if isinstance(payer, MemberPayer):
            member = db.query(Member).filter(Member.id == payer.id).first()
            if not member:
                raise NotFound("Member not found")
            registration = db.query(EventRegistration).filter(
                EventRegistration.event_id == event.id,
                EventRegistration.member_id == member.id
            ).first()
            self._check_not_paid(db, event.id, payer, registration.payment_status if registration else None)
            customer_email = member.email
            customer_id = member.stripe_customer_id
            self._ensure_registration(db, event.id, member.id, registration)
        else:
            attendee = db.query(Attendee).filter(
                Attendee.id == payer.id,
                Attendee.event_id == event.id
            ).first()
            if not attendee:
                raise NotFound("Attendee not found")
            self._check_not_paid(db, event.id, payer, attendee.payment_status)
            customer_email = attendee.email
            customer_id = attendee.stripe_customer_id

        session = self.processor.create_checkout_session(
            title=event.title,
            amount=event.price,
            metadata={
                "event_id": event.id,
                "member_id": member_id or "",
                "attendee_id": attendee_id or "",
                "is_guest": "true" if isinstance(payer, GuestPayer) else "false",
            },
            customer_email=customer_email,
            customer_id=customer_id,
            cancel_url=f"{self.processor.settings.frontend_url}/eventos/{event.slug}"
        )

        LedgerService.record_attempt(
            db,
            event_id=event.id,
            payer=payer,
            amount=event.price,
            currency=self.processor.settings.currency,
            stripe_session_id=session.id,
            processor_ref=session.payment_intent
        )
        return session

    @staticmethod
    def _check_capacity(db: Session, event: Event, payer) -> None:
        if not event.max_participants:
            return

        holding = [PaymentStatus.PAID, PaymentStatus.PENDING]
        registrations = db.query(EventRegistration).filter(
            EventRegistration.event_id == event.id,
            EventRegistration.payment_status.in_(holding)
        )
        attendees = db.query(Attendee).filter(
            Attendee.event_id == event.id,
            Attendee.payment_status.in_(holding)
        )
        # The payer's own pending row already holds their spot
        if isinstance(payer, MemberPayer):
            registrations = registrations.filter(EventRegistration.member_id != payer.id)
        else:
            attendees = attendees.filter(Attendee.id != payer.id)

        if registrations.count() + attendees.count() >= event.max_participants:
            raise BadRequest(f"Event is full ({event.max_participants} participants)")

    @staticmethod
    def _check_not_paid(db: Session, event_id: str, payer, row_status: Optional[PaymentStatus]) -> None:
        """Refuse a second charge for a payer whose row or latest transaction is already paid."""
        latest = LedgerService.latest_for_payer(db, event_id, payer)
        if row_status == PaymentStatus.PAID or (latest is not None and latest.status == TransactionStatus.SUCCEEDED):
            raise BadRequest(
                f"{payer} has already paid for event {event_id}",
                context={"transaction_id": latest.id if latest is not None else None}
            )

    @staticmethod
    def _ensure_registration(
        db: Session,
        event_id: str,
        member_id: str,
        registration: Optional[EventRegistration]
    ) -> None:
        if registration is None:
            db.add(EventRegistration(event_id=event_id, member_id=member_id, payment_status=PaymentStatus.PENDING))
            db.commit()
        elif registration.status == RegistrationStatus.CANCELLED:
            logger.info(f"Reopening cancelled registration {registration.id} for member {member_id}")
            registration.status = RegistrationStatus.CONFIRMED
            registration.payment_status = PaymentStatus.PENDING
            db.commit()

    def sync_payment(self, db: Session, session_id: str) -> WebhookOutcome:
        """
        Pull a checkout session from Stripe and apply it as if its webhook
        had arrived. Recovers payments whose checkout.session.completed
        event was never delivered.
        """
        session = self.processor.retrieve_checkout_session(session_id)
        if session.get("payment_status") != "paid":
            raise BadRequest(
                f"Checkout session {session_id} is not paid",
                context={"payment_status": session.get("payment_status")}
            )

        if LedgerService.find_by_session_id(db, session_id) is None:
            self._record_from_metadata(db, session)

        outcome = WebhookOutcome(event_type="checkout.session.completed")
        self._on_checkout_paid(db, session, outcome)
        return outcome

    def _record_from_metadata(self, db: Session, session: dict) -> PaymentTransaction:
        """Ledger entry for a paid session that never reached start_checkout's bookkeeping."""
        metadata = session.get("metadata") or {}
        try:
            payer = payer_from_ids(metadata.get("member_id") or None, metadata.get("attendee_id") or None)
        except ValueError:
            raise BadRequest(f"Checkout session {session.get('id')} has incomplete metadata")
        amount_total = session.get("amount_total") or 0
        if not metadata.get("event_id") or amount_total <= 0:
            raise BadRequest(f"Checkout session {session.get('id')} has incomplete metadata")

        logger.warning(f"No ledger entry for paid checkout session {session.get('id')}, recording it")
        return LedgerService.record_attempt(
            db,
            event_id=metadata["event_id"],
            payer=payer,
            amount=amount_total / 100,
            currency=session.get("currency") or self.processor.settings.currency,
            stripe_session_id=session.get("id")
        )

    def handle_event(self, db: Session, event: dict) -> WebhookOutcome:
        """
        Apply one verified Stripe event. Processing errors are logged, not
        raised, so Stripe does not redeliver the same event forever.
        """
        event_type = event.get("type", "")
        obj = event.get("data", {}).get("object", {})
        outcome = WebhookOutcome(event_type=event_type)

        try:
            if event_type in SUCCESS_EVENTS:
                self._on_checkout_paid(db, obj, outcome)
            elif event_type == "payment_intent.succeeded":
                self._on_payment_intent_succeeded(db, obj, outcome)
            elif event_type in FAILURE_EVENTS:
                processor_ref = obj.get("payment_intent") if event_type.startswith("checkout") else obj.get("id")
                self._on_payment_failed(db, processor_ref, outcome)
            elif event_type == "charge.refunded":
                self._on_charge_refunded(db, obj, outcome)
            else:
                logger.info(f"Unhandled Stripe event type: {event_type}")
        except (ClubError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Error processing Stripe event {event_type}: {e}")

        return outcome

    def _on_checkout_paid(self, db: Session, session: dict, outcome: WebhookOutcome) -> None:
        if session.get("payment_status") not in ("paid", "no_payment_required"):
            logger.info(f"Checkout session {session.get('id')} completed with payment still pending")
            return

        existing = LedgerService.find_by_session_id(db, session.get("id"))
        already_succeeded = existing is not None and existing.status == TransactionStatus.SUCCEEDED

        methods = session.get("payment_method_types") or ["card"]
        transaction = LedgerService.mark_succeeded(
            db,
            session.get("payment_intent"),
            session_id=session.get("id"),
            payment_method=methods[0]
        )
        amount_total = session.get("amount_total")
        RegistrationProjector.project(
            db,
            transaction.event_id,
            transaction.payer,
            PaymentStatus.PAID,
            stripe_session_id=session.get("id"),
            stripe_payment_intent_id=session.get("payment_intent"),
            amount_paid=amount_total / 100 if amount_total is not None else transaction.amount,
            currency=session.get("currency") or transaction.currency
        )
        outcome.transaction = transaction
        # Redelivered events must not repeat the confirmation e-mail and push
        outcome.confirmed = not already_succeeded

    def _on_payment_intent_succeeded(self, db: Session, intent: dict, outcome: WebhookOutcome) -> None:
        existing = LedgerService.find_by_processor_ref(db, intent.get("id"))
        if existing is None:
            # The checkout.session.completed event carries the session id and handles it
            logger.info(f"Payment intent {intent.get('id')} not linked to a transaction yet")
            return
        already_succeeded = existing.status == TransactionStatus.SUCCEEDED

        methods = intent.get("payment_method_types") or ["card"]
        transaction = LedgerService.mark_succeeded(db, intent.get("id"), payment_method=methods[0])
        RegistrationProjector.project(
            db,
            transaction.event_id,
            transaction.payer,
            PaymentStatus.PAID,
            stripe_payment_intent_id=intent.get("id")
        )
        outcome.transaction = transaction
        outcome.confirmed = not already_succeeded

    def _on_payment_failed(self, db: Session, processor_ref: Optional[str], outcome: WebhookOutcome) -> None:
        if not processor_ref:
            return
        transaction = LedgerService.mark_failed(db, processor_ref)
        if transaction is None or transaction.status != TransactionStatus.FAILED:
            return
        RegistrationProjector.project(db, transaction.event_id, transaction.payer, PaymentStatus.FAILED)
        outcome.transaction = transaction

    def _on_charge_refunded(self, db: Session, charge: dict, outcome: WebhookOutcome) -> None:
        """Refunds issued outside this service, e.g. from the Stripe dashboard."""
        if not charge.get("refunded"):
            logger.info(f"Partial refund on charge {charge.get('id')} ignored")
            return

        transaction = LedgerService.find_by_processor_ref(db, charge.get("payment_intent"))
        if transaction is None:
            logger.warning(f"Refunded charge {charge.get('id')} has no matching transaction")
            return

        try:
            transaction = LedgerService.mark_refunded(db, transaction.id, "Refunded via Stripe")
        except InvalidState:
            if transaction.status != TransactionStatus.REFUNDED:
                raise

        RegistrationProjector.project(db, transaction.event_id, transaction.payer, PaymentStatus.REFUNDED)
        outcome.transaction = transaction
