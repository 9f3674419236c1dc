import logging
from dataclasses import dataclass
from typing import List
from sqlalchemy.orm import Session

from runclub.errors import NotFound
from runclub.models.payer import Payer, MemberPayer, GuestPayer
from runclub.models.registration import EventRegistration, Attendee, PaymentStatus, RegistrationStatus
from runclub.models.transaction import PAYMENT_STATUS_FOR
from runclub.services.ledger import LedgerService

logger = logging.getLogger(__name__)

PAYMENT_FIELDS = {"stripe_session_id", "stripe_payment_intent_id", "amount_paid", "currency"}

REGISTRATION_STATUS_FOR = {
    PaymentStatus.PAID: RegistrationStatus.CONFIRMED,
    PaymentStatus.REFUNDED: RegistrationStatus.CANCELLED,
}


@dataclass
class Drift:
    payer: Payer
    transaction_id: str
    current: PaymentStatus
    expected: PaymentStatus


class RegistrationProjector:
    """Keeps registration and attendee payment_status in step with the ledger."""

    @staticmethod
    def project(
        db: Session,
        event_id: str,
        payer: Payer,
        new_status: PaymentStatus,
        **payment_fields
    ) -> None:
        """
        Set payment_status on the single row owned by (event_id, payer).

        The payer kind selects the table: members update event_registrations,
        guests update attendees. Repeating the same status is a no-op.
        A paid member registration is confirmed and a refunded one cancelled.
        """
        unknown = set(payment_fields) - PAYMENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown payment fields: {sorted(unknown)}")

        values = {"payment_status": new_status}
        values.update({k: v for k, v in payment_fields.items() if v is not None})

        if isinstance(payer, MemberPayer):
            if new_status in REGISTRATION_STATUS_FOR:
                values["status"] = REGISTRATION_STATUS_FOR[new_status]

            updated = db.query(EventRegistration).filter(
                EventRegistration.event_id == event_id,
                EventRegistration.member_id == payer.id
            ).update(values, synchronize_session=False)

            if not updated and new_status == PaymentStatus.PAID:
                # Paid before a registration row existed; the payment is authoritative.
                logger.warning(f"Registration for member {payer.id} on event {event_id} missing, creating it")
                db.add(EventRegistration(event_id=event_id, member_id=payer.id, **values))
                updated = 1
        elif isinstance(payer, GuestPayer):
            updated = db.query(Attendee).filter(
                Attendee.id == payer.id,
                Attendee.event_id == event_id
            ).update(values, synchronize_session=False)
        else:
            raise ValueError(f"Unknown payer: {payer!r}")

        if not updated:
            db.rollback()
            raise NotFound(f"No registration for {payer} on event {event_id}")

        db.commit()
        logger.info(f"Projected payment_status={new_status.value} for {payer} on event {event_id}")

    @staticmethod
    def find_drift(db: Session, event_id: str) -> List[Drift]:
        """Rows whose payment_status disagrees with the latest ledger entry for their pair."""
        rows = [
            (MemberPayer(r.member_id), r.payment_status)
            for r in db.query(EventRegistration).filter(EventRegistration.event_id == event_id).all()
        ] + [
            (GuestPayer(a.id), a.payment_status)
            for a in db.query(Attendee).filter(Attendee.event_id == event_id).all()
        ]

        drift = []
        for payer, current in rows:
            transaction = LedgerService.latest_for_payer(db, event_id, payer)
            if transaction is None:
                continue
            expected = PAYMENT_STATUS_FOR[transaction.status]
            if current != expected:
                drift.append(Drift(payer, transaction.id, current, expected))
        return drift

    @staticmethod
    def resync(db: Session, event_id: str) -> List[Drift]:
        """Re-project every drifted row of an event. Returns what was fixed."""
        drift = RegistrationProjector.find_drift(db, event_id)
        for entry in drift:
            RegistrationProjector.project(db, event_id, entry.payer, entry.expected)
        if drift:
            logger.info(f"Resynced {len(drift)} payment projections for event {event_id}")
        return drift
