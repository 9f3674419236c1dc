import logging
from typing import Optional
from sqlalchemy.orm import Session

from runclub.errors import NotFound, InvalidState
from runclub.models.payer import Payer, MemberPayer, GuestPayer
from runclub.models.transaction import PaymentTransaction, TransactionStatus

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Record of payment attempts with a single mutable status field.

    Status changes are issued as conditional UPDATEs so concurrent callers
    race on the database row rather than on a value read by the application.
    """

    @staticmethod
    def record_attempt(
        db: Session,
        event_id: str,
        payer: Payer,
        amount: float,
        currency: str,
        stripe_session_id: Optional[str] = None,
        processor_ref: Optional[str] = None,
        payment_method: Optional[str] = None
    ) -> PaymentTransaction:
        """Create a pending transaction for a new payment attempt."""
        if amount <= 0:
            raise ValueError("Payment amount must be positive")

        transaction = PaymentTransaction(
            event_id=event_id,
            amount=amount,
            currency=currency,
            stripe_session_id=stripe_session_id,
            stripe_payment_intent_id=processor_ref,
            payment_method=payment_method,
            status=TransactionStatus.PENDING
        )
        transaction.payer = payer
        db.add(transaction)
        db.commit()
        db.refresh(transaction)

        logger.info(f"Recorded payment attempt {transaction.id} for event {event_id} ({payer})")
        return transaction

    @staticmethod
    def get(db: Session, transaction_id: str) -> PaymentTransaction:
        transaction = db.query(PaymentTransaction).filter(
            PaymentTransaction.id == transaction_id
        ).first()
        if not transaction:
            raise NotFound(f"Transaction {transaction_id} not found")
        return transaction

    @staticmethod
    def find_by_processor_ref(db: Session, processor_ref: str) -> Optional[PaymentTransaction]:
        return db.query(PaymentTransaction).filter(
            PaymentTransaction.stripe_payment_intent_id == processor_ref
        ).first()

    @staticmethod
    def find_by_session_id(db: Session, session_id: str) -> Optional[PaymentTransaction]:
        return db.query(PaymentTransaction).filter(
            PaymentTransaction.stripe_session_id == session_id
        ).first()

    @staticmethod
    def latest_for_payer(db: Session, event_id: str, payer: Payer) -> Optional[PaymentTransaction]:
        """Most recent transaction for an (event, payer) pair."""
        query = db.query(PaymentTransaction).filter(PaymentTransaction.event_id == event_id)
        if isinstance(payer, MemberPayer):
            query = query.filter(PaymentTransaction.member_id == payer.id)
        elif isinstance(payer, GuestPayer):
            query = query.filter(PaymentTransaction.attendee_id == payer.id)
        else:
            raise ValueError(f"Unknown payer: {payer!r}")

        return query.order_by(PaymentTransaction.sequence.desc()).first()

    @staticmethod
    def mark_succeeded(
        db: Session,
        processor_ref: str,
        session_id: Optional[str] = None,
        payment_method: Optional[str] = None
    ) -> PaymentTransaction:
        """
        Mark the transaction for a processor payment as succeeded.

        Looks the transaction up by processor reference, falling back to the
        checkout session id (which attaches the processor reference). Calling
        it again for an already succeeded transaction is a no-op.
        """
        transaction = LedgerService.find_by_processor_ref(db, processor_ref) if processor_ref else None
        if transaction is None and session_id:
            transaction = LedgerService.find_by_session_id(db, session_id)
        if transaction is None:
            raise NotFound(f"No transaction for processor reference {processor_ref}")

        if transaction.status == TransactionStatus.SUCCEEDED:
            logger.info(f"Transaction {transaction.id} already succeeded, ignoring repeat callback")
            return transaction

        values = {PaymentTransaction.status: TransactionStatus.SUCCEEDED}
        if processor_ref:
            values[PaymentTransaction.stripe_payment_intent_id] = processor_ref
        if payment_method:
            values[PaymentTransaction.payment_method] = payment_method

        updated = db.query(PaymentTransaction).filter(
            PaymentTransaction.id == transaction.id,
            PaymentTransaction.status.in_([TransactionStatus.PENDING, TransactionStatus.FAILED])
        ).update(values, synchronize_session=False)
        db.commit()
        db.refresh(transaction)

        if not updated and transaction.status != TransactionStatus.SUCCEEDED:
            raise NotFound(f"No pending transaction for processor reference {processor_ref}")

        logger.info(f"Transaction {transaction.id} succeeded ({processor_ref})")
        return transaction

    @staticmethod
    def mark_refunded(db: Session, transaction_id: str, reason: Optional[str]) -> PaymentTransaction:
        """
        Move a succeeded transaction to refunded.

        The status guard is part of the UPDATE itself, so of two concurrent
        callers at most one sees a matching row.
        """
        updated = db.query(PaymentTransaction).filter(
            PaymentTransaction.id == transaction_id,
            PaymentTransaction.status == TransactionStatus.SUCCEEDED
        ).update(
            {
                PaymentTransaction.status: TransactionStatus.REFUNDED,
                PaymentTransaction.refund_reason: reason,
            },
            synchronize_session=False
        )
        db.commit()

        transaction = LedgerService.get(db, transaction_id)

        if not updated:
            raise InvalidState(
                f"Transaction {transaction_id} is {transaction.status.value}, only succeeded payments can be refunded",
                context={"status": transaction.status.value}
            )

        logger.info(f"Transaction {transaction_id} refunded: {reason}")
        return transaction

    @staticmethod
    def mark_failed(db: Session, processor_ref: str) -> Optional[PaymentTransaction]:
        """Mark a pending transaction as failed. Other states are left alone."""
        transaction = LedgerService.find_by_processor_ref(db, processor_ref)
        if transaction is None:
            return None

        db.query(PaymentTransaction).filter(
            PaymentTransaction.id == transaction.id,
            PaymentTransaction.status == TransactionStatus.PENDING
        ).update({PaymentTransaction.status: TransactionStatus.FAILED}, synchronize_session=False)
        db.commit()
        db.refresh(transaction)
        return transaction
