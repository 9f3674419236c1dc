import logging
from dataclasses import dataclass, field
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from runclub.errors import ClubError, InvalidState, NotFound, ProcessorError, ReconciliationPending
from runclub.models.payer import MemberPayer
from runclub.models.reconciliation import ReconciliationTask, ReconciliationStep
from runclub.models.registration import EventRegistration, PaymentStatus, RegistrationStatus
from runclub.models.transaction import TransactionStatus
from runclub.services.ledger import LedgerService
from runclub.services.processor import StripeProcessor
from runclub.services.projector import RegistrationProjector

logger = logging.getLogger(__name__)

DEFAULT_REFUND_REASON = "Refund requested"
CANCELLATION_REFUND_REASON = "Registration cancelled by member"


@dataclass
class RefundResult:
    transaction_id: str
    refund_id: str
    status: str
    warnings: List[ReconciliationPending] = field(default_factory=list)

    @property
    def reconciliation_pending(self) -> bool:
        return bool(self.warnings)


@dataclass
class CancellationResult:
    registration_id: str
    event_id: str
    refund: Optional[RefundResult] = None


class RefundCoordinator:
    """
    Drives a refund across Stripe, the ledger and the registration projection.

    There is no transaction spanning Stripe and the database, so the steps run
    in a fixed order: processor first, then ledger, then projection. Once the
    processor has returned the money the refund is reported as successful; a
    local write that fails afterwards becomes a reconciliation task.
    """

    def __init__(self, processor: StripeProcessor):
        self.processor = processor

    def refund(self, db: Session, transaction_id: str, reason: Optional[str] = None) -> RefundResult:
        reason = reason or DEFAULT_REFUND_REASON
        transaction = LedgerService.get(db, transaction_id)

        if transaction.status != TransactionStatus.SUCCEEDED:
            raise InvalidState(
                f"Transaction {transaction_id} is {transaction.status.value}, only succeeded payments can be refunded",
                context={"status": transaction.status.value}
            )
        if not transaction.stripe_payment_intent_id:
            raise ProcessorError(f"Transaction {transaction_id} has no processor reference")

        event_id = transaction.event_id
        payer = transaction.payer

        refund = self.processor.refund(transaction.stripe_payment_intent_id, reason)
        logger.info(f"Processor refund {refund.id} ({refund.status}) issued for transaction {transaction_id}")

        result = RefundResult(transaction_id=transaction_id, refund_id=refund.id, status=refund.status)

        try:
            LedgerService.mark_refunded(db, transaction_id, reason)
        except InvalidState:
            # A concurrent refund or the charge.refunded webhook got there first.
            logger.warning(f"Transaction {transaction_id} was already refunded when processor refund {refund.id} returned")
        except (SQLAlchemyError, ClubError) as e:
            db.rollback()
            result.warnings.append(
                self._defer(db, transaction_id, ReconciliationStep.LEDGER, reason, refund.id, e)
            )
            return result

        try:
            RegistrationProjector.project(db, event_id, payer, PaymentStatus.REFUNDED)
        except (SQLAlchemyError, ClubError) as e:
            db.rollback()
            result.warnings.append(
                self._defer(db, transaction_id, ReconciliationStep.PROJECTION, reason, refund.id, e)
            )

        return result

    def _defer(
        self,
        db: Session,
        transaction_id: str,
        step: ReconciliationStep,
        reason: str,
        refund_id: str,
        error: Exception
    ) -> ReconciliationPending:
        """Queue the unfinished local writes and build the caller-visible warning."""
        logger.error(f"Refund {refund_id} for transaction {transaction_id} stopped at {step.value} step: {error}")

        try:
            db.add(ReconciliationTask(
                transaction_id=transaction_id,
                step=step,
                reason=reason,
                refund_id=refund_id,
                last_error=str(error)[:2000]
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.critical(
                f"MANUAL RECONCILIATION REQUIRED: transaction {transaction_id} refunded at processor "
                f"(refund {refund_id}) but neither the {step.value} write nor its retry task could be stored: {e}"
            )

        return ReconciliationPending(
            f"Refund {refund_id} succeeded at the processor; local {step.value} update is pending reconciliation",
            context={"transaction_id": transaction_id, "refund_id": refund_id, "step": step.value}
        )

    def cancel_registration(self, db: Session, member_id: str, registration_id: str) -> CancellationResult:
        """
        Cancel a member's own registration, refunding it in full when paid.

        A paid registration is cancelled by the refund's projection step, so a
        refund that stops at a local step is finished by the reconciliation
        replay. Unpaid registrations are cancelled directly.
        """
        registration = db.query(EventRegistration).filter(
            EventRegistration.id == registration_id,
            EventRegistration.member_id == member_id
        ).first()
        if not registration:
            raise NotFound("Registration not found")
        if registration.status == RegistrationStatus.CANCELLED:
            raise InvalidState(
                f"Registration {registration_id} is already cancelled",
                context={"status": registration.status.value}
            )

        result = CancellationResult(registration_id=registration_id, event_id=registration.event_id)

        if registration.payment_status == PaymentStatus.PAID:
            transaction = LedgerService.latest_for_payer(db, registration.event_id, MemberPayer(member_id))
            if transaction is None or transaction.status != TransactionStatus.SUCCEEDED:
                raise InvalidState(
                    f"Registration {registration_id} is paid but has no succeeded transaction",
                    context={"transaction_id": transaction.id if transaction is not None else None}
                )
            result.refund = self.refund(db, transaction.id, CANCELLATION_REFUND_REASON)
            logger.info(f"Member {member_id} cancelled registration {registration_id} with refund {result.refund.refund_id}")
            return result

        db.query(EventRegistration).filter(
            EventRegistration.id == registration_id,
            EventRegistration.status != RegistrationStatus.CANCELLED
        ).update({EventRegistration.status: RegistrationStatus.CANCELLED}, synchronize_session=False)
        db.commit()
        logger.info(f"Member {member_id} cancelled unpaid registration {registration_id}")
        return result
