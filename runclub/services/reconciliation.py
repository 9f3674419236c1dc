import logging
from datetime import datetime
from typing import List
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from runclub.errors import ClubError, InvalidState
from runclub.models.reconciliation import ReconciliationTask, ReconciliationStep, ReconciliationStatus
from runclub.models.registration import PaymentStatus
from runclub.models.transaction import TransactionStatus
from runclub.services.ledger import LedgerService
from runclub.services.projector import RegistrationProjector

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Replays local refund writes that failed after the processor returned the money."""

    @staticmethod
    def list_pending(db: Session) -> List[ReconciliationTask]:
        return db.query(ReconciliationTask).filter(
            ReconciliationTask.status == ReconciliationStatus.PENDING
        ).order_by(ReconciliationTask.created_at.asc(), ReconciliationTask.id.asc()).all()

    @staticmethod
    def retry_task(db: Session, task: ReconciliationTask) -> bool:
        """
        Re-run the outstanding writes of one task. Safe to repeat.
        Returns True once the task is resolved.
        """
        task_id = task.id
        transaction_id = task.transaction_id
        step = task.step
        reason = task.reason

        try:
            if step == ReconciliationStep.LEDGER:
                try:
                    LedgerService.mark_refunded(db, transaction_id, reason)
                except InvalidState:
                    transaction = LedgerService.get(db, transaction_id)
                    if transaction.status != TransactionStatus.REFUNDED:
                        raise

            transaction = LedgerService.get(db, transaction_id)
            RegistrationProjector.project(db, transaction.event_id, transaction.payer, PaymentStatus.REFUNDED)
        except (SQLAlchemyError, ClubError) as e:
            db.rollback()
            task = db.get(ReconciliationTask, task_id)
            task.attempts += 1
            task.last_error = str(e)[:2000]
            # The ledger may have landed before the projection failed.
            if step == ReconciliationStep.LEDGER:
                current = LedgerService.get(db, transaction_id)
                if current.status == TransactionStatus.REFUNDED:
                    task.step = ReconciliationStep.PROJECTION
            db.commit()
            logger.warning(f"Reconciliation task {task_id} for transaction {transaction_id} failed again: {e}")
            return False

        task = db.get(ReconciliationTask, task_id)
        task.attempts += 1
        task.status = ReconciliationStatus.RESOLVED
        task.resolved_at = datetime.utcnow()
        task.last_error = None
        db.commit()
        logger.info(f"Reconciliation task {task_id} for transaction {transaction_id} resolved")
        return True

    @staticmethod
    def retry_pending(db: Session) -> dict:
        """Retry every pending task. Returns counts of resolved and still pending tasks."""
        resolved = 0
        pending = 0
        for task in ReconciliationService.list_pending(db):
            if ReconciliationService.retry_task(db, task):
                resolved += 1
            else:
                pending += 1
        return {"resolved": resolved, "pending": pending}
