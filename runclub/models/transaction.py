from sqlalchemy import Column, String, Float, DateTime, BigInteger, ForeignKey, Enum, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from runclub.database import Base
from runclub.models.event import new_id
from runclub.models.payer import MemberPayer, GuestPayer, Payer, payer_from_ids
from runclub.models.registration import PaymentStatus
import enum
import threading
import time

_sequence_lock = threading.Lock()
_last_sequence = 0


def next_sequence() -> int:
    """Strictly increasing insertion key, in nanoseconds since the epoch."""
    global _last_sequence
    with _sequence_lock:
        _last_sequence = max(time.time_ns(), _last_sequence + 1)
        return _last_sequence


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"
    FAILED = "failed"


# payment_status a registration/attendee row must carry for a given ledger status
PAYMENT_STATUS_FOR = {
    TransactionStatus.PENDING: PaymentStatus.PENDING,
    TransactionStatus.SUCCEEDED: PaymentStatus.PAID,
    TransactionStatus.REFUNDED: PaymentStatus.REFUNDED,
    TransactionStatus.FAILED: PaymentStatus.FAILED,
}


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        CheckConstraint(
            "(member_id IS NULL) <> (attendee_id IS NULL)",
            name="ck_transaction_single_payer",
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=True, index=True)
    attendee_id = Column(String(36), ForeignKey("attendees.id"), nullable=True, index=True)
    stripe_session_id = Column(String(255), nullable=True, unique=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, unique=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)
    refund_reason = Column(String(500), nullable=True)
    payment_method = Column(String(50), nullable=True)
    # created_at has one-second resolution on SQLite; ordering uses sequence
    sequence = Column(BigInteger, nullable=False, default=next_sequence, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    event = relationship("Event")

    @property
    def payer(self) -> Payer:
        return payer_from_ids(self.member_id, self.attendee_id)

    @payer.setter
    def payer(self, payer: Payer):
        if isinstance(payer, MemberPayer):
            self.member_id, self.attendee_id = payer.id, None
        elif isinstance(payer, GuestPayer):
            self.member_id, self.attendee_id = None, payer.id
        else:
            raise ValueError(f"Unknown payer: {payer!r}")
