from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from runclub.database import Base
import enum


class ReconciliationStep(str, enum.Enum):
    LEDGER = "ledger"          # ledger and projection both still to write
    PROJECTION = "projection"  # ledger written, projection still to write


class ReconciliationStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ReconciliationTask(Base):
    __tablename__ = "reconciliation_tasks"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(36), ForeignKey("payment_transactions.id"), nullable=False, index=True)
    step = Column(Enum(ReconciliationStep), nullable=False)
    reason = Column(String(500), nullable=True)
    refund_id = Column(String(255), nullable=True)
    status = Column(Enum(ReconciliationStatus), default=ReconciliationStatus.PENDING, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(String(2000), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    resolved_at = Column(DateTime, nullable=True)

    transaction = relationship("PaymentTransaction")
