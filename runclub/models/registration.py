from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from runclub.database import Base
from runclub.models.event import new_id
import enum


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class RegistrationStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class AttendeeStatus(str, enum.Enum):
    PENDING = "pending"
    CHECKED_IN = "checked_in"


class EventRegistration(Base):
    __tablename__ = "event_registrations"
    __table_args__ = (
        UniqueConstraint("member_id", "event_id", name="uq_registration_member_event"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    status = Column(Enum(RegistrationStatus), default=RegistrationStatus.CONFIRMED)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    stripe_session_id = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    amount_paid = Column(Float, nullable=True)
    currency = Column(String(3), nullable=True)
    registration_date = Column(DateTime, server_default=func.now())

    event = relationship("Event", back_populates="registrations")
    member = relationship("Member", back_populates="registrations")


class Attendee(Base):
    __tablename__ = "attendees"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    status = Column(Enum(AttendeeStatus), default=AttendeeStatus.PENDING, nullable=False)
    checked_in_at = Column(DateTime, nullable=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_session_id = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    amount_paid = Column(Float, nullable=True)
    currency = Column(String(3), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    event = relationship("Event", back_populates="attendees")
