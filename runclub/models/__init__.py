from runclub.models.event import Event
from runclub.models.member import Member
from runclub.models.registration import EventRegistration, Attendee
from runclub.models.transaction import PaymentTransaction
from runclub.models.push_subscription import PushSubscription
from runclub.models.reconciliation import ReconciliationTask

__all__ = [
    "Event",
    "Member",
    "EventRegistration",
    "Attendee",
    "PaymentTransaction",
    "PushSubscription",
    "ReconciliationTask",
]
