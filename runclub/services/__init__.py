from runclub.services.auth import AuthService
from runclub.services.ledger import LedgerService
from runclub.services.projector import RegistrationProjector
from runclub.services.refund import RefundCoordinator
from runclub.services.reconciliation import ReconciliationService
from runclub.services.subscriptions import SubscriptionStore
from runclub.services.notifications import NotificationDispatcher
from runclub.services.checkout import CheckoutService
from runclub.services.email import EmailService

__all__ = [
    "AuthService",
    "LedgerService",
    "RegistrationProjector",
    "RefundCoordinator",
    "ReconciliationService",
    "SubscriptionStore",
    "NotificationDispatcher",
    "CheckoutService",
    "EmailService"
]
