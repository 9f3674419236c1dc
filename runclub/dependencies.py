"""
Constructors for the collaborators routers depend on.

Each component receives the settings object explicitly; tests replace these
through ``app.dependency_overrides``.
"""
from fastapi import Depends

from runclub.config import Settings, get_settings
from runclub.services.checkout import CheckoutService
from runclub.services.notifications import NotificationDispatcher
from runclub.services.processor import StripeProcessor
from runclub.services.push import WebPushTransport
from runclub.services.refund import RefundCoordinator


def get_processor(settings: Settings = Depends(get_settings)) -> StripeProcessor:
    return StripeProcessor(settings)


def get_push_transport(settings: Settings = Depends(get_settings)) -> WebPushTransport:
    return WebPushTransport(settings)


def get_dispatcher(
    transport: WebPushTransport = Depends(get_push_transport),
    settings: Settings = Depends(get_settings)
) -> NotificationDispatcher:
    return NotificationDispatcher(transport, max_workers=settings.push_max_workers)


def get_refund_coordinator(processor: StripeProcessor = Depends(get_processor)) -> RefundCoordinator:
    return RefundCoordinator(processor)


def get_checkout_service(processor: StripeProcessor = Depends(get_processor)) -> CheckoutService:
    return CheckoutService(processor)
