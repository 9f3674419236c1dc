import stripe
import logging
from dataclasses import dataclass
from typing import Optional

from runclub.config import Settings
from runclub.errors import ProcessorError

logger = logging.getLogger(__name__)

# Refund reasons Stripe accepts; anything else is kept locally only.
STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


@dataclass
class ProcessorRefund:
    id: str
    status: str


@dataclass
class CheckoutSession:
    id: str
    url: str
    payment_intent: Optional[str] = None


class StripeProcessor:
    """Thin client over the Stripe API with the secret key passed per call."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.api_key = settings.stripe_secret_key

    def refund(self, processor_ref: str, reason: Optional[str] = None) -> ProcessorRefund:
        """Refund a payment intent in full."""
        stripe_reason = reason if reason in STRIPE_REFUND_REASONS else "requested_by_customer"
        try:
            refund = stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=processor_ref,
                reason=stripe_reason
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for {processor_ref}: {e}")
            raise ProcessorError(f"Stripe error: {e.user_message or str(e)}")

        return ProcessorRefund(id=refund.id, status=refund.status)

    def create_checkout_session(
        self,
        title: str,
        amount: float,
        metadata: dict,
        customer_email: Optional[str] = None,
        customer_id: Optional[str] = None,
        cancel_url: Optional[str] = None
    ) -> CheckoutSession:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{
                "price_data": {
                    "currency": self.settings.currency,
                    "product_data": {"name": title},
                    "unit_amount": int(round(amount * 100))
                },
                "quantity": 1
            }],
            "success_url": self.settings.success_url,
            "cancel_url": cancel_url or self.settings.cancel_url,
            "metadata": metadata,
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session failed: {e}")
            raise ProcessorError(f"Stripe error: {e.user_message or str(e)}")

        return CheckoutSession(id=session.id, url=session.url, payment_intent=getattr(session, "payment_intent", None))

    def retrieve_checkout_session(self, session_id: str) -> dict:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"Could not retrieve checkout session {session_id}: {e}")
            raise ProcessorError(f"Stripe error: {e.user_message or str(e)}")
        return session.to_dict()

    def list_payment_history(self, customer_ref: str) -> list:
        try:
            intents = stripe.PaymentIntent.list(api_key=self.api_key, customer=customer_ref, limit=100)
        except stripe.StripeError as e:
            raise ProcessorError(f"Stripe error: {e.user_message or str(e)}")
        return [intent.to_dict() for intent in intents.data]

    def list_payment_methods(self, customer_ref: str) -> list:
        try:
            methods = stripe.PaymentMethod.list(api_key=self.api_key, customer=customer_ref, type="card")
        except stripe.StripeError as e:
            raise ProcessorError(f"Stripe error: {e.user_message or str(e)}")
        return [method.to_dict() for method in methods.data]

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict:
        """Verify Stripe webhook signature and return the event."""
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self.settings.stripe_webhook_secret
            )
        except stripe.SignatureVerificationError:
            raise ValueError("Invalid signature")
        return event.to_dict()
