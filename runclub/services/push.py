import json
import logging
import requests
from pywebpush import webpush, WebPushException

from runclub.config import Settings
from runclub.errors import TransportFailure, PushGone

logger = logging.getLogger(__name__)

# Push services answer 404/410 for subscriptions that will never be valid again.
GONE_STATUS_CODES = {404, 410}


class WebPushTransport:
    """Delivers one payload to one browser endpoint using VAPID credentials."""

    def __init__(self, settings: Settings):
        self.private_key = settings.vapid_private_key
        self.public_key = settings.vapid_public_key
        self.claims_sub = settings.vapid_email

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self.private_key)

    def send(self, endpoint: str, keys: dict, payload: dict) -> None:
        """Raise PushGone for dead endpoints and TransportFailure for anything else."""
        if not self.configured:
            raise TransportFailure("VAPID keys are not configured")

        try:
            webpush(
                subscription_info={
                    "endpoint": endpoint,
                    "keys": {"p256dh": keys.get("p256dh"), "auth": keys.get("auth")},
                },
                data=json.dumps(payload),
                vapid_private_key=self.private_key,
                vapid_claims={"sub": self.claims_sub},
                timeout=10
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in GONE_STATUS_CODES:
                raise PushGone(f"Endpoint gone ({status_code})")
            raise TransportFailure(f"Push rejected ({status_code}): {e.message}")
        except requests.RequestException as e:
            raise TransportFailure(f"Push request failed: {e}")
