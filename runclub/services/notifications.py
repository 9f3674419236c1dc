import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Callable, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from runclub.errors import DispatchError, TransportFailure, PushGone
from runclub.services.push import WebPushTransport
from runclub.services.subscriptions import SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class PushMessage:
    title: str
    body: str
    url: str = "/miembros/dashboard"
    icon: str = "/assets/logo.png"
    tag: str = "notification"

    def to_payload(self) -> dict:
        return asdict(self)


@dataclass
class DispatchResult:
    delivered: int = 0
    failed: int = 0
    pruned: int = 0

    @property
    def total(self) -> int:
        return self.delivered + self.failed + self.pruned


def new_event_message(event) -> PushMessage:
    body = f"{event.title} - {event.date}" if event.date else event.title
    return PushMessage(
        title="New event available!",
        body=body,
        url=f"/eventos/{event.slug}",
        tag=f"event-{event.id}"
    )


def payment_confirmed_message(event, user_id: str) -> PushMessage:
    return PushMessage(
        title="Payment confirmed",
        body=f'Your registration for "{event.title}" is confirmed',
        url="/miembros/dashboard",
        tag=f"payment-success-{user_id}"
    )


class NotificationDispatcher:
    """
    Fans one message out to every stored push subscription.

    Each delivery succeeds or fails on its own. Subscriptions the push service
    reports as gone are deleted; other failures are only logged and counted.
    """

    def __init__(self, transport: WebPushTransport, max_workers: int = 8):
        self.transport = transport
        self.max_workers = max_workers

    def dispatch(self, db: Session, message: PushMessage, user_id: Optional[str] = None) -> DispatchResult:
        try:
            if user_id:
                subscriptions = SubscriptionStore.list_for_user(db, user_id)
            else:
                subscriptions = SubscriptionStore.list_all(db)
            snapshot = [(s.id, s.endpoint, dict(s.keys or {})) for s in subscriptions]
        except SQLAlchemyError as e:
            logger.error(f"Could not read push subscriptions: {e}")
            raise DispatchError(f"Could not read push subscriptions: {e}")

        result = DispatchResult()
        if not snapshot:
            logger.info("No push subscriptions to notify")
            return result

        payload = message.to_payload()
        workers = max(1, min(self.max_workers, len(snapshot)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(
                lambda sub: self._deliver(sub[1], sub[2], payload),
                snapshot
            ))

        # Session work stays on this thread.
        for (subscription_id, endpoint, _), error in zip(snapshot, outcomes):
            if error is None:
                result.delivered += 1
            elif isinstance(error, PushGone):
                try:
                    SubscriptionStore.delete(db, subscription_id)
                    result.pruned += 1
                    logger.info(f"Pruned gone push subscription {subscription_id}")
                except SQLAlchemyError as e:
                    db.rollback()
                    result.failed += 1
                    logger.error(f"Could not prune push subscription {subscription_id}: {e}")
            else:
                result.failed += 1

        logger.info(
            f"Push '{message.title}': {result.delivered} delivered, "
            f"{result.failed} failed, {result.pruned} pruned"
        )
        return result

    def _deliver(self, endpoint: str, keys: dict, payload: dict) -> Optional[TransportFailure]:
        try:
            self.transport.send(endpoint, keys, payload)
            return None
        except TransportFailure as e:
            if not isinstance(e, PushGone):
                logger.warning(f"Push to {endpoint[:60]} failed: {e}")
            return e
        except Exception as e:
            logger.error(f"Unexpected push error for {endpoint[:60]}: {e}", exc_info=True)
            return TransportFailure(str(e))


def dispatch_in_background(
    dispatcher: NotificationDispatcher,
    session_factory: Callable[[], Session],
    message: PushMessage,
    user_id: Optional[str] = None
) -> Optional[DispatchResult]:
    """Run a dispatch outside the request that triggered it. Never raises."""
    db = session_factory()
    try:
        return dispatcher.dispatch(db, message, user_id=user_id)
    except Exception as e:
        logger.error(f"Background push dispatch '{message.title}' failed: {e}")
        return None
    finally:
        db.close()
