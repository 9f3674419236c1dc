import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from runclub.models.push_subscription import PushSubscription

logger = logging.getLogger(__name__)


class SubscriptionStore:
    """
    Push subscriptions keyed by endpoint.

    Ownership checks against the authenticated caller happen in the router,
    not here.
    """

    @staticmethod
    def get_by_endpoint(db: Session, endpoint: str) -> Optional[PushSubscription]:
        return db.query(PushSubscription).filter(PushSubscription.endpoint == endpoint).first()

    @staticmethod
    def upsert(db: Session, user_id: str, endpoint: str, keys: dict) -> PushSubscription:
        """Insert a subscription, or refresh the keys of the existing row for this endpoint."""
        subscription = SubscriptionStore.get_by_endpoint(db, endpoint)

        if subscription is None:
            subscription = PushSubscription(user_id=user_id, endpoint=endpoint, keys=keys)
            db.add(subscription)
            try:
                db.commit()
                db.refresh(subscription)
                logger.info(f"Created push subscription for user {user_id}")
                return subscription
            except IntegrityError:
                # Another request inserted the same endpoint first
                db.rollback()
                subscription = SubscriptionStore.get_by_endpoint(db, endpoint)

        if subscription.user_id != user_id:
            logger.info(f"Push endpoint moved from user {subscription.user_id} to {user_id}")
        subscription.user_id = user_id
        subscription.keys = keys
        subscription.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(subscription)
        return subscription

    @staticmethod
    def remove(db: Session, user_id: str, endpoint: str) -> bool:
        """Delete the caller's subscription for an endpoint. Absence is not an error."""
        deleted = db.query(PushSubscription).filter(
            PushSubscription.endpoint == endpoint,
            PushSubscription.user_id == user_id
        ).delete(synchronize_session=False)
        db.commit()
        return bool(deleted)

    @staticmethod
    def exists(db: Session, user_id: str, endpoint: str) -> bool:
        return db.query(PushSubscription.id).filter(
            PushSubscription.endpoint == endpoint,
            PushSubscription.user_id == user_id
        ).first() is not None

    @staticmethod
    def list_all(db: Session) -> List[PushSubscription]:
        return db.query(PushSubscription).all()

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> List[PushSubscription]:
        return db.query(PushSubscription).filter(PushSubscription.user_id == user_id).all()

    @staticmethod
    def delete(db: Session, subscription_id: str) -> None:
        db.query(PushSubscription).filter(
            PushSubscription.id == subscription_id
        ).delete(synchronize_session=False)
        db.commit()
