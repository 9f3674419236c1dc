from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from runclub.config import Settings, get_settings
from runclub.database import get_db
from runclub.dependencies import get_dispatcher
from runclub.errors import BadRequest, Forbidden, ClubError
from runclub.limiter import limiter
from runclub.schemas.push import SubscribeRequest, EndpointRequest, SubscriptionExists, SendRequest, DispatchSummary
from runclub.schemas.user import CurrentUser
from runclub.services.auth import get_current_user_required, get_current_admin
from runclub.services.notifications import NotificationDispatcher, PushMessage
from runclub.services.subscriptions import SubscriptionStore

router = APIRouter(prefix="/push", tags=["push"])


def ensure_owner(user: CurrentUser, user_id: str):
    if user_id != user.id:
        raise Forbidden("Subscription belongs to another user")


@router.post("/subscribe")
@limiter.limit("30/minute")
def subscribe(
    request: Request,
    body: SubscribeRequest,
    user: CurrentUser = Depends(get_current_user_required),
    db: Session = Depends(get_db)
):
    ensure_owner(user, body.user_id)
    SubscriptionStore.upsert(db, body.user_id, body.endpoint, body.keys.model_dump())
    return {"success": True}


@router.post("/unsubscribe")
@limiter.limit("30/minute")
def unsubscribe(
    request: Request,
    body: EndpointRequest,
    user: CurrentUser = Depends(get_current_user_required),
    db: Session = Depends(get_db)
):
    ensure_owner(user, body.user_id)
    SubscriptionStore.remove(db, body.user_id, body.endpoint)
    return {"success": True}


@router.post("/check-subscription", response_model=SubscriptionExists)
def check_subscription(
    body: EndpointRequest,
    user: CurrentUser = Depends(get_current_user_required),
    db: Session = Depends(get_db)
):
    ensure_owner(user, body.user_id)
    return SubscriptionExists(exists=SubscriptionStore.exists(db, body.user_id, body.endpoint))


@router.get("/vapid-public-key")
async def vapid_public_key(settings: Settings = Depends(get_settings)):
    if not settings.vapid_public_key:
        raise ClubError("VAPID public key is not configured")
    return {"publicKey": settings.vapid_public_key}


@router.post("/send", response_model=DispatchSummary)
def send_notification(
    body: SendRequest,
    admin: CurrentUser = Depends(get_current_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db)
):
    if not body.all_users and not body.user_id:
        raise BadRequest("Specify user_id or all_users")

    message = PushMessage(title=body.title, body=body.body)
    if body.url:
        message.url = body.url
    if body.tag:
        message.tag = body.tag

    result = dispatcher.dispatch(db, message, user_id=None if body.all_users else body.user_id)
    return DispatchSummary(
        sent=result.delivered,
        failed=result.failed,
        pruned=result.pruned,
        total=result.total
    )
