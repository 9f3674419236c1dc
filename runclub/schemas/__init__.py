from runclub.schemas.user import CurrentUser
from runclub.schemas.event import EventCreate, EventResponse, AttendeeCreate, AttendeeResponse
from runclub.schemas.payment import RefundRequest, RefundResponse, CheckoutRequest, CheckoutResponse
from runclub.schemas.push import SubscribeRequest, EndpointRequest, SubscriptionExists, SendRequest

__all__ = [
    "CurrentUser",
    "EventCreate", "EventResponse", "AttendeeCreate", "AttendeeResponse",
    "RefundRequest", "RefundResponse", "CheckoutRequest", "CheckoutResponse",
    "SubscribeRequest", "EndpointRequest", "SubscriptionExists", "SendRequest"
]
