from pydantic import BaseModel
from typing import Optional


class PushKeys(BaseModel):
    p256dh: str
    auth: str


class SubscribeRequest(BaseModel):
    endpoint: str
    keys: PushKeys
    user_id: str


class EndpointRequest(BaseModel):
    endpoint: str
    user_id: str


class SubscriptionExists(BaseModel):
    exists: bool


class SendRequest(BaseModel):
    title: str
    body: str
    url: Optional[str] = None
    tag: Optional[str] = None
    user_id: Optional[str] = None
    all_users: bool = False


class DispatchSummary(BaseModel):
    success: bool = True
    sent: int
    failed: int
    pruned: int
    total: int
