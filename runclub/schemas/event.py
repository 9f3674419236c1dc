from pydantic import BaseModel, EmailStr
from datetime import datetime
from typing import Optional
from runclub.models.registration import AttendeeStatus, PaymentStatus


class EventCreate(BaseModel):
    slug: str
    title: str
    date: Optional[str] = None
    location: Optional[str] = None
    price: float = 0
    max_participants: Optional[int] = None


class EventResponse(BaseModel):
    id: str
    slug: str
    title: str
    date: Optional[str]
    location: Optional[str]
    price: float
    max_participants: Optional[int]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AttendeeCreate(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class AttendeeResponse(BaseModel):
    id: str
    event_id: str
    name: str
    email: Optional[str]
    status: AttendeeStatus
    checked_in_at: Optional[datetime]
    payment_status: PaymentStatus

    class Config:
        from_attributes = True
