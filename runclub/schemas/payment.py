from pydantic import BaseModel, model_validator
from datetime import datetime
from typing import Optional, List
from runclub.models.transaction import TransactionStatus
from runclub.models.reconciliation import ReconciliationStep, ReconciliationStatus


class RefundRequest(BaseModel):
    transaction_id: str
    reason: Optional[str] = None


class WarningInfo(BaseModel):
    code: str
    message: str


class RefundResponse(BaseModel):
    success: bool = True
    refund_id: str
    status: str
    warning: Optional[WarningInfo] = None


class CheckoutRequest(BaseModel):
    event_id: str
    member_id: Optional[str] = None
    attendee_id: Optional[str] = None

    @model_validator(mode="after")
    def single_payer(self):
        if bool(self.member_id) == bool(self.attendee_id):
            raise ValueError("Provide exactly one of member_id or attendee_id")
        return self


class CheckoutResponse(BaseModel):
    session_id: str
    url: str


class CustomerPayments(BaseModel):
    payment_history: List[dict]
    payment_methods: List[dict]


class TransactionResponse(BaseModel):
    id: str
    event_id: str
    member_id: Optional[str]
    attendee_id: Optional[str]
    amount: float
    currency: str
    status: TransactionStatus
    refund_reason: Optional[str]
    stripe_payment_intent_id: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class ReconciliationTaskResponse(BaseModel):
    id: int
    transaction_id: str
    step: ReconciliationStep
    reason: Optional[str]
    refund_id: Optional[str]
    status: ReconciliationStatus
    attempts: int
    last_error: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class DriftResponse(BaseModel):
    payer_kind: str
    payer_id: str
    transaction_id: str
    current: str
    expected: str


class CancelRegistrationRequest(BaseModel):
    registration_id: str


class CancelRegistrationResponse(BaseModel):
    success: bool = True
    registration_id: str
    refund_id: Optional[str] = None
    refund_status: Optional[str] = None
    warning: Optional[WarningInfo] = None


class SyncPaymentRequest(BaseModel):
    session_id: str


class SyncPaymentResponse(BaseModel):
    success: bool = True
    transaction_id: str
    status: TransactionStatus
    confirmed: bool
