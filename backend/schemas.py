from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime

QR_PAYLOAD_VERSION = "2.0"


class TicketType(str, Enum):
    REGULAR = "regular"
    SECURE = "secure"


class PaymentMethod(str, Enum):
    MTN = "mtn"
    AIRTEL = "airtel"
    CARD = "card"


class TicketPayload(BaseModel):
    """Content covered by the QR signature. camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    ticket_id: str
    event_id: str
    event_name: str
    buyer_id: str
    buyer_name: str
    ticket_type: TicketType
    quantity: int = Field(ge=1, strict=True)
    purchase_date: str
    timestamp: int = Field(strict=True)
    version: str


class SignedQRData(TicketPayload):
    signature: str

    def payload(self) -> TicketPayload:
        return TicketPayload.model_validate(self.model_dump(exclude={"signature"}))


class PriceBreakdown(BaseModel):
    unit_price: int
    total_price: int
    app_commission: int
    venue_revenue: int


class Quote(PriceBreakdown):
    payment_method: PaymentMethod
    payment_fees: int
    amount_due: int


class EventBase(BaseModel):
    name: str
    venue_name: str
    starts_at: datetime
    base_price: int = Field(ge=0)
    venue_id: Optional[str] = None
    description: Optional[str] = None
    owner_id: Optional[str] = None
    capacity: Optional[int] = None

class EventCreate(EventBase):
    pass

class Event(EventBase):
    id: str
    model_config = ConfigDict(from_attributes=True)


class TicketValidation(BaseModel):
    id: str
    ticket_id: str
    event_id: str
    validated_at: datetime
    validated_by: str
    biometric_match: bool
    entry_granted: bool
    location: Optional[str] = None
    reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Ticket(BaseModel):
    id: str
    event_id: str
    event_name: str
    buyer_id: str
    buyer_name: str
    buyer_email: Optional[str] = None
    quantity: int
    ticket_type: TicketType
    unit_price: int
    total_amount: int
    payment_fees: int
    app_commission: int
    venue_revenue: int
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    ticket_code: str
    qr_code: str
    status: str
    purchase_date: datetime
    used_at: Optional[datetime] = None
    validated_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    validation_history: List[TicketValidation] = []

    model_config = ConfigDict(from_attributes=True)


class QuoteRequest(BaseModel):
    ticket_type: TicketType = TicketType.REGULAR
    quantity: int = Field(default=1, ge=1)
    payment_method: PaymentMethod = PaymentMethod.MTN


class TicketPurchaseRequest(QuoteRequest):
    event_id: str
    buyer_id: str
    buyer_name: str
    buyer_email: Optional[str] = None


class ValidateTicketRequest(BaseModel):
    qr_code: str
    biometric_data: str
    location: Optional[str] = None


class ValidationResult(BaseModel):
    success: bool
    reason: Optional[str] = None
    error: Optional[str] = None
    ticket: Optional[Ticket] = None


class CancelTicketRequest(BaseModel):
    reason: str = Field(min_length=1)


class RefundTicketRequest(BaseModel):
    reason: Optional[str] = None


class ExpireTicketsResponse(BaseModel):
    event_id: str
    expired: int


class AdminLoginRequest(BaseModel):
    username: str
    password: str
    otp: Optional[str] = None


class AdminLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ScannerLoginRequest(BaseModel):
    username: str
    password: str


class ScannerLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class EventStatsResponse(BaseModel):
    event_id: str
    issued: int
    active: int
    used: int
    cancelled: int
    refunded: int
    expired: int
    gross_revenue: int
    app_commission: int
    venue_revenue: int
    denied_attempts: int
