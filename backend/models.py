import uuid
from sqlalchemy import Boolean, Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base

class Event(Base):
    __tablename__ = "events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, index=True)
    venue_id = Column(String, nullable=True, index=True)
    venue_name = Column(String)
    description = Column(String, nullable=True)
    owner_id = Column(String, nullable=True, index=True)
    base_price = Column(Integer, default=0)  # whole currency units
    capacity = Column(Integer, nullable=True)
    starts_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String, ForeignKey("events.id"), index=True)
    event_name = Column(String)
    buyer_id = Column(String, index=True)
    buyer_name = Column(String)
    buyer_email = Column(String, nullable=True)
    quantity = Column(Integer, default=1)
    ticket_type = Column(String, default="regular")  # regular, secure
    unit_price = Column(Integer, default=0)
    total_amount = Column(Integer, default=0)
    payment_fees = Column(Integer, default=0)
    app_commission = Column(Integer, default=0)
    venue_revenue = Column(Integer, default=0)
    payment_method = Column(String, nullable=True)  # mtn, airtel, card
    payment_reference = Column(String, nullable=True)
    ticket_code = Column(String, unique=True, index=True)
    qr_code = Column(String)
    biometric_hash = Column(String, nullable=True)
    status = Column(String, default="active")  # active, used, cancelled, refunded, expired
    purchase_date = Column(DateTime(timezone=True))
    used_at = Column(DateTime(timezone=True), nullable=True)
    validated_by = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    validation_history = relationship(
        "TicketValidation",
        order_by="TicketValidation.validated_at",
        lazy="selectin",
    )

class TicketValidation(Base):
    __tablename__ = "ticket_validations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id = Column(String, ForeignKey("tickets.id"), index=True)
    event_id = Column(String, index=True)
    validated_at = Column(DateTime(timezone=True))
    validated_by = Column(String)
    biometric_match = Column(Boolean, default=False)
    entry_granted = Column(Boolean, default=False)
    location = Column(String, nullable=True)
    reason = Column(String, nullable=True)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id = Column(String, ForeignKey("tickets.id"), index=True)
    event_id = Column(String, ForeignKey("events.id"), index=True)
    payer_name = Column(String, nullable=True)
    payer_email = Column(String, nullable=True)
    amount = Column(Integer, default=0)
    method = Column(String, default="mtn")  # mtn, airtel, card
    status = Column(String, default="pending")  # pending, paid, failed, refunded
    transaction_ref = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
