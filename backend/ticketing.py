import logging
import secrets
import string
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

import models
import schemas
from biometric import BiometricVerifier
from errors import CollaboratorFailure, InvalidTransition, NotFound, PaymentDeclined
from lifecycle import TicketStatus, ensure_transition, reverses_revenue, transition_fields
from payments import PaymentGateway
from pricing import PriceCalculator
from qr_codec import QRCodec, now_ms
from signing import TicketSigner
from store import SqlTicketStore

logger = logging.getLogger("nightlife.tickets")

_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_ticket_code(timestamp_ms: int) -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"TKT-{to_base36(timestamp_ms)}-{suffix}"


class TicketService:
    """Issues tickets and drives the operator-side lifecycle changes."""

    def __init__(
        self,
        signer: TicketSigner,
        codec: QRCodec,
        pricing: PriceCalculator,
        store: SqlTicketStore,
        biometric: BiometricVerifier,
        payments: PaymentGateway,
        clock: Callable[[], int] = now_ms,
    ):
        self.signer = signer
        self.codec = codec
        self.pricing = pricing
        self.store = store
        self.biometric = biometric
        self.payments = payments
        self.clock = clock

    def issue_qr(self, ticket: models.Ticket) -> str:
        purchase_date = ticket.purchase_date
        if purchase_date.tzinfo is None:
            purchase_date = purchase_date.replace(tzinfo=timezone.utc)
        payload = schemas.TicketPayload(
            ticket_id=ticket.id,
            event_id=ticket.event_id,
            event_name=ticket.event_name,
            buyer_id=ticket.buyer_id,
            buyer_name=ticket.buyer_name,
            ticket_type=ticket.ticket_type,
            quantity=ticket.quantity,
            purchase_date=purchase_date.isoformat(),
            timestamp=self.clock(),
            version=self.codec.supported_version,
        )
        signed = schemas.SignedQRData(**payload.model_dump(), signature=self.signer.sign(payload))
        return self.codec.encode(signed)

    async def purchase(
        self,
        event: models.Event,
        buyer_id: str,
        buyer_name: str,
        buyer_email: Optional[str] = None,
        ticket_type=schemas.TicketType.REGULAR,
        quantity: int = 1,
        payment_method=schemas.PaymentMethod.MTN,
    ) -> models.Ticket:
        ticket_type = schemas.TicketType(ticket_type)
        payment_method = schemas.PaymentMethod(payment_method)
        quote = self.pricing.quote(event.base_price or 0, ticket_type, quantity, payment_method)

        if event.capacity is not None:
            sold = sum(
                t.quantity
                for t in await self.store.list_for_event(event.id)
                if not reverses_revenue(t.status)
            )
            if sold + quantity > event.capacity:
                raise ValueError("Not enough tickets left for this event")

        try:
            biometric_hash = await self.biometric.capture()
        except Exception as exc:
            raise CollaboratorFailure("Biometric capture failed") from exc

        try:
            charge = await self.payments.charge(quote.amount_due, payment_method.value)
        except Exception as exc:
            raise CollaboratorFailure("Payment provider unavailable") from exc
        if not charge.success:
            logger.info("Payment declined for %s on event %s: %s", buyer_id, event.id, charge.failure_reason)
            raise PaymentDeclined()

        purchased_at = datetime.now(timezone.utc)
        ticket = models.Ticket(
            id=str(uuid.uuid4()),
            event_id=event.id,
            event_name=event.name,
            buyer_id=buyer_id,
            buyer_name=buyer_name,
            buyer_email=buyer_email,
            quantity=quantity,
            ticket_type=ticket_type.value,
            unit_price=quote.unit_price,
            total_amount=quote.total_price,
            payment_fees=quote.payment_fees,
            app_commission=quote.app_commission,
            venue_revenue=quote.venue_revenue,
            payment_method=payment_method.value,
            payment_reference=charge.reference,
            ticket_code=generate_ticket_code(self.clock()),
            biometric_hash=biometric_hash,
            status=TicketStatus.ACTIVE.value,
            purchase_date=purchased_at,
        )
        ticket.qr_code = self.issue_qr(ticket)
        payment = models.Payment(
            ticket_id=ticket.id,
            event_id=event.id,
            payer_name=buyer_name,
            payer_email=buyer_email,
            amount=quote.amount_due,
            method=payment_method.value,
            status="paid",
            transaction_ref=charge.reference,
            confirmed_at=purchased_at,
        )
        ticket = await self.store.save(ticket, payment)
        logger.info("Ticket %s purchased by %s for %s (%s x%s)", ticket.id, buyer_id, event.name, ticket_type.value, quantity)
        return ticket

    async def get(self, ticket_id: str) -> models.Ticket:
        ticket = await self.store.get(ticket_id)
        if ticket is None:
            raise NotFound()
        return ticket

    async def get_by_code(self, ticket_code: str) -> models.Ticket:
        ticket = await self.store.get_by_code(ticket_code)
        if ticket is None:
            raise NotFound()
        return ticket

    async def refresh_qr(self, ticket_id: str) -> models.Ticket:
        ticket = await self.get(ticket_id)
        if ticket.status != TicketStatus.ACTIVE.value:
            raise InvalidTransition(ticket.status)
        return await self.store.update(ticket.id, qr_code=self.issue_qr(ticket))

    async def cancel(self, ticket_id: str, reason: str, actor: Optional[str] = None) -> models.Ticket:
        if not reason or not reason.strip():
            raise ValueError("A cancellation reason is required")
        return await self._reverse(ticket_id, TicketStatus.CANCELLED, reason.strip(), actor)

    async def refund(self, ticket_id: str, reason: Optional[str] = None, actor: Optional[str] = None) -> models.Ticket:
        return await self._reverse(ticket_id, TicketStatus.REFUNDED, reason or "Refunded", actor)

    async def _reverse(self, ticket_id, target: TicketStatus, reason: str, actor: Optional[str]) -> models.Ticket:
        ticket = await self.get(ticket_id)
        ensure_transition(ticket.status, target)

        # the ticket is claimed before any money moves
        fields = transition_fields(target, reason=reason)
        if not await self.store.transition(ticket_id, TicketStatus.ACTIVE.value, fields):
            current = await self.get(ticket_id)
            logger.info("Ticket %s changed to %s before it could be %s", ticket_id, current.status, target.value)
            raise InvalidTransition(current.status, target.value)
        logger.info("Ticket %s %s by %s: %s", ticket_id, target.value, actor or "system", reason)

        payment = await self.store.payment_for(ticket_id)
        if reverses_revenue(target) and payment is not None and payment.status == "paid":
            payment_id = payment.id
            try:
                result = await self.payments.refund(payment.amount, payment.transaction_ref)
            except Exception as exc:
                logger.error("Refund of payment %s for ticket %s needs reconciliation", payment_id, ticket_id)
                raise CollaboratorFailure("Refund failed") from exc
            if not result.success:
                logger.error("Refund of payment %s for ticket %s needs reconciliation", payment_id, ticket_id)
                raise CollaboratorFailure("Refund failed")
            payment.status = "refunded"
            payment.refunded_at = fields["cancelled_at"]
            await self.store.save_payment(payment)

        return await self.get(ticket_id)

    async def expire_event(self, event_id: str) -> int:
        expired = 0
        active = await self.store.list_for_event(event_id, status=TicketStatus.ACTIVE.value)
        for ticket_id in [t.id for t in active]:
            fields = transition_fields(TicketStatus.EXPIRED)
            if await self.store.transition(ticket_id, TicketStatus.ACTIVE.value, fields):
                expired += 1
        logger.info("Expired %s active tickets for event %s", expired, event_id)
        return expired

    async def list_event_tickets(self, event_id: str) -> List[models.Ticket]:
        return await self.store.list_for_event(event_id)

    async def list_user_tickets(self, buyer_id: str) -> List[models.Ticket]:
        return await self.store.list_for_buyer(buyer_id)

    async def event_stats(self, event_id: str) -> schemas.EventStatsResponse:
        tickets = await self.store.list_for_event(event_id)
        counts = {status.value: 0 for status in TicketStatus}
        gross = commission = venue = denied = 0
        for ticket in tickets:
            counts[ticket.status] = counts.get(ticket.status, 0) + 1
            denied += sum(1 for v in ticket.validation_history if not v.entry_granted)
            if reverses_revenue(ticket.status):
                continue
            gross += ticket.total_amount
            commission += ticket.app_commission
            venue += ticket.venue_revenue
        return schemas.EventStatsResponse(
            event_id=event_id,
            issued=len(tickets),
            active=counts[TicketStatus.ACTIVE.value],
            used=counts[TicketStatus.USED.value],
            cancelled=counts[TicketStatus.CANCELLED.value],
            refunded=counts[TicketStatus.REFUNDED.value],
            expired=counts[TicketStatus.EXPIRED.value],
            gross_revenue=gross,
            app_commission=commission,
            venue_revenue=venue,
            denied_attempts=denied,
        )