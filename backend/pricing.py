from decimal import Decimal, ROUND_HALF_UP

from schemas import PaymentMethod, PriceBreakdown, Quote, TicketType

APP_COMMISSION_RATE = Decimal("0.05")
SECURE_TICKET_MULTIPLIER = Decimal("1.5")

# buyer-side processing fees: fixed amount + percentage of the ticket total
PAYMENT_FEES = {
    PaymentMethod.MTN: {"fixed": 500, "percentage": Decimal("0.015")},
    PaymentMethod.AIRTEL: {"fixed": 500, "percentage": Decimal("0.015")},
    PaymentMethod.CARD: {"fixed": 1000, "percentage": Decimal("0.025")},
}


def round_half_up(value) -> int:
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PriceCalculator:
    """Prices tickets in whole currency units.

    Only the commission is rounded; the venue share is whatever is left,
    so commission + venue revenue always rebuilds the total.
    """

    def __init__(self, commission_rate=APP_COMMISSION_RATE, secure_multiplier=SECURE_TICKET_MULTIPLIER):
        self.commission_rate = Decimal(str(commission_rate))
        self.secure_multiplier = Decimal(str(secure_multiplier))
        if not Decimal(0) <= self.commission_rate <= Decimal(1):
            raise ValueError("commission rate must be between 0 and 1")

    def premium_multiplier(self, ticket_type) -> Decimal:
        if TicketType(ticket_type) == TicketType.SECURE:
            return self.secure_multiplier
        return Decimal(1)

    def price(self, base_price: int, ticket_type, quantity: int) -> PriceBreakdown:
        if base_price < 0:
            raise ValueError("base price must not be negative")
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        unit_price = round_half_up(Decimal(base_price) * self.premium_multiplier(ticket_type))
        total_price = unit_price * quantity
        app_commission = round_half_up(Decimal(total_price) * self.commission_rate)
        return PriceBreakdown(
            unit_price=unit_price,
            total_price=total_price,
            app_commission=app_commission,
            venue_revenue=total_price - app_commission,
        )

    def payment_fee(self, amount: int, method) -> int:
        fees = PAYMENT_FEES[PaymentMethod(method)]
        return fees["fixed"] + round_half_up(Decimal(amount) * fees["percentage"])

    def quote(self, base_price: int, ticket_type, quantity: int, method) -> Quote:
        breakdown = self.price(base_price, ticket_type, quantity)
        fees = self.payment_fee(breakdown.total_price, method)
        return Quote(
            **breakdown.model_dump(),
            payment_method=PaymentMethod(method),
            payment_fees=fees,
            amount_due=breakdown.total_price + fees,
        )
