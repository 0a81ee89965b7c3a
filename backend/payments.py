import logging
import random
import uuid
from typing import Optional, Protocol

from pydantic import BaseModel

logger = logging.getLogger("nightlife.payments")


class ChargeResult(BaseModel):
    success: bool
    reference: Optional[str] = None
    failure_reason: Optional[str] = None


class RefundResult(BaseModel):
    success: bool
    reference: Optional[str] = None


class PaymentGateway(Protocol):
    async def charge(self, amount: int, method: str) -> ChargeResult:
        ...

    async def refund(self, amount: int, reference: str) -> RefundResult:
        ...


class MockPaymentGateway:
    """In-process provider; declines a `failure_rate` share of calls."""

    def __init__(self, failure_rate: float = 0.0, rng: random.Random | None = None):
        self.failure_rate = failure_rate
        self._rng = rng or random.Random()

    def _fails(self) -> bool:
        return self.failure_rate > 0 and self._rng.random() < self.failure_rate

    async def charge(self, amount: int, method: str) -> ChargeResult:
        if amount < 0:
            raise ValueError("amount must not be negative")
        if self._fails():
            logger.info("Mock charge of %s via %s declined", amount, method)
            return ChargeResult(success=False, failure_reason="Insufficient funds")
        reference = f"pi_{uuid.uuid4().hex[:16]}"
        return ChargeResult(success=True, reference=reference)

    async def refund(self, amount: int, reference: str) -> RefundResult:
        if not reference:
            logger.warning("Mock refund without a charge reference")
            return RefundResult(success=False)
        if self._fails():
            return RefundResult(success=False)
        return RefundResult(success=True, reference=f"re_{uuid.uuid4().hex[:16]}")
