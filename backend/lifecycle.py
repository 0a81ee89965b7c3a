from datetime import datetime, timezone
from enum import Enum

from errors import InvalidTransition


class TicketStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset(
    {TicketStatus.USED, TicketStatus.CANCELLED, TicketStatus.REFUNDED, TicketStatus.EXPIRED}
)

# flat, one level: only active has outgoing edges
TRANSITIONS = {
    TicketStatus.ACTIVE: frozenset(TERMINAL_STATUSES),
}

REVENUE_REVERSING = frozenset({TicketStatus.CANCELLED, TicketStatus.REFUNDED})


def can_transition(current, target) -> bool:
    try:
        current = TicketStatus(current)
        target = TicketStatus(target)
    except ValueError:
        return False
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current, target) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(str(getattr(current, "value", current)), str(getattr(target, "value", target)))


def reverses_revenue(target) -> bool:
    """Cancelling and refunding both hand the money back through the payment gateway."""
    try:
        return TicketStatus(target) in REVENUE_REVERSING
    except ValueError:
        return False


def transition_fields(target, at: datetime | None = None, actor: str | None = None, reason: str | None = None) -> dict:
    """Column values written alongside a status change."""
    target = TicketStatus(target)
    at = at or datetime.now(timezone.utc)
    fields = {"status": target.value}
    if target == TicketStatus.USED:
        fields["used_at"] = at
        fields["validated_by"] = actor
    elif target in REVENUE_REVERSING:
        fields["cancelled_at"] = at
        fields["cancel_reason"] = reason
    return fields
