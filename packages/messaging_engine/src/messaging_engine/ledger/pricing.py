"""
Message Pricing

Fixed per-kind cost schedule, in credits. Costs do not vary by tenant.
"""

from decimal import Decimal

from messaging_engine.persistence.models import MessageKind

MESSAGE_COSTS: dict[MessageKind, Decimal] = {
    MessageKind.TEXT: Decimal("1.00"),
    MessageKind.TEMPLATE: Decimal("1.50"),
    MessageKind.MEDIA: Decimal("2.00"),
    MessageKind.INTERACTIVE: Decimal("1.00"),
}


def cost_for(kind: MessageKind | str) -> Decimal:
    """Credit cost of sending one message of the given kind."""
    return MESSAGE_COSTS[MessageKind(kind)]
