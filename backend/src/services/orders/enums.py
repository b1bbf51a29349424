"""Order and payment status enums with the order lifecycle transition table.

Order lifecycle::

    placed -> received -> in_progress -> out_for_delivery -> delivered
       \\________\\____________\\_______________\\____________-> cancelled

``delivered`` and ``cancelled`` are terminal.
"""

from enum import Enum
from typing import Dict, List, Tuple


class OrderStatus(str, Enum):
    """Order fulfillment status."""

    PLACED = "placed"
    RECEIVED = "received"
    IN_PROGRESS = "in_progress"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return not ORDER_STATUS_TRANSITIONS[self]

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class PaymentStatus(str, Enum):
    """Payment state recorded on the order."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def display_name(self) -> str:
        return self.value.title()


class PaymentTransactionStatus(str, Enum):
    """State of a payment transaction record."""

    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    REFUNDED = "refunded"


# Ordered so that "valid alternatives" messages are stable.
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Tuple[OrderStatus, ...]] = {
    OrderStatus.PLACED: (OrderStatus.RECEIVED, OrderStatus.CANCELLED),
    OrderStatus.RECEIVED: (OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED),
    OrderStatus.IN_PROGRESS: (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED),
    OrderStatus.OUT_FOR_DELIVERY: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
}

TERMINAL_ORDER_STATUSES = frozenset(
    status for status, targets in ORDER_STATUS_TRANSITIONS.items() if not targets
)


def validate_order_status_transition(
    current: OrderStatus, target: OrderStatus
) -> bool:
    """Check whether ``current -> target`` is in the transition table."""
    return target in ORDER_STATUS_TRANSITIONS.get(current, ())


def get_allowed_order_transitions(current: OrderStatus) -> List[OrderStatus]:
    """Statuses reachable from ``current`` in one step."""
    return list(ORDER_STATUS_TRANSITIONS.get(current, ()))
