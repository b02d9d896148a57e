"""
Order Service — order aggregate

Holds the status rules of a single order. The commands load the row, ask the
aggregate whether a transition is allowed, then persist it.

Status transitions:
    PENDING → CANCELLED  (cancellation, stock restored)
    PENDING → COMPLETED  (fulfilment, set outside this service)

CANCELLED and COMPLETED are terminal.
"""

from .errors import ErrorKind, Failure
from .models import Order, OrderStatus

TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.COMPLETED})


class OrderAggregate:
    def __init__(self, order_id: str, user_id: str, status: OrderStatus) -> None:
        self.id = order_id
        self.user_id = user_id
        self.status = status

    @classmethod
    def from_row(cls, order: Order) -> "OrderAggregate":
        return cls(order.id, order.user_id, order.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def cancel(self) -> Failure | None:
        """Move to CANCELLED, or return why that is not allowed."""
        if self.is_terminal:
            if self.status == OrderStatus.CANCELLED:
                return Failure(ErrorKind.INVALID_STATE, "Order is already cancelled")
            return Failure(ErrorKind.INVALID_STATE, "Cannot cancel completed order")
        self.status = OrderStatus.CANCELLED
        return None
