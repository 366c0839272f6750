"""Order lifecycle states and the transitions between them."""

from enum import Enum

from storefront.domain.exceptions import InvalidStateTransitionError


class OrderStatus(str, Enum):
    """Where an order is in its lifecycle.

        DRAFT ──► FAILED             checkout rejected, nothing stored
          │
          ▼
        AWAITING_PAYMENT ──► EXPIRED abandoned, stock given back
          │
          ▼
        PAID ──► DELIVERED
    """

    DRAFT = "draft"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    DELIVERED = "delivered"
    FAILED = "failed"
    EXPIRED = "expired"

    def next_states(self) -> frozenset["OrderStatus"]:
        return ORDER_TRANSITIONS[self]

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return target in ORDER_TRANSITIONS[self]

    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self]

    def is_payable(self) -> bool:
        """Whether a payment may still be started or confirmed."""
        return self is OrderStatus.AWAITING_PAYMENT


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.AWAITING_PAYMENT, OrderStatus.FAILED}),
    OrderStatus.AWAITING_PAYMENT: frozenset({OrderStatus.PAID, OrderStatus.EXPIRED}),
    OrderStatus.PAID: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
}


def validate_order_transition(
    order_id: str, current: OrderStatus, target: OrderStatus
) -> None:
    """Raise InvalidStateTransitionError unless current may move to target."""
    if current.can_transition_to(target):
        return
    raise InvalidStateTransitionError(
        entity_type="Order",
        entity_id=order_id,
        current_state=current.value,
        target_state=target.value,
        allowed_transitions=sorted(s.value for s in current.next_states()),
    )
