"""Domain entities for the storefront checkout.

Entities are domain objects with identity that persists across state changes.
This module contains the Product shared entity, the checkout OrderDraft and
the Order aggregate with its OrderLines.
"""

from dataclasses import dataclass, field
from datetime import datetime

from storefront.domain.base import AggregateRoot, Entity, utcnow
from storefront.domain.events import (
    OrderDelivered,
    OrderExpired,
    OrderInvoiceOpened,
    OrderPaid,
    OrderPlaced,
)
from storefront.domain.exceptions import (
    ConflictingConfirmationError,
    EmptyCartError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidStateTransitionError,
)
from storefront.domain.payments import InvoiceHandle, PaymentConfirmation
from storefront.domain.pricing import PriceBreakdown
from storefront.domain.state_machines import OrderStatus, validate_order_transition
from storefront.domain.value_objects import Money, OrderId, PaymentMethod, ShippingAddress


# ============================================================================
# Product Entity
# ============================================================================


@dataclass(eq=False)
class Product(Entity):
    """A catalog product with its stock count.

    Products are shared, independently-owned entities. Checkout only reads
    the price and moves stock through the inventory ledger.

    Attributes:
        id: Opaque product identifier.
        name: Display name.
        price: Current unit price.
        stock_count: Units in stock, never negative.
    """

    name: str
    price: Money
    stock_count: int = 0

    def take(self, quantity: int) -> None:
        """Remove units from stock.

        Raises:
            InvalidQuantityError: If quantity is not positive.
            InsufficientStockError: If fewer than quantity units are in stock.
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity, self.id)
        if quantity > self.stock_count:
            raise InsufficientStockError(self.id, quantity, self.stock_count)
        self.stock_count -= quantity

    def put_back(self, quantity: int) -> None:
        """Return units to stock."""
        if quantity <= 0:
            raise InvalidQuantityError(quantity, self.id)
        self.stock_count += quantity


# ============================================================================
# Order Line
# ============================================================================


@dataclass(frozen=True)
class OrderLine:
    """A line item in an order.

    Order lines are immutable snapshots taken when stock was reserved;
    later product price changes do not affect them.

    Attributes:
        product_id: Product identifier.
        product_name: Product name at time of order.
        quantity: Ordered quantity.
        unit_price: Price per unit at reservation time.
    """

    product_id: str
    product_name: str
    quantity: int
    unit_price: Money

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise InvalidQuantityError(self.quantity, self.product_id)

    @property
    def line_total(self) -> Money:
        return self.unit_price * self.quantity

    @classmethod
    def snapshot(cls, product: Product, quantity: int) -> "OrderLine":
        """Create a line from the product as read at reservation time."""
        return cls(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            unit_price=product.price,
        )


def sum_lines(lines: list[OrderLine]) -> Money:
    """Sum line totals.

    Raises:
        EmptyCartError: If there are no lines.
        CurrencyMismatchError: If lines are priced in different currencies.
    """
    if not lines:
        raise EmptyCartError()
    total = Money.zero(lines[0].unit_price.currency)
    for line in lines:
        total = total + line.line_total
    return total


# ============================================================================
# Checkout Draft
# ============================================================================


@dataclass
class OrderDraft:
    """A checkout attempt before its order is persisted.

    Tracks the lines reserved so far so a failed checkout can release
    exactly those reservations, in reverse order.
    """

    owner_id: str
    status: OrderStatus = OrderStatus.DRAFT
    lines: list[OrderLine] = field(default_factory=list)
    failure_reason: str | None = None
    order_id: OrderId | None = None

    def add_reserved_line(self, line: OrderLine) -> None:
        self.lines.append(line)

    def reserved_in_release_order(self) -> list[OrderLine]:
        return list(reversed(self.lines))

    def fail(self, reason: str) -> None:
        validate_order_transition("draft", self.status, OrderStatus.FAILED)
        self.status = OrderStatus.FAILED
        self.failure_reason = reason

    def placed(self, order_id: OrderId) -> None:
        validate_order_transition("draft", self.status, OrderStatus.AWAITING_PAYMENT)
        self.status = OrderStatus.AWAITING_PAYMENT
        self.order_id = order_id


# ============================================================================
# Order Aggregate Root
# ============================================================================


@dataclass(kw_only=True)
class Order(AggregateRoot):
    """Order aggregate root.

    Created once, atomically with all its lines, awaiting payment. Mutated
    afterwards only to attach an invoice, to mark it paid, to mark it
    delivered, or to expire it when abandoned. Never deleted.

    Attributes:
        id: Unique order identifier.
        owner_id: Purchasing identity.
        payment_method: Card or crypto invoice.
        payment_currency: Settlement currency chosen by the shopper.
        pricing: Items, shipping and tax amounts fixed at creation.
        shipping_address: Where to deliver.
        lines: Order lines (owned).
        status: Lifecycle state.
        payment_confirmation: Provider receipt, once paid.
    """

    id: OrderId
    owner_id: str
    payment_method: PaymentMethod
    payment_currency: str
    pricing: PriceBreakdown
    shipping_address: ShippingAddress
    lines: list[OrderLine] = field(default_factory=list)
    status: OrderStatus = OrderStatus.AWAITING_PAYMENT
    is_paid: bool = False
    paid_at: datetime | None = None
    payment_confirmation: PaymentConfirmation | None = None
    is_delivered: bool = False
    delivered_at: datetime | None = None
    invoice_id: str | None = None
    invoice_url: str | None = None
    expired_at: datetime | None = None

    @classmethod
    def place(
        cls,
        owner_id: str,
        lines: list[OrderLine],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        payment_currency: str,
        pricing: PriceBreakdown,
        order_id: OrderId | None = None,
    ) -> "Order":
        """Create an order awaiting payment.

        Raises:
            EmptyCartError: If lines is empty.
            ValueError: If pricing does not match the lines.
        """
        if sum_lines(lines) != pricing.items:
            raise ValueError("Items price does not match order lines")

        order = cls(
            id=order_id or OrderId.generate(),
            owner_id=owner_id,
            payment_method=payment_method,
            payment_currency=payment_currency.upper(),
            pricing=pricing,
            shipping_address=shipping_address,
            lines=list(lines),
        )
        order._record_event(
            OrderPlaced(
                order_id=str(order.id),
                owner_id=owner_id,
                payment_method=payment_method.value,
                total_cents=order.total_price.amount_cents,
                currency=order.total_price.currency,
                line_count=len(lines),
            )
        )
        return order

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def total_price(self) -> Money:
        return self.pricing.total

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def mark_paid(self, confirmation: PaymentConfirmation, paid_at: datetime) -> bool:
        """Apply a provider confirmation.

        Idempotent merge: the same receipt on an already-paid order
        changes nothing.

        Returns:
            True if the order changed, False for a redundant confirmation.

        Raises:
            ConflictingConfirmationError: If already paid with another receipt.
            InvalidStateTransitionError: If the order cannot be paid.
        """
        if self.is_paid and self.payment_confirmation is not None:
            if self.payment_confirmation.same_receipt(confirmation):
                return False
            raise ConflictingConfirmationError(
                str(self.id),
                self.payment_confirmation.reference,
                confirmation.reference,
            )

        validate_order_transition(str(self.id), self.status, OrderStatus.PAID)
        self.is_paid = True
        self.paid_at = paid_at
        self.payment_confirmation = confirmation
        self.status = OrderStatus.PAID
        self._touch(paid_at)
        self._record_event(
            OrderPaid(
                order_id=str(self.id),
                provider=confirmation.provider,
                reference=confirmation.reference,
            )
        )
        return True

    def mark_delivered(self, delivered_at: datetime) -> bool:
        """Mark the order delivered.

        Returns:
            True if the order changed, False if it was already delivered.

        Raises:
            InvalidStateTransitionError: If the order is not paid.
        """
        if self.is_delivered:
            return False
        validate_order_transition(str(self.id), self.status, OrderStatus.DELIVERED)
        self.is_delivered = True
        self.delivered_at = delivered_at
        self.status = OrderStatus.DELIVERED
        self._touch(delivered_at)
        self._record_event(OrderDelivered(order_id=str(self.id)))
        return True

    def attach_invoice(self, invoice: InvoiceHandle) -> None:
        """Remember the invoice the shopper was sent to.

        Raises:
            InvalidStateTransitionError: If the order is no longer payable.
        """
        if not self.status.is_payable():
            raise InvalidStateTransitionError(
                entity_type="Order",
                entity_id=str(self.id),
                current_state=self.status.value,
                target_state="invoice_opened",
            )
        self.invoice_id = invoice.invoice_id
        self.invoice_url = invoice.url
        self._touch()
        self._record_event(
            OrderInvoiceOpened(order_id=str(self.id), invoice_id=invoice.invoice_id)
        )

    def expire(self, expired_at: datetime | None = None) -> None:
        """Expire an abandoned order awaiting payment.

        Raises:
            InvalidStateTransitionError: If the order is not awaiting payment.
        """
        validate_order_transition(str(self.id), self.status, OrderStatus.EXPIRED)
        self.expired_at = expired_at or utcnow()
        self.status = OrderStatus.EXPIRED
        self._touch(self.expired_at)
        self._record_event(
            OrderExpired(order_id=str(self.id), released_units=self.item_count)
        )
