"""Domain layer - Entities, value objects, state machine, pricing, events.

Example usage:
    from storefront.domain import Money, Order, OrderLine, PricingPolicy

    line = OrderLine("P1", "Widget", quantity=2, unit_price=Money(1000))
    pricing = PricingPolicy().price(line.line_total)
    print(pricing.total)  # $33.00 USD
"""

from storefront.domain.base import AggregateRoot, DomainEvent, Entity, ValueObject
from storefront.domain.entities import Order, OrderDraft, OrderLine, Product, sum_lines
from storefront.domain.events import (
    OrderDelivered,
    OrderExpired,
    OrderInvoiceOpened,
    OrderPaid,
    OrderPlaced,
)
from storefront.domain.exceptions import (
    AuthenticationError,
    CheckoutError,
    CheckoutRejectedError,
    ConflictingConfirmationError,
    CurrencyMismatchError,
    DomainError,
    EmptyCartError,
    InsufficientStockError,
    InvalidAddressError,
    InvalidQuantityError,
    InvalidStateTransitionError,
    InventoryError,
    MissingPaymentTokenError,
    MoneyError,
    NegativeMoneyError,
    OrderError,
    OrderNotFoundError,
    PaymentDeclinedError,
    PaymentError,
    PaymentMethodMismatchError,
    PaymentProviderError,
    ProductNotFoundError,
    UnauthorizedAccessError,
    UnsupportedCurrencyError,
    ValidationError,
)
from storefront.domain.payments import (
    CallbackStatus,
    InvoiceHandle,
    PaymentConfirmation,
    PaymentOutcome,
    PaymentRequest,
    PendingConfirmation,
    ProviderCallback,
    SynchronousResult,
)
from storefront.domain.pricing import PriceBreakdown, PricingPolicy
from storefront.domain.state_machines import OrderStatus, validate_order_transition
from storefront.domain.value_objects import (
    Identity,
    Money,
    OrderId,
    PaymentMethod,
    ShippingAddress,
)

__all__ = [
    # Base classes
    "AggregateRoot",
    "DomainEvent",
    "Entity",
    "ValueObject",
    # Entities
    "Order",
    "OrderDraft",
    "OrderLine",
    "Product",
    "sum_lines",
    # Value Objects
    "Identity",
    "Money",
    "OrderId",
    "PaymentMethod",
    "ShippingAddress",
    # Payments
    "CallbackStatus",
    "InvoiceHandle",
    "PaymentConfirmation",
    "PaymentOutcome",
    "PaymentRequest",
    "PendingConfirmation",
    "ProviderCallback",
    "SynchronousResult",
    # Pricing
    "PriceBreakdown",
    "PricingPolicy",
    # State Machine
    "OrderStatus",
    "validate_order_transition",
    # Domain Events
    "OrderPlaced",
    "OrderPaid",
    "OrderInvoiceOpened",
    "OrderDelivered",
    "OrderExpired",
    # Exceptions
    "DomainError",
    "InvalidStateTransitionError",
    "ValidationError",
    "EmptyCartError",
    "InvalidQuantityError",
    "InvalidAddressError",
    "UnsupportedCurrencyError",
    "MissingPaymentTokenError",
    "PaymentMethodMismatchError",
    "InventoryError",
    "ProductNotFoundError",
    "InsufficientStockError",
    "CheckoutError",
    "CheckoutRejectedError",
    "OrderError",
    "OrderNotFoundError",
    "ConflictingConfirmationError",
    "UnauthorizedAccessError",
    "AuthenticationError",
    "PaymentError",
    "PaymentDeclinedError",
    "PaymentProviderError",
    "MoneyError",
    "CurrencyMismatchError",
    "NegativeMoneyError",
]
