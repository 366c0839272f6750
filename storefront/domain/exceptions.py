"""Domain exceptions.

All domain-level errors that represent business rule violations or
failures at the inventory, persistence and payment boundaries. The API
layer maps each class to an HTTP status and error code.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    Attributes:
        message: Human-readable error message.
        details: Additional error context safe to return to the caller.
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted."""

    error_code = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


# ============================================================================
# Validation Errors
# ============================================================================


class ValidationError(DomainError):
    """Base class for input rejected before any mutation."""

    error_code = "VALIDATION_ERROR"


class EmptyCartError(ValidationError):
    """Raised when a checkout is submitted without any lines."""

    error_code = "EMPTY_CART"

    def __init__(self) -> None:
        super().__init__("No order items")


class InvalidQuantityError(ValidationError):
    """Raised when a line quantity is not a positive integer."""

    error_code = "INVALID_QUANTITY"

    def __init__(self, quantity: int, product_id: str | None = None) -> None:
        super().__init__(
            f"Invalid quantity {quantity}: quantity must be positive",
            details={"quantity": quantity, "product_id": product_id},
        )


class InvalidAddressError(ValidationError):
    """Raised when a shipping address is missing a required field."""

    error_code = "INVALID_ADDRESS"

    def __init__(self, field_name: str) -> None:
        super().__init__(
            f"Shipping address field '{field_name}' cannot be empty",
            details={"field": field_name},
        )


class UnsupportedCurrencyError(ValidationError):
    """Raised when a payment currency is not accepted for a payment method."""

    error_code = "UNSUPPORTED_CURRENCY"

    def __init__(self, currency: str, payment_method: str, allowed: list[str]) -> None:
        super().__init__(
            f"Currency {currency} is not supported for {payment_method} payments",
            details={
                "currency": currency,
                "payment_method": payment_method,
                "allowed": allowed,
            },
        )


class MissingPaymentTokenError(ValidationError):
    """Raised when a card payment is attempted without a payment method token."""

    error_code = "MISSING_PAYMENT_TOKEN"

    def __init__(self) -> None:
        super().__init__("A payment token is required for card payments")


class PaymentMethodMismatchError(ValidationError):
    """Raised when an operation does not apply to the order's payment method."""

    error_code = "PAYMENT_METHOD_MISMATCH"

    def __init__(self, order_id: str, payment_method: str) -> None:
        super().__init__(
            f"Operation not available for {payment_method} order {order_id}",
            details={"order_id": order_id, "payment_method": payment_method},
        )


# ============================================================================
# Inventory Errors
# ============================================================================


class InventoryError(DomainError):
    """Base class for inventory ledger errors."""

    pass


class ProductNotFoundError(InventoryError):
    """Raised when a product does not exist."""

    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str) -> None:
        super().__init__(
            f"Product with ID {product_id} not found",
            details={"product_id": product_id},
        )
        self.product_id = product_id


class InsufficientStockError(InventoryError):
    """Raised when a reservation exceeds the available stock."""

    error_code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id


# ============================================================================
# Checkout Errors
# ============================================================================


class CheckoutError(DomainError):
    """Base class for checkout errors."""

    pass


class CheckoutRejectedError(CheckoutError):
    """Raised when a checkout fails before the order is persisted.

    Attributes:
        reason: The inventory error that caused the rejection.
        product_id: Product whose reservation failed.
    """

    def __init__(self, reason: InventoryError, product_id: str) -> None:
        super().__init__(reason.message, details=dict(reason.details))
        self.reason = reason
        self.product_id = product_id
        self.error_code = reason.error_code


# ============================================================================
# Order Errors
# ============================================================================


class OrderError(DomainError):
    """Base class for order-related errors."""

    pass


class OrderNotFoundError(OrderError):
    """Raised when an order does not exist."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order not found: {order_id}", details={"order_id": order_id})


class ConflictingConfirmationError(OrderError):
    """Raised when a paid order receives a different payment confirmation."""

    error_code = "CONFLICTING_CONFIRMATION"

    def __init__(self, order_id: str, existing_reference: str, new_reference: str) -> None:
        super().__init__(
            f"Order {order_id} is already paid with a different confirmation",
            details={
                "order_id": order_id,
                "existing_reference": existing_reference,
                "new_reference": new_reference,
            },
        )


class UnauthorizedAccessError(OrderError):
    """Raised when an identity may not access an order or operation.

    Carries no order details so the response leaks nothing.
    """

    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Not authorized to access this resource") -> None:
        super().__init__(message)


class AuthenticationError(DomainError):
    """Raised when a request carries no valid identity."""

    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


# ============================================================================
# Payment Errors
# ============================================================================


class PaymentError(DomainError):
    """Base class for payment provider errors."""

    def __init__(
        self, provider: str, message: str, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details={"provider": provider, **(details or {})})
        self.provider = provider


class PaymentDeclinedError(PaymentError):
    """Raised when the provider declines a charge."""

    error_code = "PAYMENT_DECLINED"


class PaymentProviderError(PaymentError):
    """Raised when the provider is unreachable or answers unexpectedly."""

    error_code = "PAYMENT_PROVIDER_ERROR"


# ============================================================================
# Money Errors
# ============================================================================


class MoneyError(DomainError):
    """Base class for money-related errors."""

    pass


class CurrencyMismatchError(MoneyError):
    """Raised when attempting to combine money with different currencies."""

    error_code = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str) -> None:
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(MoneyError):
    """Raised when attempting to create money with negative amount."""

    def __init__(self, amount: int) -> None:
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )
