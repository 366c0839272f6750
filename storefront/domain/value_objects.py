"""Immutable values of the order model: ids, money, addresses, identities."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Self
from uuid import UUID, uuid4

from storefront.domain.base import ValueObject
from storefront.domain.exceptions import (
    CurrencyMismatchError,
    InvalidAddressError,
    NegativeMoneyError,
)


# ============================================================================
# Typed Identifiers
# ============================================================================


@dataclass(frozen=True)
class OrderId(ValueObject):
    """Strongly-typed order identifier."""

    value: UUID

    @classmethod
    def generate(cls) -> Self:
        """Generate a new order ID."""
        return cls(value=uuid4())

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Create OrderId from string representation.

        Raises:
            ValueError: If value is not a valid UUID.
        """
        return cls(value=UUID(value))

    def __str__(self) -> str:
        return str(self.value)


# ============================================================================
# Payment Method
# ============================================================================


class PaymentMethod(str, Enum):
    """Supported payment methods.

    CARD settles synchronously within the checkout request.
    CRYPTO_INVOICE settles later through a provider webhook.
    """

    CARD = "card"
    CRYPTO_INVOICE = "crypto_invoice"

    def is_synchronous(self) -> bool:
        """Check if the payment result is known within the request."""
        return self is PaymentMethod.CARD


# ============================================================================
# Money Value Object
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """A non-negative amount in minor units of an ISO 4217 currency.

    Prices, line totals, shipping, tax and order totals are all Money.
    Tax is the only computed fraction and rounds half-up to the cent.
    """

    amount_cents: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        if self.amount_cents < 0:
            raise NegativeMoneyError(self.amount_cents)
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = "USD") -> Self:
        """Create zero amount money."""
        return cls(amount_cents=0, currency=currency)

    @classmethod
    def from_decimal(cls, amount: Decimal, currency: str = "USD") -> Self:
        """Create money from decimal amount in major units.

        Rounds half-up to the smallest currency unit.
        """
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return cls(amount_cents=cents, currency=currency)

    def to_decimal(self) -> Decimal:
        """Convert to decimal amount in major units."""
        return (Decimal(self.amount_cents) / 100).quantize(Decimal("0.01"))

    def percent(self, rate: Decimal) -> "Money":
        """Apply a rate (e.g. Decimal("0.15")), rounding half-up to the cent."""
        cents = (Decimal(self.amount_cents) * rate).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return Money(amount_cents=int(cents), currency=self.currency)

    def __add__(self, other: "Money") -> "Money":
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(
            amount_cents=self.amount_cents + other.amount_cents,
            currency=self.currency,
        )

    def __mul__(self, quantity: int) -> "Money":
        return Money(
            amount_cents=self.amount_cents * quantity,
            currency=self.currency,
        )

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def __str__(self) -> str:
        """Return formatted string representation (e.g., '$12.99 USD')."""
        symbol = {"USD": "$", "EUR": "€", "GBP": "£"}.get(self.currency, "")
        return f"{symbol}{self.to_decimal():.2f} {self.currency}"

    def is_zero(self) -> bool:
        """Check if amount is zero."""
        return self.amount_cents == 0


# ============================================================================
# Shipping Address
# ============================================================================


@dataclass(frozen=True)
class ShippingAddress(ValueObject):
    """Destination of an order.

    Attributes:
        street: Street and house number.
        city: City name.
        postal_code: Postal/ZIP code.
        country: Country name or ISO code, as entered by the shopper.
    """

    street: str
    city: str
    postal_code: str
    country: str

    def __post_init__(self) -> None:
        for field_name in ("street", "city", "postal_code", "country"):
            value = getattr(self, field_name)
            if not value or not value.strip():
                raise InvalidAddressError(field_name)
            object.__setattr__(self, field_name, value.strip())

    def to_dict(self) -> dict[str, str]:
        """Serialize for storage in a JSON column."""
        return {
            "street": self.street,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> Self:
        """Rebuild an address stored with to_dict."""
        return cls(
            street=data["street"],
            city=data["city"],
            postal_code=data["postal_code"],
            country=data["country"],
        )


# ============================================================================
# Identity
# ============================================================================


@dataclass(frozen=True)
class Identity(ValueObject):
    """The authenticated caller, resolved from an opaque bearer token.

    Attributes:
        user_id: Purchasing identity reference.
        is_admin: Whether the caller may oversee all orders.
    """

    user_id: str
    is_admin: bool = False

    def can_access(self, owner_id: str) -> bool:
        """Check if this identity may read or pay an order owned by owner_id."""
        return self.is_admin or self.user_id == owner_id
