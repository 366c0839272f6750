"""Payment value objects shared by the gateways and the order model.

The two provider families are unified by the outcome of starting a
payment: a SynchronousResult carries a confirmation known within the
request, a PendingConfirmation carries an invoice whose confirmation
arrives later through a webhook.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Self

from storefront.domain.base import ValueObject
from storefront.domain.value_objects import Money, OrderId


@dataclass(frozen=True)
class PaymentConfirmation(ValueObject):
    """Opaque receipt from a payment provider proving a settlement.

    Two confirmations are the same receipt when provider and reference
    match; status and raw payload may differ between redeliveries.

    Attributes:
        provider: Provider name (e.g. 'stripe', 'bitpay').
        reference: Provider-side identifier (payment intent id, invoice id).
        status: Provider status string at confirmation time.
        raw: Provider payload kept for auditing.
    """

    provider: str
    reference: str
    status: str = "succeeded"
    raw: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def same_receipt(self, other: "PaymentConfirmation") -> bool:
        """Check whether other proves the same settlement."""
        return self.provider == other.provider and self.reference == other.reference

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage in a JSON column."""
        return {
            "provider": self.provider,
            "reference": self.reference,
            "status": self.status,
            "raw": self.raw,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Rebuild a confirmation stored with to_dict."""
        return cls(
            provider=data["provider"],
            reference=data["reference"],
            status=data.get("status", "succeeded"),
            raw=data.get("raw") or {},
        )


@dataclass(frozen=True)
class InvoiceHandle(ValueObject):
    """An open invoice the shopper is redirected to.

    Attributes:
        invoice_id: Provider invoice identifier.
        url: Hosted payment page.
        status: Provider invoice status at creation ('new').
        expires_at: When the provider stops accepting payment.
    """

    invoice_id: str
    url: str
    status: str = "new"
    expires_at: datetime | None = None


@dataclass(frozen=True)
class PaymentRequest(ValueObject):
    """Everything a gateway needs to start a payment for an order."""

    order_id: OrderId
    amount: Money
    payment_currency: str | None = None
    payment_token: str | None = None
    notify_url: str | None = None
    redirect_url: str | None = None
    buyer_email: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class SynchronousResult(ValueObject):
    """Payment settled within the request."""

    confirmation: PaymentConfirmation


@dataclass(frozen=True)
class PendingConfirmation(ValueObject):
    """Payment will be confirmed later by a provider callback."""

    invoice: InvoiceHandle


PaymentOutcome = SynchronousResult | PendingConfirmation


class CallbackStatus(str, Enum):
    """Settlement status reported by a provider callback."""

    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"
    PENDING = "pending"


@dataclass(frozen=True)
class ProviderCallback(ValueObject):
    """A verified provider callback reduced to what reconciliation needs."""

    order_id: str
    status: CallbackStatus
    confirmation: PaymentConfirmation
