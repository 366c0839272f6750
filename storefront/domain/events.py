"""Domain events for the order lifecycle.

Recorded by the Order aggregate and collected by the repositories after a
successful write, where they are logged for auditing.
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from storefront.domain.base import DomainEvent


@dataclass(frozen=True)
class OrderPlaced(DomainEvent):
    """Event raised when an order is persisted awaiting payment."""

    event_type: ClassVar[str] = "order.placed"

    owner_id: str = ""
    payment_method: str = ""
    total_cents: int = 0
    currency: str = "USD"
    line_count: int = 0

    def log_fields(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "payment_method": self.payment_method,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "line_count": self.line_count,
        }


@dataclass(frozen=True)
class OrderPaid(DomainEvent):
    """Event raised when a provider confirmation marks the order paid."""

    event_type: ClassVar[str] = "order.paid"

    provider: str = ""
    reference: str = ""

    def log_fields(self) -> dict[str, Any]:
        return {"provider": self.provider, "reference": self.reference}


@dataclass(frozen=True)
class OrderInvoiceOpened(DomainEvent):
    """Event raised when an invoice is opened for an order."""

    event_type: ClassVar[str] = "order.invoice_opened"

    invoice_id: str = ""

    def log_fields(self) -> dict[str, Any]:
        return {"invoice_id": self.invoice_id}


@dataclass(frozen=True)
class OrderDelivered(DomainEvent):
    """Event raised when an order is delivered."""

    event_type: ClassVar[str] = "order.delivered"


@dataclass(frozen=True)
class OrderExpired(DomainEvent):
    """Event raised when an abandoned order is expired and its stock released."""

    event_type: ClassVar[str] = "order.expired"

    released_units: int = 0

    def log_fields(self) -> dict[str, Any]:
        return {"released_units": self.released_units}
