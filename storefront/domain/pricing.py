"""Order pricing: items subtotal, shipping tier and tax."""

from dataclasses import dataclass
from decimal import Decimal

from storefront.domain.base import ValueObject
from storefront.domain.value_objects import Money


@dataclass(frozen=True)
class PriceBreakdown(ValueObject):
    """Priced components of an order, fixed at creation."""

    items: Money
    shipping: Money
    tax: Money

    @property
    def total(self) -> Money:
        return self.items + self.shipping + self.tax


@dataclass(frozen=True)
class PricingPolicy(ValueObject):
    """Shipping tier and tax rate applied at checkout.

    Shipping is charged when the items subtotal is at or below the free
    shipping threshold. Tax is a flat rate on the items subtotal.

    Attributes:
        shipping_cents: Flat shipping charge below the threshold.
        free_shipping_threshold_cents: Subtotal above which shipping is free.
        tax_rate: Tax rate as a decimal fraction.
    """

    shipping_cents: int = 1000
    free_shipping_threshold_cents: int = 10000
    tax_rate: Decimal = Decimal("0.15")

    def price(self, items_subtotal: Money) -> PriceBreakdown:
        """Compute shipping, tax and total for an items subtotal."""
        if items_subtotal.amount_cents > self.free_shipping_threshold_cents:
            shipping = Money.zero(items_subtotal.currency)
        else:
            shipping = Money(self.shipping_cents, items_subtotal.currency)
        return PriceBreakdown(
            items=items_subtotal,
            shipping=shipping,
            tax=items_subtotal.percent(self.tax_rate),
        )
