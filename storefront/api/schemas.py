"""API schemas for the storefront API.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from storefront.domain.entities import Order
from storefront.domain.payments import InvoiceHandle
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import Money, PaymentMethod


# ============================================================================
# Common Schemas
# ============================================================================


class PriceSchema(BaseModel):
    """Price representation."""

    amount: int = Field(..., description="Amount in smallest currency unit (cents)")
    currency: str = Field(default="USD", description="Currency code")

    @classmethod
    def from_money(cls, money: Money) -> "PriceSchema":
        return cls(amount=money.amount_cents, currency=money.currency)


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(
        default_factory=dict, description="Additional error details"
    )
    request_id: str | None = Field(default=None, description="Request ID for correlation")


# ============================================================================
# Order Schemas
# ============================================================================


class OrderLineRequest(BaseModel):
    """A cart line to order."""

    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(..., description="Units to order, must be positive")


class ShippingAddressSchema(BaseModel):
    """Shipping address."""

    street: str = Field(..., description="Street and number")
    city: str = Field(..., description="City")
    postal_code: str = Field(..., description="Postal code")
    country: str = Field(..., description="Country")


class CreateOrderRequest(BaseModel):
    """Request to place an order and start its payment."""

    order_items: list[OrderLineRequest] = Field(..., description="Cart lines")
    shipping_address: ShippingAddressSchema
    payment_method: PaymentMethod = Field(..., description="card or crypto_invoice")
    payment_currency: str | None = Field(
        default=None,
        description="Settlement currency for invoices; card payments always use the base currency",
    )
    payment_token: str | None = Field(
        default=None, description="Card payment method token; omit to pay later"
    )
    buyer_email: str | None = Field(default=None, description="Pre-filled invoice email")


class PayOrderRequest(BaseModel):
    """Request to start (or retry) payment for an existing order."""

    payment_token: str | None = Field(default=None, description="Card payment method token")
    buyer_email: str | None = Field(default=None, description="Pre-filled invoice email")


class MarkPaidRequest(BaseModel):
    """Request to mark a card order paid with a client-side charge."""

    reference: str = Field(..., min_length=1, description="Provider payment reference")


class OrderLineSchema(BaseModel):
    """Order line snapshot."""

    product_id: str
    name: str
    quantity: int
    unit_price: PriceSchema
    line_total: PriceSchema


class PaymentResultSchema(BaseModel):
    """Provider receipt stored on a paid order."""

    provider: str
    reference: str
    status: str


class OrderResponse(BaseModel):
    """Order details."""

    id: str
    owner_id: str
    status: OrderStatus
    order_items: list[OrderLineSchema]
    shipping_address: ShippingAddressSchema
    payment_method: PaymentMethod
    payment_currency: str
    items_price: PriceSchema
    shipping_price: PriceSchema
    tax_price: PriceSchema
    total_price: PriceSchema
    is_paid: bool
    paid_at: datetime | None = None
    payment_result: PaymentResultSchema | None = None
    is_delivered: bool
    delivered_at: datetime | None = None
    invoice_url: str | None = None
    expired_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        confirmation = order.payment_confirmation
        return cls(
            id=str(order.id),
            owner_id=order.owner_id,
            status=order.status,
            order_items=[
                OrderLineSchema(
                    product_id=line.product_id,
                    name=line.product_name,
                    quantity=line.quantity,
                    unit_price=PriceSchema.from_money(line.unit_price),
                    line_total=PriceSchema.from_money(line.line_total),
                )
                for line in order.lines
            ],
            shipping_address=ShippingAddressSchema(**order.shipping_address.to_dict()),
            payment_method=order.payment_method,
            payment_currency=order.payment_currency,
            items_price=PriceSchema.from_money(order.pricing.items),
            shipping_price=PriceSchema.from_money(order.pricing.shipping),
            tax_price=PriceSchema.from_money(order.pricing.tax),
            total_price=PriceSchema.from_money(order.total_price),
            is_paid=order.is_paid,
            paid_at=order.paid_at,
            payment_result=(
                PaymentResultSchema(
                    provider=confirmation.provider,
                    reference=confirmation.reference,
                    status=confirmation.status,
                )
                if confirmation
                else None
            ),
            is_delivered=order.is_delivered,
            delivered_at=order.delivered_at,
            invoice_url=order.invoice_url,
            expired_at=order.expired_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class InvoiceSchema(BaseModel):
    """Invoice the shopper pays on the provider's hosted page."""

    invoice_id: str
    url: str
    status: str
    expires_at: datetime | None = None

    @classmethod
    def from_handle(cls, invoice: InvoiceHandle) -> "InvoiceSchema":
        return cls(
            invoice_id=invoice.invoice_id,
            url=invoice.url,
            status=invoice.status,
            expires_at=invoice.expires_at,
        )


class CheckoutResponse(BaseModel):
    """Order after placing it or starting its payment."""

    order: OrderResponse
    invoice: InvoiceSchema | None = None
    payment_url: str | None = Field(
        default=None, description="Where to send the shopper to pay, for invoices"
    )


class OrdersListResponse(BaseModel):
    """Orders, newest first."""

    items: list[OrderResponse]
    total: int


# ============================================================================
# Webhook Schemas
# ============================================================================


class WebhookResponse(BaseModel):
    """Response to a provider callback."""

    received: bool = Field(..., description="Whether the callback was accepted")
    duplicate: bool = Field(default=False, description="Whether it was delivered before")
