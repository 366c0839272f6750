"""Shared fixtures.

Payment gateways are the real gateway classes with only their HTTP calls
replaced, so signature verification and callback parsing are exercised
as in production.
"""

import hashlib
import hmac
import time

import pytest

from storefront.application.checkout_service import CheckoutService
from storefront.application.inventory import (
    InMemoryInventoryLedger,
    get_inventory_ledger,
    reset_inventory_ledger,
)
from storefront.application.order_repository import (
    InMemoryOrderRepository,
    get_order_repository,
    reset_order_repository,
)
from storefront.application.webhook_service import (
    InMemoryWebhookEventLog,
    WebhookService,
    reset_webhook_service,
)
from storefront.domain import (
    Identity,
    InvoiceHandle,
    Money,
    PaymentConfirmation,
    PaymentDeclinedError,
    PricingPolicy,
    Product,
    ShippingAddress,
)
from storefront.infrastructure.identity import TokenVerifier
from storefront.infrastructure.payment_gateways import (
    CardPaymentGateway,
    InvoicePaymentGateway,
    PaymentGatewayRegistry,
    set_payment_gateways,
)

CARD_WEBHOOK_SECRET = "whsec_test_secret"
INVOICE_WEBHOOK_SECRET = "test-invoice-secret"


# ============================================================================
# Stub Gateways
# ============================================================================


class StubCardGateway(CardPaymentGateway):
    """Card gateway that settles charges without calling the provider."""

    def __init__(self) -> None:
        super().__init__(
            api_url="https://card.test",
            secret_key="sk_test",
            webhook_secret=CARD_WEBHOOK_SECRET,
        )
        self.charges: list[tuple[Money, str, str | None]] = []
        self.error: Exception | None = None
        self.settled: dict[str, PaymentConfirmation] = {}

    async def charge_synchronously(
        self, amount, payment_token, order_id=None, description=None
    ) -> PaymentConfirmation:
        if self.error:
            raise self.error
        self.charges.append((amount, payment_token, order_id))
        return PaymentConfirmation(
            provider=self.provider,
            reference=f"pi_{len(self.charges)}",
            status="succeeded",
            raw={
                "amount": amount.amount_cents,
                "currency": amount.currency.lower(),
                "order_id": order_id,
            },
        )

    async def retrieve_charge(self, reference: str) -> PaymentConfirmation:
        if reference not in self.settled:
            raise PaymentDeclinedError(self.provider, "Payment not found")
        return self.settled[reference]


class StubInvoiceGateway(InvoicePaymentGateway):
    """Invoice gateway that opens invoices without calling the provider."""

    def __init__(self) -> None:
        super().__init__(
            api_url="https://invoice.test",
            token="test-token",
            webhook_secret=INVOICE_WEBHOOK_SECRET,
            accepted_currencies=["BTC", "BCH", "ETH", "USD"],
        )
        self.invoices: list[dict] = []
        self.error: Exception | None = None

    async def create_async_invoice(
        self,
        amount,
        order_id,
        notify_url=None,
        redirect_url=None,
        buyer_email=None,
        payment_currency=None,
    ) -> InvoiceHandle:
        if self.error:
            raise self.error
        self.invoices.append(
            {
                "amount": amount,
                "order_id": order_id,
                "notify_url": notify_url,
                "payment_currency": payment_currency,
            }
        )
        invoice_id = f"inv_{len(self.invoices)}"
        return InvoiceHandle(invoice_id=invoice_id, url=f"https://pay.test/i/{invoice_id}")


# ============================================================================
# Signing Helpers
# ============================================================================


def sign_invoice_payload(body: bytes, secret: str = INVOICE_WEBHOOK_SECRET) -> str:
    """Generate the 'sha256=<hex>' header for an invoice callback."""
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def sign_card_payload(
    body: bytes, secret: str = CARD_WEBHOOK_SECRET, timestamp: int | None = None
) -> str:
    """Generate the 't=<ts>,v1=<hex>' header for a card callback."""
    ts = str(timestamp if timestamp is not None else int(time.time()))
    digest = hmac.new(secret.encode(), ts.encode() + b"." + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture
def sign_invoice():
    return sign_invoice_payload


@pytest.fixture
def sign_card():
    return sign_card_payload


# ============================================================================
# Global State
# ============================================================================


@pytest.fixture(autouse=True)
def reset_state():
    """Fresh in-memory stores and gateways for every test."""
    reset_inventory_ledger()
    reset_order_repository()
    reset_webhook_service()
    set_payment_gateways(None)
    yield
    reset_inventory_ledger()
    reset_order_repository()
    reset_webhook_service()
    set_payment_gateways(None)


# ============================================================================
# Domain Fixtures
# ============================================================================


def make_products() -> list[Product]:
    return [
        Product(id="P1", name="Widget", price=Money(1000), stock_count=5),
        Product(id="P2", name="Gadget", price=Money(2500), stock_count=3),
        Product(id="LAST", name="Last One", price=Money(4000), stock_count=1),
        Product(id="BIG", name="Big Item", price=Money(15000), stock_count=2),
    ]


@pytest.fixture
def address() -> ShippingAddress:
    return ShippingAddress(
        street="1 Main Street",
        city="Springfield",
        postal_code="12345",
        country="US",
    )


@pytest.fixture
def shopper() -> Identity:
    return Identity(user_id="user-1")


@pytest.fixture
def other_shopper() -> Identity:
    return Identity(user_id="user-2")


@pytest.fixture
def admin() -> Identity:
    return Identity(user_id="admin-1", is_admin=True)


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def card_gateway() -> StubCardGateway:
    return StubCardGateway()


@pytest.fixture
def invoice_gateway() -> StubInvoiceGateway:
    return StubInvoiceGateway()


@pytest.fixture
def gateways(card_gateway, invoice_gateway) -> PaymentGatewayRegistry:
    """Stub gateways, also installed as the application's registry."""
    registry = PaymentGatewayRegistry([card_gateway, invoice_gateway])
    set_payment_gateways(registry)
    return registry


@pytest.fixture
def ledger() -> InMemoryInventoryLedger:
    """Global in-memory ledger seeded with the test catalog."""
    ledger = get_inventory_ledger()
    for product in make_products():
        ledger.add_product(product)
    return ledger


@pytest.fixture
def order_repo() -> InMemoryOrderRepository:
    return get_order_repository()


@pytest.fixture
def checkout_service(ledger, order_repo, gateways) -> CheckoutService:
    return CheckoutService(
        ledger=ledger,
        order_repo=order_repo,
        gateways=gateways,
        pricing=PricingPolicy(),
        base_currency="USD",
        invoice_currencies=["BTC", "BCH", "ETH", "USD"],
    )


@pytest.fixture
def event_log() -> InMemoryWebhookEventLog:
    return InMemoryWebhookEventLog()


@pytest.fixture
def webhook_service(order_repo, gateways, event_log) -> WebhookService:
    return WebhookService(order_repo=order_repo, gateways=gateways, event_log=event_log)


# ============================================================================
# API Fixtures
# ============================================================================


@pytest.fixture
def token_for():
    """Build Authorization headers for an identity."""
    verifier = TokenVerifier()

    def _headers(identity: Identity) -> dict[str, str]:
        return {"Authorization": f"Bearer {verifier.issue(identity)}"}

    return _headers
