"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from storefront.application.checkout_service import (
    CartLine,
    CheckoutPayment,
    CheckoutService,
    get_checkout_service,
)
from storefront.application.expiry_service import (
    OrderExpiryService,
    get_expiry_service,
)
from storefront.application.inventory import (
    InMemoryInventoryLedger,
    InventoryLedger,
    get_inventory_ledger,
)
from storefront.application.order_repository import (
    InMemoryOrderRepository,
    OrderRepository,
    get_order_repository,
)
from storefront.application.webhook_service import (
    CallbackResult,
    WebhookService,
    get_webhook_service,
)

__all__ = [
    "CartLine",
    "CheckoutPayment",
    "CheckoutService",
    "get_checkout_service",
    "OrderExpiryService",
    "get_expiry_service",
    "InMemoryInventoryLedger",
    "InventoryLedger",
    "get_inventory_ledger",
    "InMemoryOrderRepository",
    "OrderRepository",
    "get_order_repository",
    "CallbackResult",
    "WebhookService",
    "get_webhook_service",
]
