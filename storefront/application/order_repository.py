"""Order repository.

Persists orders with their lines and applies the few mutations an order
accepts after creation. Every mutation runs as one read-modify-write on
a single order, serialized per order, so two confirmations racing for
the same order are applied one after the other.
"""

import asyncio
import copy
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime
from typing import Protocol, TypeVar

import structlog

from storefront.domain.entities import Order, OrderLine
from storefront.domain.exceptions import OrderNotFoundError
from storefront.domain.payments import InvoiceHandle, PaymentConfirmation
from storefront.domain.pricing import PriceBreakdown
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import OrderId, PaymentMethod, ShippingAddress
from storefront.infrastructure.config import settings

logger = structlog.get_logger()

R = TypeVar("R")


def log_domain_events(order: Order) -> None:
    """Log and clear the events an order recorded since the last write."""
    for event in order.collect_events():
        logger.info(
            "Domain event",
            event_type=event.event_type,
            order_id=event.order_id,
            **event.log_fields(),
        )


class OrderRepository(Protocol):
    """Order store used by checkout, reconciliation and expiry."""

    async def create_order(
        self,
        owner_id: str,
        lines: list[OrderLine],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        payment_currency: str,
        pricing: PriceBreakdown,
    ) -> Order:
        """Persist a new order with all its lines in one write."""
        ...

    async def find_by_id(self, order_id: OrderId) -> Order | None: ...

    async def find_by_owner(self, owner_id: str) -> list[Order]:
        """Orders of one owner, newest first."""
        ...

    async def find_all(self) -> list[Order]:
        """All orders, newest first."""
        ...

    async def find_awaiting_payment(self, created_before: datetime) -> list[Order]:
        """Unpaid orders created before the given time."""
        ...

    async def mark_paid(
        self, order_id: OrderId, confirmation: PaymentConfirmation, paid_at: datetime
    ) -> Order:
        """Atomically apply a payment confirmation.

        Redundant confirmations leave the order untouched.

        Raises:
            OrderNotFoundError: If the order does not exist.
            ConflictingConfirmationError: If paid with a different receipt.
            InvalidStateTransitionError: If the order is no longer payable.
        """
        ...

    async def mark_delivered(self, order_id: OrderId, delivered_at: datetime) -> Order: ...

    async def attach_invoice(self, order_id: OrderId, invoice: InvoiceHandle) -> Order: ...

    async def mark_expired(self, order_id: OrderId, expired_at: datetime) -> Order: ...


# ============================================================================
# In-Memory Repository
# ============================================================================


class InMemoryOrderRepository:
    """In-memory order store.

    Stores and returns copies, so an order only changes through the
    repository's own mutations.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_order(
        self,
        owner_id: str,
        lines: list[OrderLine],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        payment_currency: str,
        pricing: PriceBreakdown,
    ) -> Order:
        order = Order.place(
            owner_id=owner_id,
            lines=lines,
            shipping_address=shipping_address,
            payment_method=payment_method,
            payment_currency=payment_currency,
            pricing=pricing,
        )
        log_domain_events(order)
        self._orders[str(order.id)] = copy.deepcopy(order)
        return order

    async def find_by_id(self, order_id: OrderId) -> Order | None:
        order = self._orders.get(str(order_id))
        return copy.deepcopy(order) if order else None

    async def find_by_owner(self, owner_id: str) -> list[Order]:
        orders = [o for o in self._orders.values() if o.owner_id == owner_id]
        return self._newest_first(orders)

    async def find_all(self) -> list[Order]:
        return self._newest_first(list(self._orders.values()))

    async def find_awaiting_payment(self, created_before: datetime) -> list[Order]:
        orders = [
            o
            for o in self._orders.values()
            if o.status == OrderStatus.AWAITING_PAYMENT and o.created_at < created_before
        ]
        orders.sort(key=lambda o: o.created_at)
        return [copy.deepcopy(o) for o in orders]

    async def mark_paid(
        self, order_id: OrderId, confirmation: PaymentConfirmation, paid_at: datetime
    ) -> Order:
        return await self._mutate(order_id, lambda o: o.mark_paid(confirmation, paid_at))

    async def mark_delivered(self, order_id: OrderId, delivered_at: datetime) -> Order:
        return await self._mutate(order_id, lambda o: o.mark_delivered(delivered_at))

    async def attach_invoice(self, order_id: OrderId, invoice: InvoiceHandle) -> Order:
        return await self._mutate(order_id, lambda o: o.attach_invoice(invoice))

    async def mark_expired(self, order_id: OrderId, expired_at: datetime) -> Order:
        return await self._mutate(order_id, lambda o: o.expire(expired_at))

    async def _mutate(self, order_id: OrderId, change: Callable[[Order], R]) -> Order:
        key = str(order_id)
        async with self._locks[key]:
            stored = self._orders.get(key)
            if stored is None:
                raise OrderNotFoundError(key)

            order = copy.deepcopy(stored)
            change(order)
            if order.version != stored.version:
                log_domain_events(order)
                self._orders[key] = copy.deepcopy(order)
            return order

    @staticmethod
    def _newest_first(orders: list[Order]) -> list[Order]:
        # Ties keep insertion order, so reversing puts the latest first
        ordered = sorted(orders, key=lambda o: o.created_at)
        return [copy.deepcopy(o) for o in reversed(ordered)]


# Global repository instance
_order_repo: OrderRepository | None = None


def _build_order_repository() -> OrderRepository:
    if settings.use_database:
        from storefront.infrastructure.sql_repositories import SqlOrderRepository

        return SqlOrderRepository()
    return InMemoryOrderRepository()


def get_order_repository() -> OrderRepository:
    """Get order repository singleton."""
    global _order_repo
    if _order_repo is None:
        _order_repo = _build_order_repository()
    return _order_repo


def reset_order_repository() -> None:
    """Reset order repository (for testing)."""
    global _order_repo
    _order_repo = _build_order_repository()
