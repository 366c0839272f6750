"""Abandoned order expiry.

Orders left awaiting payment longer than the payment window are expired
and their stock is released back to the ledger. Expiry and payment are
both state transitions out of awaiting-payment, applied through the
repository, so an order is either paid or expired, never both.
"""

import asyncio
from datetime import datetime, timedelta

import structlog

from storefront.application.inventory import InventoryLedger, get_inventory_ledger
from storefront.application.order_repository import OrderRepository, get_order_repository
from storefront.domain.base import utcnow
from storefront.domain.entities import Order
from storefront.domain.exceptions import InvalidStateTransitionError
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


class OrderExpiryService:
    """Expires orders whose payment window has passed."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        ledger: InventoryLedger | None = None,
        payment_ttl: timedelta | None = None,
    ) -> None:
        self.order_repo = order_repo or get_order_repository()
        self.ledger = ledger or get_inventory_ledger()
        self.payment_ttl = payment_ttl or timedelta(minutes=settings.order_payment_ttl_minutes)

    async def expire_abandoned(self, now: datetime | None = None) -> list[Order]:
        """Expire every order awaiting payment past its window.

        Args:
            now: Reference time, defaults to the current time.

        Returns:
            Orders expired by this run.
        """
        now = now or utcnow()
        candidates = await self.order_repo.find_awaiting_payment(now - self.payment_ttl)
        expired: list[Order] = []

        for candidate in candidates:
            try:
                order = await self.order_repo.mark_expired(candidate.id, now)
            except InvalidStateTransitionError:
                # Paid between the scan and the update
                logger.info("Order no longer awaiting payment", order_id=str(candidate.id))
                continue

            unreleased = await self._release_lines(order)
            expired.append(order)

            logger.info(
                "Abandoned order expired",
                order_id=str(order.id),
                created_at=order.created_at.isoformat(),
                released_units=order.item_count - unreleased,
            )

        return expired

    async def _release_lines(self, order: Order) -> int:
        """Give back the stock of every line, returning the units not released.

        The order is already expired and will not be swept again, so one
        failing line must not stop the others.
        """
        unreleased = 0
        for line in order.lines:
            try:
                await self.ledger.release(line.product_id, line.quantity)
            except Exception as e:
                unreleased += line.quantity
                logger.error(
                    "Failed to release stock of expired order",
                    order_id=str(order.id),
                    product_id=line.product_id,
                    quantity=line.quantity,
                    error=str(e),
                )
        return unreleased

    async def run_forever(self, interval_seconds: float) -> None:
        """Sweep periodically until cancelled."""
        while True:
            try:
                await self.expire_abandoned()
            except Exception as e:
                logger.error("Order expiry sweep failed", error=str(e))
            await asyncio.sleep(interval_seconds)


def get_expiry_service() -> OrderExpiryService:
    """Get order expiry service instance."""
    return OrderExpiryService()
