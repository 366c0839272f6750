"""Inventory ledger.

The ledger is the only writer of stock counts. A reservation is a single
atomic conditional decrement: it either takes all the requested units or
none of them, so stock can never go negative.
"""

import asyncio
from collections import defaultdict
from dataclasses import replace
from typing import Protocol

import structlog

from storefront.domain.entities import Product
from storefront.domain.exceptions import InvalidQuantityError, ProductNotFoundError
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


class InventoryLedger(Protocol):
    """Stock store used by checkout."""

    async def get_product(self, product_id: str) -> Product:
        """Read a product, raising ProductNotFoundError if missing."""
        ...

    async def reserve(self, product_id: str, quantity: int) -> Product:
        """Atomically take quantity units.

        Returns:
            The product as read at reservation time, for price snapshots.

        Raises:
            ProductNotFoundError: If the product does not exist.
            InsufficientStockError: If fewer than quantity units are in stock.
        """
        ...

    async def release(self, product_id: str, quantity: int) -> None:
        """Return quantity units taken by an earlier reservation."""
        ...

    async def restock(self, product_id: str, quantity: int) -> None:
        """Add units from a merchandising restock."""
        ...


# ============================================================================
# In-Memory Ledger
# ============================================================================


class InMemoryInventoryLedger:
    """In-memory ledger with one lock per product.

    Reads and the decrement happen under the product's lock, so two
    concurrent reservations of the last unit cannot both succeed.
    """

    def __init__(self) -> None:
        self._products: dict[str, Product] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def add_product(self, product: Product) -> None:
        """Register or replace a product (catalog seeding)."""
        self._products[product.id] = replace(product)

    async def get_product(self, product_id: str) -> Product:
        product = self._products.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return replace(product)

    async def reserve(self, product_id: str, quantity: int) -> Product:
        if quantity <= 0:
            raise InvalidQuantityError(quantity, product_id)

        async with self._locks[product_id]:
            product = self._products.get(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            # Yield while holding the lock, as a database round trip would
            await asyncio.sleep(0)
            product.take(quantity)

            logger.debug(
                "Stock reserved",
                product_id=product_id,
                quantity=quantity,
                remaining=product.stock_count,
            )
            return replace(product)

    async def release(self, product_id: str, quantity: int) -> None:
        async with self._locks[product_id]:
            product = self._products.get(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            product.put_back(quantity)

            logger.debug(
                "Stock released",
                product_id=product_id,
                quantity=quantity,
                remaining=product.stock_count,
            )

    async def restock(self, product_id: str, quantity: int) -> None:
        await self.release(product_id, quantity)
        logger.info("Product restocked", product_id=product_id, quantity=quantity)


# Global ledger instance
_inventory_ledger: InventoryLedger | None = None


def _build_inventory_ledger() -> InventoryLedger:
    if settings.use_database:
        from storefront.infrastructure.sql_repositories import SqlInventoryLedger

        return SqlInventoryLedger()
    return InMemoryInventoryLedger()


def get_inventory_ledger() -> InventoryLedger:
    """Get inventory ledger singleton."""
    global _inventory_ledger
    if _inventory_ledger is None:
        _inventory_ledger = _build_inventory_ledger()
    return _inventory_ledger


def reset_inventory_ledger() -> None:
    """Reset inventory ledger (for testing)."""
    global _inventory_ledger
    _inventory_ledger = _build_inventory_ledger()
