"""Tests for the in-memory inventory ledger."""

import asyncio

import pytest

from storefront.application.inventory import InMemoryInventoryLedger
from storefront.domain import InsufficientStockError, Money, Product, ProductNotFoundError
from storefront.domain.exceptions import InvalidQuantityError


@pytest.fixture
def stock() -> InMemoryInventoryLedger:
    ledger = InMemoryInventoryLedger()
    ledger.add_product(Product(id="P1", name="Widget", price=Money(1000), stock_count=5))
    ledger.add_product(Product(id="LAST", name="Last One", price=Money(4000), stock_count=1))
    return ledger


@pytest.mark.asyncio
async def test_reserve_takes_stock_and_returns_snapshot(stock) -> None:
    product = await stock.reserve("P1", 2)

    assert product.price == Money(1000)
    assert product.stock_count == 3
    assert (await stock.get_product("P1")).stock_count == 3


@pytest.mark.asyncio
async def test_snapshot_is_detached_from_ledger(stock) -> None:
    product = await stock.reserve("P1", 1)
    product.stock_count = 100

    assert (await stock.get_product("P1")).stock_count == 4


@pytest.mark.asyncio
async def test_insufficient_stock_takes_nothing(stock) -> None:
    with pytest.raises(InsufficientStockError) as exc_info:
        await stock.reserve("P1", 6)

    assert exc_info.value.details == {"product_id": "P1", "requested": 6, "available": 5}
    assert (await stock.get_product("P1")).stock_count == 5


@pytest.mark.asyncio
async def test_unknown_product(stock) -> None:
    with pytest.raises(ProductNotFoundError):
        await stock.reserve("NOPE", 1)
    with pytest.raises(ProductNotFoundError):
        await stock.get_product("NOPE")


@pytest.mark.asyncio
async def test_non_positive_quantity_rejected(stock) -> None:
    with pytest.raises(InvalidQuantityError):
        await stock.reserve("P1", 0)


@pytest.mark.asyncio
async def test_release_and_restock(stock) -> None:
    await stock.reserve("P1", 2)
    await stock.release("P1", 2)
    await stock.restock("P1", 10)

    assert (await stock.get_product("P1")).stock_count == 15


@pytest.mark.asyncio
async def test_concurrent_reservations_of_last_unit(stock) -> None:
    """Exactly one of two concurrent reservations of the last unit wins."""
    results = await asyncio.gather(
        stock.reserve("LAST", 1),
        stock.reserve("LAST", 1),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, Product)]
    failures = [r for r in results if isinstance(r, InsufficientStockError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert (await stock.get_product("LAST")).stock_count == 0


@pytest.mark.asyncio
async def test_many_concurrent_reservations_never_oversell(stock) -> None:
    results = await asyncio.gather(
        *(stock.reserve("P1", 2) for _ in range(5)),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, Product)]
    assert len(successes) == 2
    assert (await stock.get_product("P1")).stock_count == 1
