"""SQL-backed inventory ledger, order repository and webhook event log.

Stock is only ever changed with a conditional UPDATE so that concurrent
reservations are arbitrated by the database. Order mutations read the
row with SELECT ... FOR UPDATE and write it back in the same transaction.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.application.order_repository import log_domain_events
from storefront.domain.entities import Order, OrderLine, Product
from storefront.domain.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    OrderNotFoundError,
    ProductNotFoundError,
)
from storefront.domain.payments import InvoiceHandle, PaymentConfirmation
from storefront.domain.pricing import PriceBreakdown
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import Money, OrderId, PaymentMethod, ShippingAddress
from storefront.infrastructure.database import async_session_factory
from storefront.infrastructure.models import (
    OrderLineModel,
    OrderModel,
    ProductModel,
    WebhookEventModel,
)

logger = structlog.get_logger()


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# Inventory Ledger
# ============================================================================


class SqlInventoryLedger:
    """Inventory ledger over the products table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or async_session_factory

    @staticmethod
    def _to_domain(row: ProductModel) -> Product:
        return Product(
            id=row.id,
            name=row.name,
            price=Money(row.price_cents, row.currency),
            stock_count=row.stock_count,
        )

    async def add_product(self, product: Product) -> None:
        """Insert or replace a product (catalog seeding)."""
        async with self._session_factory() as session, session.begin():
            await session.merge(
                ProductModel(
                    id=product.id,
                    name=product.name,
                    price_cents=product.price.amount_cents,
                    currency=product.price.currency,
                    stock_count=product.stock_count,
                )
            )

    async def get_product(self, product_id: str) -> Product:
        async with self._session_factory() as session:
            row = await session.get(ProductModel, product_id)
            if row is None:
                raise ProductNotFoundError(product_id)
            return self._to_domain(row)

    async def reserve(self, product_id: str, quantity: int) -> Product:
        if quantity <= 0:
            raise InvalidQuantityError(quantity, product_id)

        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id, ProductModel.stock_count >= quantity)
                .values(stock_count=ProductModel.stock_count - quantity)
                .execution_options(synchronize_session=False)
            )
            row = await session.get(ProductModel, product_id, populate_existing=True)
            if row is None:
                raise ProductNotFoundError(product_id)
            if result.rowcount == 0:
                raise InsufficientStockError(product_id, quantity, row.stock_count)
            product = self._to_domain(row)

        logger.debug(
            "Stock reserved",
            product_id=product_id,
            quantity=quantity,
            remaining=product.stock_count,
        )
        return product

    async def release(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            raise InvalidQuantityError(quantity, product_id)

        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id)
                .values(stock_count=ProductModel.stock_count + quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ProductNotFoundError(product_id)

        logger.debug("Stock released", product_id=product_id, quantity=quantity)

    async def restock(self, product_id: str, quantity: int) -> None:
        await self.release(product_id, quantity)
        logger.info("Product restocked", product_id=product_id, quantity=quantity)


# ============================================================================
# Order Repository
# ============================================================================


def _order_to_domain(row: OrderModel) -> Order:
    currency = row.currency
    order = Order(
        id=OrderId.from_string(row.id),
        owner_id=row.owner_id,
        payment_method=PaymentMethod(row.payment_method),
        payment_currency=row.payment_currency,
        pricing=PriceBreakdown(
            items=Money(row.items_cents, currency),
            shipping=Money(row.shipping_cents, currency),
            tax=Money(row.tax_cents, currency),
        ),
        shipping_address=ShippingAddress.from_dict(row.shipping_address),
        lines=[
            OrderLine(
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=Money(line.unit_price_cents, line.currency),
            )
            for line in row.lines
        ],
        status=OrderStatus(row.status),
        is_paid=row.is_paid,
        paid_at=_aware(row.paid_at),
        payment_confirmation=(
            PaymentConfirmation.from_dict(row.payment_confirmation)
            if row.payment_confirmation
            else None
        ),
        is_delivered=row.is_delivered,
        delivered_at=_aware(row.delivered_at),
        invoice_id=row.invoice_id,
        invoice_url=row.invoice_url,
        expired_at=_aware(row.expired_at),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )
    return order


def _apply_state(row: OrderModel, order: Order) -> None:
    """Copy the mutable order fields onto its row."""
    row.status = order.status.value
    row.is_paid = order.is_paid
    row.paid_at = order.paid_at
    row.payment_confirmation = (
        order.payment_confirmation.to_dict() if order.payment_confirmation else None
    )
    row.is_delivered = order.is_delivered
    row.delivered_at = order.delivered_at
    row.invoice_id = order.invoice_id
    row.invoice_url = order.invoice_url
    row.expired_at = order.expired_at
    row.version = order.version
    row.updated_at = order.updated_at


class SqlOrderRepository:
    """Order repository over the orders and order_lines tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or async_session_factory

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
        row = OrderModel(
            id=str(order.id),
            owner_id=order.owner_id,
            payment_method=order.payment_method.value,
            payment_currency=order.payment_currency,
            currency=order.total_price.currency,
            items_cents=order.pricing.items.amount_cents,
            shipping_cents=order.pricing.shipping.amount_cents,
            tax_cents=order.pricing.tax.amount_cents,
            total_cents=order.total_price.amount_cents,
            shipping_address=order.shipping_address.to_dict(),
            created_at=order.created_at,
            lines=[
                OrderLineModel(
                    position=position,
                    product_id=line.product_id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price.amount_cents,
                    currency=line.unit_price.currency,
                )
                for position, line in enumerate(order.lines)
            ],
        )
        _apply_state(row, order)

        async with self._session_factory() as session, session.begin():
            session.add(row)

        log_domain_events(order)
        return order

    async def find_by_id(self, order_id: OrderId) -> Order | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderModel).where(OrderModel.id == str(order_id))
            )
            row = result.scalar_one_or_none()
            return _order_to_domain(row) if row else None

    async def find_by_owner(self, owner_id: str) -> list[Order]:
        return await self._find(
            select(OrderModel)
            .where(OrderModel.owner_id == owner_id)
            .order_by(OrderModel.created_at.desc())
        )

    async def find_all(self) -> list[Order]:
        return await self._find(select(OrderModel).order_by(OrderModel.created_at.desc()))

    async def find_awaiting_payment(self, created_before: datetime) -> list[Order]:
        return await self._find(
            select(OrderModel)
            .where(
                OrderModel.status == OrderStatus.AWAITING_PAYMENT.value,
                OrderModel.created_at < created_before,
            )
            .order_by(OrderModel.created_at)
        )

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

    async def _find(self, statement: Any) -> list[Order]:
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [_order_to_domain(row) for row in result.scalars().all()]

    async def _mutate(self, order_id: OrderId, change: Callable[[Order], Any]) -> Order:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                select(OrderModel).where(OrderModel.id == str(order_id)).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise OrderNotFoundError(str(order_id))

            order = _order_to_domain(row)
            before = order.version
            change(order)
            if order.version != before:
                _apply_state(row, order)

        log_domain_events(order)
        return order


# ============================================================================
# Webhook Event Log
# ============================================================================


class SqlWebhookEventLog:
    """Webhook event log over the webhook_events table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or async_session_factory

    async def seen(self, provider: str, payload_hash: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookEventModel.id)
                .where(
                    WebhookEventModel.provider == provider,
                    WebhookEventModel.payload_hash == payload_hash,
                    WebhookEventModel.status == "accepted",
                )
                .limit(1)
            )
            return result.first() is not None

    async def record(
        self,
        provider: str,
        payload_hash: str,
        status: str,
        order_id: str | None = None,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                WebhookEventModel(
                    provider=provider,
                    payload_hash=payload_hash,
                    order_id=order_id,
                    status=status,
                    reason=reason,
                    payload=payload,
                )
            )

    async def list_for_order(self, order_id: str) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookEventModel)
                .where(WebhookEventModel.order_id == order_id)
                .order_by(WebhookEventModel.id)
            )
            return [row.to_dict() for row in result.scalars().all()]
