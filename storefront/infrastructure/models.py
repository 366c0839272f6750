"""SQLAlchemy models for database tables.

Provides ORM models for products, orders, order lines and the webhook
event log.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from storefront.infrastructure.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Product Model
# ============================================================================


class ProductModel(Base):
    """Product stock and price, as seen by checkout.

    stock_count is only changed through the inventory ledger's
    conditional update.
    """

    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock_count >= 0", name="ck_products_stock_non_negative"),)

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    stock_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    Order and its lines are written in one transaction and never deleted.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="awaiting_payment", index=True)
    payment_method = Column(String(20), nullable=False)
    payment_currency = Column(String(8), nullable=False, default="USD")

    # Totals
    currency = Column(String(3), nullable=False, default="USD")
    items_cents = Column(Integer, nullable=False)
    shipping_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)

    shipping_address = Column(JSONType, nullable=False)

    # Payment
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_confirmation = Column(JSONType, nullable=True)
    invoice_id = Column(String(100), nullable=True, index=True)
    invoice_url = Column(Text, nullable=True)

    # Fulfillment
    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # Relationships
    lines = relationship(
        "OrderLineModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineModel.position",
        lazy="selectin",
    )


class OrderLineModel(Base):
    """Order line model. Owned by its order."""

    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    order = relationship("OrderModel", back_populates="lines")


# ============================================================================
# Webhook Event Log
# ============================================================================


class WebhookEventModel(Base):
    """Every provider callback received, keyed by payload hash."""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(32), nullable=False)
    payload_hash = Column(String(64), nullable=False, index=True)
    order_id = Column(String(64), nullable=True, index=True)
    status = Column(String(20), nullable=False)
    reason = Column(String(64), nullable=True)
    payload = Column(JSONType, nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider": self.provider,
            "payload_hash": self.payload_hash,
            "order_id": self.order_id,
            "status": self.status,
            "reason": self.reason,
            "received_at": self.received_at.isoformat() if self.received_at else None,
        }
