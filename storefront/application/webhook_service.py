"""Payment webhook reconciliation.

Handles provider callbacks with:
- Signature verification by the provider's own gateway
- Parsing into a provider-neutral callback
- Order lookup by the order id echoed back by the provider
- Idempotent application of confirmations (redeliveries are no-ops)
- An event log of every delivery, used to flag duplicates
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

import structlog

from storefront.application.order_repository import OrderRepository, get_order_repository
from storefront.domain.base import utcnow
from storefront.domain.exceptions import (
    ConflictingConfirmationError,
    InvalidStateTransitionError,
)
from storefront.domain.payments import CallbackStatus
from storefront.domain.value_objects import OrderId
from storefront.infrastructure.config import settings
from storefront.infrastructure.payment_gateways import (
    CallbackPayloadError,
    PaymentGatewayRegistry,
    get_payment_gateways,
)

logger = structlog.get_logger()


class RejectionReason(str, Enum):
    """Why a callback was not applied."""

    UNKNOWN_PROVIDER = "unknown_provider"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED_PAYLOAD = "malformed_payload"
    UNKNOWN_ORDER = "unknown_order"
    CONFLICTING_CONFIRMATION = "conflicting_confirmation"
    ORDER_EXPIRED = "order_expired"


@dataclass
class CallbackResult:
    """Result of handling one provider callback.

    Attributes:
        accepted: Whether the callback was valid and applied (or a no-op).
        reason: Rejection reason, when not accepted.
        order_id: Order the callback refers to, once known.
        status: Settlement status reported by the provider.
        duplicate: Whether the same payload was accepted before.
    """

    accepted: bool
    reason: RejectionReason | None = None
    order_id: str | None = None
    status: CallbackStatus | None = None
    duplicate: bool = False

    @classmethod
    def rejected(cls, reason: RejectionReason, order_id: str | None = None) -> "CallbackResult":
        return cls(accepted=False, reason=reason, order_id=order_id)


class WebhookEventLog(Protocol):
    """Record of every callback delivery."""

    async def seen(self, provider: str, payload_hash: str) -> bool:
        """Whether this exact payload was accepted before."""
        ...

    async def record(
        self,
        provider: str,
        payload_hash: str,
        status: str,
        order_id: str | None = None,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None: ...

    async def list_for_order(self, order_id: str) -> list[dict[str, Any]]: ...


class InMemoryWebhookEventLog:
    """In-memory webhook event log."""

    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []

    async def seen(self, provider: str, payload_hash: str) -> bool:
        return any(
            e["provider"] == provider
            and e["payload_hash"] == payload_hash
            and e["status"] == "accepted"
            for e in self._events
        )

    async def record(
        self,
        provider: str,
        payload_hash: str,
        status: str,
        order_id: str | None = None,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self._events.append(
            {
                "provider": provider,
                "payload_hash": payload_hash,
                "order_id": order_id,
                "status": status,
                "reason": reason,
                "payload": payload,
                "received_at": datetime.now(timezone.utc),
            }
        )

    async def list_for_order(self, order_id: str) -> list[dict[str, Any]]:
        return [
            {k: v for k, v in e.items() if k != "payload"}
            for e in self._events
            if e["order_id"] == order_id
        ]


class WebhookService:
    """Service reconciling provider callbacks with orders.

    Handles:
    - Signature verification
    - Duplicate detection
    - Marking orders paid on confirmed callbacks
    """

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        gateways: PaymentGatewayRegistry | None = None,
        event_log: WebhookEventLog | None = None,
    ) -> None:
        """Initialize webhook service.

        Args:
            order_repo: Order repository.
            gateways: Gateways, looked up by provider name.
            event_log: Event log for duplicate detection and auditing.
        """
        self.order_repo = order_repo or get_order_repository()
        self.gateways = gateways or get_payment_gateways()
        self.event_log = event_log or InMemoryWebhookEventLog()

    async def handle_provider_callback(
        self,
        provider: str,
        raw_payload: bytes,
        signature: str | None,
        correlation_id: str | None = None,
    ) -> CallbackResult:
        """Verify a callback and apply it to its order.

        Only confirmed callbacks change an order; other statuses are
        acknowledged and logged. Storage failures propagate so that the
        provider retries the delivery.

        Args:
            provider: Provider name from the callback URL.
            raw_payload: Request body exactly as received.
            signature: Signature header value.
            correlation_id: Request correlation ID.

        Returns:
            Accepted or rejected result with its reason.
        """
        payload_hash = hashlib.sha256(raw_payload).hexdigest()
        log = logger.bind(provider=provider, payload_hash=payload_hash, correlation_id=correlation_id)

        gateway = self.gateways.for_provider(provider)
        if gateway is None:
            log.warning("Callback for unknown provider")
            return CallbackResult.rejected(RejectionReason.UNKNOWN_PROVIDER)

        if not gateway.verify_webhook_signature(raw_payload, signature):
            await self.event_log.record(
                provider, payload_hash, "rejected", reason=RejectionReason.INVALID_SIGNATURE.value
            )
            return CallbackResult.rejected(RejectionReason.INVALID_SIGNATURE)

        try:
            callback = gateway.parse_callback(raw_payload)
        except CallbackPayloadError as e:
            log.warning("Malformed callback payload", error=str(e))
            return await self._reject(provider, payload_hash, RejectionReason.MALFORMED_PAYLOAD)

        order_id = callback.order_id
        log = log.bind(order_id=order_id, status=callback.status.value)
        try:
            order = await self.order_repo.find_by_id(OrderId.from_string(order_id))
        except ValueError:
            order = None
        if order is None:
            log.warning("Callback for unknown order")
            return await self._reject(
                provider, payload_hash, RejectionReason.UNKNOWN_ORDER, order_id
            )

        duplicate = await self.event_log.seen(provider, payload_hash)

        if callback.status is CallbackStatus.CONFIRMED:
            try:
                await self.order_repo.mark_paid(order.id, callback.confirmation, utcnow())
            except ConflictingConfirmationError as e:
                log.error("Conflicting payment confirmation", **e.details)
                return await self._reject(
                    provider, payload_hash, RejectionReason.CONFLICTING_CONFIRMATION, order_id
                )
            except InvalidStateTransitionError:
                log.error("Confirmation for an order no longer payable")
                return await self._reject(
                    provider, payload_hash, RejectionReason.ORDER_EXPIRED, order_id
                )
            log.info("Payment confirmed by provider", duplicate=duplicate)
        else:
            log.info("Payment callback acknowledged", duplicate=duplicate)

        await self.event_log.record(
            provider,
            payload_hash,
            "accepted",
            order_id=order_id,
            payload=callback.confirmation.raw,
        )
        return CallbackResult(
            accepted=True,
            order_id=order_id,
            status=callback.status,
            duplicate=duplicate,
        )

    async def _reject(
        self,
        provider: str,
        payload_hash: str,
        reason: RejectionReason,
        order_id: str | None = None,
    ) -> CallbackResult:
        await self.event_log.record(
            provider, payload_hash, "rejected", order_id=order_id, reason=reason.value
        )
        return CallbackResult.rejected(reason, order_id)


# Global service instance
_webhook_service: WebhookService | None = None


def _build_event_log() -> WebhookEventLog:
    if settings.use_database:
        from storefront.infrastructure.sql_repositories import SqlWebhookEventLog

        return SqlWebhookEventLog()
    return InMemoryWebhookEventLog()


def get_webhook_service() -> WebhookService:
    """Get or create the webhook service instance."""
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService(event_log=_build_event_log())
    return _webhook_service


def reset_webhook_service() -> None:
    """Drop the webhook service so it is rebuilt (for testing)."""
    global _webhook_service
    _webhook_service = None
