"""Payment provider HTTP clients.

Two provider families sit behind one interface:

- CardPaymentGateway charges a card within the request (payment intents
  confirmed immediately) and returns a SynchronousResult.
- InvoicePaymentGateway opens a hosted crypto invoice and returns a
  PendingConfirmation; settlement arrives later through a webhook.

Both verify and parse their own webhook callbacks, so the reconciler
never needs to know a provider's wire format.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import structlog

from storefront.domain.exceptions import (
    MissingPaymentTokenError,
    PaymentDeclinedError,
    PaymentProviderError,
)
from storefront.domain.payments import (
    CallbackStatus,
    InvoiceHandle,
    PaymentConfirmation,
    PaymentOutcome,
    PaymentRequest,
    PendingConfirmation,
    ProviderCallback,
    SynchronousResult,
)
from storefront.domain.value_objects import Money, PaymentMethod
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


class CallbackPayloadError(ValueError):
    """Raised when a verified callback body cannot be understood."""


class PaymentGateway(Protocol):
    """A payment provider as seen by checkout and reconciliation."""

    provider: str
    method: PaymentMethod
    signature_header: str

    async def start_payment(self, request: PaymentRequest) -> PaymentOutcome: ...

    def verify_webhook_signature(self, raw_payload: bytes, signature: str | None) -> bool: ...

    def parse_callback(self, raw_payload: bytes) -> ProviderCallback: ...

    async def close(self) -> None: ...


def _load_json(raw_payload: bytes) -> dict[str, Any]:
    try:
        body = json.loads(raw_payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CallbackPayloadError(f"Callback body is not JSON: {e}") from e
    if not isinstance(body, dict):
        raise CallbackPayloadError("Callback body must be a JSON object")
    return body


class _ProviderClient:
    """Shared lazy HTTP client handling."""

    provider: str

    def __init__(self, api_url: str, timeout: float) -> None:
        self.api_url = api_url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _client_headers(self) -> dict[str, str]:
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=self.timeout,
                headers=self._client_headers(),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _request_failed(self, e: httpx.RequestError, **context: Any) -> PaymentProviderError:
        logger.error(
            "Payment provider request failed",
            provider=self.provider,
            error=str(e),
            **context,
        )
        return PaymentProviderError(self.provider, f"Request failed: {e}")


# ============================================================================
# Card Gateway
# ============================================================================


class CardPaymentGateway(_ProviderClient):
    """Synchronous card charges through a payment-intents API.

    Amounts are sent in minor units and the intent is confirmed in the
    same call, so the response already says whether the card was charged.
    """

    method = PaymentMethod.CARD
    signature_header = "Stripe-Signature"

    # Seconds a signed webhook timestamp stays acceptable
    signature_tolerance = 300

    def __init__(
        self,
        api_url: str,
        secret_key: str,
        webhook_secret: str,
        provider: str = "stripe",
        timeout: float = 10.0,
    ) -> None:
        super().__init__(api_url, timeout)
        self.provider = provider
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def _client_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def start_payment(self, request: PaymentRequest) -> PaymentOutcome:
        if not request.payment_token:
            raise MissingPaymentTokenError()
        confirmation = await self.charge_synchronously(
            request.amount,
            request.payment_token,
            order_id=str(request.order_id),
            description=request.description,
        )
        return SynchronousResult(confirmation)

    async def charge_synchronously(
        self,
        amount: Money,
        payment_token: str,
        order_id: str | None = None,
        description: str | None = None,
    ) -> PaymentConfirmation:
        """Charge a card and wait for the outcome.

        Args:
            amount: Amount to charge, in the charge currency.
            payment_token: Provider payment method token from the client.
            order_id: Order reference stored with the charge. Also used as
                the idempotency key so a retried request never charges twice.
            description: Statement description.

        Returns:
            Confirmation of the settled charge.

        Raises:
            PaymentDeclinedError: If the card was declined.
            PaymentProviderError: If the provider failed or timed out.
        """
        form: dict[str, Any] = {
            "amount": amount.amount_cents,
            "currency": amount.currency.lower(),
            "payment_method": payment_token,
            "confirm": "true",
            "automatic_payment_methods[enabled]": "true",
            "automatic_payment_methods[allow_redirects]": "never",
        }
        headers: dict[str, str] = {}
        if order_id:
            form["metadata[order_id]"] = order_id
            headers["Idempotency-Key"] = f"charge-{order_id}"
        if description:
            form["description"] = description

        try:
            client = await self._get_client()
            response = await client.post("/v1/payment_intents", data=form, headers=headers)
        except httpx.RequestError as e:
            raise self._request_failed(e, order_id=order_id) from e

        data = self._read_response(response, order_id=order_id)
        confirmation = self._confirmation_from_intent(data)

        logger.info(
            "Card charged",
            provider=self.provider,
            order_id=order_id,
            reference=confirmation.reference,
            amount_cents=amount.amount_cents,
            currency=amount.currency,
        )
        return confirmation

    async def retrieve_charge(self, reference: str) -> PaymentConfirmation:
        """Look up a charge made outside this service and check it settled.

        Raises:
            PaymentDeclinedError: If the charge is unknown or not settled.
            PaymentProviderError: If the provider failed or timed out.
        """
        try:
            client = await self._get_client()
            response = await client.get(f"/v1/payment_intents/{reference}")
        except httpx.RequestError as e:
            raise self._request_failed(e, reference=reference) from e

        if response.status_code == 404:
            raise PaymentDeclinedError(
                self.provider, "Payment not found", details={"reference": reference}
            )
        data = self._read_response(response, reference=reference)
        return self._confirmation_from_intent(data)

    def _read_response(self, response: httpx.Response, **context: Any) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 200:
            return data

        error = data.get("error", {}) if isinstance(data, dict) else {}
        message = error.get("message") or f"Provider returned {response.status_code}"

        if response.status_code == 402 or error.get("type") == "card_error":
            logger.warning(
                "Card declined",
                provider=self.provider,
                decline_code=error.get("decline_code"),
                **context,
            )
            raise PaymentDeclinedError(
                self.provider,
                message,
                details={"decline_code": error.get("decline_code") or error.get("code")},
            )

        logger.error(
            "Card provider error",
            provider=self.provider,
            status_code=response.status_code,
            error=message,
            **context,
        )
        raise PaymentProviderError(
            self.provider, message, details={"status_code": response.status_code}
        )

    def _confirmation_from_intent(self, data: dict[str, Any]) -> PaymentConfirmation:
        status = data.get("status")
        if status == "succeeded":
            return PaymentConfirmation(
                provider=self.provider,
                reference=data["id"],
                status=status,
                raw={
                    "id": data["id"],
                    "amount": data.get("amount"),
                    "currency": data.get("currency"),
                    "order_id": (data.get("metadata") or {}).get("order_id"),
                },
            )
        if status == "processing":
            raise PaymentProviderError(
                self.provider,
                "Payment is still processing",
                details={"reference": data.get("id")},
            )
        raise PaymentDeclinedError(
            self.provider,
            f"Payment not completed (status: {status})",
            details={"reference": data.get("id"), "status": status},
        )

    def verify_webhook_signature(self, raw_payload: bytes, signature: str | None) -> bool:
        """Verify a 't=<timestamp>,v1=<hex>' signature header.

        The signed content is '<timestamp>.<raw body>'. Timestamps older
        than signature_tolerance seconds are refused.
        """
        if not signature:
            logger.warning("Missing webhook signature", provider=self.provider)
            return False

        timestamp = None
        candidates = []
        for item in signature.split(","):
            key, _, value = item.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                candidates.append(value)

        if not timestamp or not timestamp.isdigit() or not candidates:
            logger.warning("Invalid signature format", provider=self.provider)
            return False

        if abs(time.time() - int(timestamp)) > self.signature_tolerance:
            logger.warning("Webhook signature timestamp outside tolerance", provider=self.provider)
            return False

        computed = hmac.new(
            self.webhook_secret.encode(),
            timestamp.encode() + b"." + raw_payload,
            hashlib.sha256,
        ).hexdigest()

        if not any(hmac.compare_digest(computed, c) for c in candidates):
            logger.warning("Webhook signature mismatch", provider=self.provider)
            return False

        logger.debug("Webhook signature verified", provider=self.provider)
        return True

    def parse_callback(self, raw_payload: bytes) -> ProviderCallback:
        """Read a payment intent event.

        Raises:
            CallbackPayloadError: If the event lacks the intent or order id.
        """
        body = _load_json(raw_payload)
        intent = (body.get("data") or {}).get("object") or {}
        order_id = (intent.get("metadata") or {}).get("order_id")
        if not intent.get("id") or not order_id:
            raise CallbackPayloadError("Event is missing the payment intent or order id")

        event_type = body.get("type", "")
        if event_type == "payment_intent.succeeded" or intent.get("status") == "succeeded":
            status = CallbackStatus.CONFIRMED
        elif event_type in ("payment_intent.payment_failed", "payment_intent.canceled"):
            status = CallbackStatus.FAILED
        else:
            status = CallbackStatus.PENDING

        return ProviderCallback(
            order_id=str(order_id),
            status=status,
            confirmation=PaymentConfirmation(
                provider=self.provider,
                reference=intent["id"],
                status=intent.get("status", ""),
                raw={
                    "id": intent["id"],
                    "amount": intent.get("amount"),
                    "currency": intent.get("currency"),
                    "order_id": order_id,
                },
            ),
        )


# ============================================================================
# Invoice Gateway
# ============================================================================


# Invoice statuses that mean the buyer's payment is final
INVOICE_PAID_STATUSES = frozenset({"confirmed", "complete"})
INVOICE_FAILED_STATUSES = frozenset({"invalid", "declined"})


class InvoicePaymentGateway(_ProviderClient):
    """Asynchronous crypto invoices.

    Creating an invoice returns a hosted payment page. The provider later
    posts the invoice status to the notification URL.
    """

    method = PaymentMethod.CRYPTO_INVOICE
    signature_header = "X-Signature"

    def __init__(
        self,
        api_url: str,
        token: str,
        webhook_secret: str,
        accepted_currencies: list[str],
        provider: str = "bitpay",
        timeout: float = 10.0,
    ) -> None:
        super().__init__(api_url, timeout)
        self.provider = provider
        self.token = token
        self.webhook_secret = webhook_secret
        self.accepted_currencies = [c.upper() for c in accepted_currencies]

    def _client_headers(self) -> dict[str, str]:
        return {"X-Accept-Version": "2.0.0", "Content-Type": "application/json"}

    async def start_payment(self, request: PaymentRequest) -> PaymentOutcome:
        invoice = await self.create_async_invoice(
            request.amount,
            order_id=str(request.order_id),
            notify_url=request.notify_url,
            redirect_url=request.redirect_url,
            buyer_email=request.buyer_email,
            payment_currency=request.payment_currency,
        )
        return PendingConfirmation(invoice)

    async def create_async_invoice(
        self,
        amount: Money,
        order_id: str,
        notify_url: str | None = None,
        redirect_url: str | None = None,
        buyer_email: str | None = None,
        payment_currency: str | None = None,
    ) -> InvoiceHandle:
        """Open an invoice for an order.

        Args:
            amount: Invoice price, in the pricing currency.
            order_id: Order reference echoed back in callbacks.
            notify_url: Where the provider posts status updates.
            redirect_url: Where the shopper returns after paying.
            buyer_email: Pre-filled buyer email.
            payment_currency: Currency the shopper pays in.

        Raises:
            PaymentProviderError: If the provider failed or timed out.
        """
        payload: dict[str, Any] = {
            "token": self.token,
            "price": float(amount.to_decimal()),
            "currency": amount.currency,
            "orderId": order_id,
            "fullNotifications": True,
            "extendedNotifications": True,
            "transactionSpeed": "medium",
        }
        if notify_url:
            payload["notificationURL"] = notify_url
        if redirect_url:
            payload["redirectURL"] = redirect_url
        if buyer_email:
            payload["buyer"] = {"email": buyer_email}
        if payment_currency:
            payload["paymentCurrencies"] = [payment_currency.upper()]

        try:
            client = await self._get_client()
            response = await client.post("/invoices", json=payload)
        except httpx.RequestError as e:
            raise self._request_failed(e, order_id=order_id) from e

        if response.status_code not in (200, 201):
            logger.error(
                "Invoice creation failed",
                provider=self.provider,
                order_id=order_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PaymentProviderError(
                self.provider,
                f"Invoice creation failed: {response.status_code}",
                details={"status_code": response.status_code},
            )

        data = response.json().get("data") or {}
        if not data.get("id") or not data.get("url"):
            raise PaymentProviderError(self.provider, "Invoice response is missing id or url")

        expires_at = None
        if data.get("expirationTime"):
            expires_at = datetime.fromtimestamp(data["expirationTime"] / 1000, tz=timezone.utc)

        invoice = InvoiceHandle(
            invoice_id=data["id"],
            url=data["url"],
            status=data.get("status", "new"),
            expires_at=expires_at,
        )
        logger.info(
            "Invoice opened",
            provider=self.provider,
            order_id=order_id,
            invoice_id=invoice.invoice_id,
        )
        return invoice

    def verify_webhook_signature(self, raw_payload: bytes, signature: str | None) -> bool:
        """Verify a 'sha256=<hex>' HMAC of the raw body."""
        if not signature:
            logger.warning("Missing webhook signature", provider=self.provider)
            return False

        parts = signature.split("=", 1)
        if len(parts) != 2 or parts[0] != "sha256":
            logger.warning(
                "Invalid signature format",
                provider=self.provider,
                signature_prefix=signature[:20],
            )
            return False

        computed = hmac.new(
            self.webhook_secret.encode(),
            raw_payload,
            hashlib.sha256,
        ).hexdigest()

        if not hmac.compare_digest(computed, parts[1]):
            logger.warning("Webhook signature mismatch", provider=self.provider)
            return False

        logger.debug("Webhook signature verified", provider=self.provider)
        return True

    def parse_callback(self, raw_payload: bytes) -> ProviderCallback:
        """Read an invoice notification.

        Accepts both the extended shape ({"event": ..., "data": {...}}) and
        the flat invoice object.

        Raises:
            CallbackPayloadError: If the invoice or order id is missing.
        """
        body = _load_json(raw_payload)
        invoice = body.get("data") if isinstance(body.get("data"), dict) else body
        invoice_id = invoice.get("id")
        order_id = invoice.get("orderId")
        if not invoice_id or not order_id:
            raise CallbackPayloadError("Notification is missing the invoice or order id")

        invoice_status = str(invoice.get("status", "")).lower()
        if invoice_status in INVOICE_PAID_STATUSES:
            status = CallbackStatus.CONFIRMED
        elif invoice_status == "expired":
            status = CallbackStatus.EXPIRED
        elif invoice_status in INVOICE_FAILED_STATUSES:
            status = CallbackStatus.FAILED
        else:
            status = CallbackStatus.PENDING

        return ProviderCallback(
            order_id=str(order_id),
            status=status,
            confirmation=PaymentConfirmation(
                provider=self.provider,
                reference=str(invoice_id),
                status=invoice_status,
                raw={
                    "id": invoice_id,
                    "price": invoice.get("price"),
                    "currency": invoice.get("currency"),
                    "order_id": order_id,
                },
            ),
        )


# ============================================================================
# Gateway Registry
# ============================================================================


class PaymentGatewayRegistry:
    """Gateways by payment method and by provider name."""

    def __init__(self, gateways: list[PaymentGateway]) -> None:
        self._by_method: dict[PaymentMethod, PaymentGateway] = {}
        self._by_provider: dict[str, PaymentGateway] = {}
        for gateway in gateways:
            self._by_method[gateway.method] = gateway
            self._by_provider[gateway.provider] = gateway

    def for_method(self, method: PaymentMethod) -> PaymentGateway:
        """Get the gateway serving a payment method.

        Raises:
            KeyError: If no gateway is configured for the method.
        """
        return self._by_method[method]

    def for_provider(self, provider: str) -> PaymentGateway | None:
        """Get a gateway by provider name, None if unknown."""
        return self._by_provider.get(provider)

    def providers(self) -> list[str]:
        return sorted(self._by_provider)

    async def close(self) -> None:
        for gateway in self._by_provider.values():
            await gateway.close()


def build_payment_gateways() -> PaymentGatewayRegistry:
    """Build the gateways configured in settings."""
    return PaymentGatewayRegistry(
        [
            CardPaymentGateway(
                api_url=settings.card_api_url,
                secret_key=settings.card_secret_key,
                webhook_secret=settings.card_webhook_secret,
                provider=settings.card_provider,
                timeout=settings.provider_timeout_seconds,
            ),
            InvoicePaymentGateway(
                api_url=settings.invoice_api_url,
                token=settings.invoice_token,
                webhook_secret=settings.invoice_webhook_secret,
                accepted_currencies=settings.invoice_currencies,
                provider=settings.invoice_provider,
                timeout=settings.provider_timeout_seconds,
            ),
        ]
    )


# Global registry instance
_payment_gateways: PaymentGatewayRegistry | None = None


def get_payment_gateways() -> PaymentGatewayRegistry:
    """Get the payment gateway registry singleton."""
    global _payment_gateways
    if _payment_gateways is None:
        _payment_gateways = build_payment_gateways()
    return _payment_gateways


def set_payment_gateways(registry: PaymentGatewayRegistry | None) -> None:
    """Replace the registry (for testing). None rebuilds from settings."""
    global _payment_gateways
    _payment_gateways = registry
