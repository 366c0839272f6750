"""Tests for payment provider clients.

HTTP calls are replaced by patching the lazy client; request building,
response handling, signatures and callback parsing run for real.
"""

import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from storefront.domain import (
    CallbackStatus,
    Money,
    OrderId,
    PaymentDeclinedError,
    PaymentProviderError,
    PaymentRequest,
    PendingConfirmation,
    SynchronousResult,
)
from storefront.domain.exceptions import MissingPaymentTokenError
from storefront.domain.value_objects import PaymentMethod
from storefront.infrastructure.payment_gateways import (
    CallbackPayloadError,
    CardPaymentGateway,
    InvoicePaymentGateway,
    PaymentGatewayRegistry,
)

ORDER_ID = "7f1c2a6e-2b1d-4c55-9f3e-1c1f0d3b9a10"


@pytest.fixture
def card() -> CardPaymentGateway:
    return CardPaymentGateway(
        api_url="https://card.test",
        secret_key="sk_test",
        webhook_secret="whsec_test_secret",
    )


@pytest.fixture
def invoice() -> InvoicePaymentGateway:
    return InvoicePaymentGateway(
        api_url="https://invoice.test",
        token="test-token",
        webhook_secret="test-invoice-secret",
        accepted_currencies=["btc", "usd"],
    )


def mock_http(**methods) -> MagicMock:
    client = MagicMock()
    for name, value in methods.items():
        if isinstance(value, Exception):
            setattr(client, name, AsyncMock(side_effect=value))
        else:
            setattr(client, name, AsyncMock(return_value=value))
    return client


def intent(status: str = "succeeded", **overrides) -> dict:
    data = {
        "id": "pi_123",
        "object": "payment_intent",
        "status": status,
        "amount": 3300,
        "currency": "usd",
        "metadata": {"order_id": ORDER_ID},
    }
    data.update(overrides)
    return data


# ============================================================================
# Card Charges
# ============================================================================


class TestCardCharge:
    """Tests for synchronous card charges."""

    @pytest.mark.asyncio
    async def test_successful_charge(self, card) -> None:
        client = mock_http(post=httpx.Response(200, json=intent()))

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            confirmation = await card.charge_synchronously(
                Money(3300), "pm_card_visa", order_id=ORDER_ID, description="Order 1"
            )

        assert confirmation.provider == "stripe"
        assert confirmation.reference == "pi_123"
        assert confirmation.raw["amount"] == 3300
        assert confirmation.raw["order_id"] == ORDER_ID

        args, kwargs = client.post.call_args
        assert args[0] == "/v1/payment_intents"
        form = kwargs["data"]
        assert form["amount"] == 3300
        assert form["currency"] == "usd"
        assert form["payment_method"] == "pm_card_visa"
        assert form["confirm"] == "true"
        assert form["metadata[order_id]"] == ORDER_ID
        assert kwargs["headers"]["Idempotency-Key"] == f"charge-{ORDER_ID}"

    @pytest.mark.asyncio
    async def test_declined_card(self, card) -> None:
        body = {
            "error": {
                "type": "card_error",
                "code": "card_declined",
                "decline_code": "insufficient_funds",
                "message": "Your card has insufficient funds.",
            }
        }
        client = mock_http(post=httpx.Response(402, json=body))

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            with pytest.raises(PaymentDeclinedError) as exc_info:
                await card.charge_synchronously(Money(3300), "pm_card_declined")

        assert exc_info.value.message == "Your card has insufficient funds."
        assert exc_info.value.details["decline_code"] == "insufficient_funds"

    @pytest.mark.asyncio
    async def test_provider_server_error(self, card) -> None:
        client = mock_http(post=httpx.Response(500, text="upstream failure"))

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            with pytest.raises(PaymentProviderError) as exc_info:
                await card.charge_synchronously(Money(3300), "pm_card_visa")

        assert exc_info.value.details["status_code"] == 500

    @pytest.mark.asyncio
    async def test_network_error(self, card) -> None:
        client = mock_http(post=httpx.ConnectTimeout("timed out"))

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            with pytest.raises(PaymentProviderError) as exc_info:
                await card.charge_synchronously(Money(3300), "pm_card_visa")

        assert "Request failed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_intent_needing_action_is_declined(self, card) -> None:
        client = mock_http(post=httpx.Response(200, json=intent(status="requires_action")))

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            with pytest.raises(PaymentDeclinedError) as exc_info:
                await card.charge_synchronously(Money(3300), "pm_card_3ds")

        assert exc_info.value.details["status"] == "requires_action"

    @pytest.mark.asyncio
    async def test_processing_intent_is_a_provider_error(self, card) -> None:
        client = mock_http(post=httpx.Response(200, json=intent(status="processing")))

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            with pytest.raises(PaymentProviderError):
                await card.charge_synchronously(Money(3300), "pm_card_visa")

    @pytest.mark.asyncio
    async def test_start_payment_returns_synchronous_result(self, card) -> None:
        client = mock_http(post=httpx.Response(200, json=intent()))
        request = PaymentRequest(
            order_id=OrderId.from_string(ORDER_ID),
            amount=Money(3300),
            payment_token="pm_card_visa",
        )

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            outcome = await card.start_payment(request)

        assert isinstance(outcome, SynchronousResult)
        assert outcome.confirmation.reference == "pi_123"

    @pytest.mark.asyncio
    async def test_start_payment_requires_token(self, card) -> None:
        request = PaymentRequest(order_id=OrderId.from_string(ORDER_ID), amount=Money(3300))

        with pytest.raises(MissingPaymentTokenError):
            await card.start_payment(request)

    @pytest.mark.asyncio
    async def test_retrieve_charge(self, card) -> None:
        client = mock_http(get=httpx.Response(200, json=intent()))

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            confirmation = await card.retrieve_charge("pi_123")

        assert confirmation.reference == "pi_123"
        client.get.assert_awaited_once_with("/v1/payment_intents/pi_123")

    @pytest.mark.asyncio
    async def test_retrieve_unknown_charge(self, card) -> None:
        client = mock_http(get=httpx.Response(404, json={"error": {"type": "invalid_request_error"}}))

        with patch.object(card, "_get_client", AsyncMock(return_value=client)):
            with pytest.raises(PaymentDeclinedError):
                await card.retrieve_charge("pi_missing")


class TestCardWebhooks:
    """Tests for card webhook signatures and events."""

    def test_valid_signature(self, card, sign_card) -> None:
        body = b'{"type": "payment_intent.succeeded"}'
        assert card.verify_webhook_signature(body, sign_card(body)) is True

    def test_wrong_secret(self, card, sign_card) -> None:
        body = b'{"type": "payment_intent.succeeded"}'
        signature = sign_card(body, secret="whsec_other")
        assert card.verify_webhook_signature(body, signature) is False

    def test_tampered_body(self, card, sign_card) -> None:
        signature = sign_card(b'{"amount": 3300}')
        assert card.verify_webhook_signature(b'{"amount": 1}', signature) is False

    def test_old_timestamp(self, card, sign_card) -> None:
        body = b"{}"
        signature = sign_card(body, timestamp=int(time.time()) - 3600)
        assert card.verify_webhook_signature(body, signature) is False

    @pytest.mark.parametrize("signature", [None, "", "v1=abc", "t=abc,v1=def", "t=123"])
    def test_malformed_header(self, card, signature) -> None:
        assert card.verify_webhook_signature(b"{}", signature) is False

    def test_parse_succeeded_event(self, card) -> None:
        body = json.dumps(
            {"type": "payment_intent.succeeded", "data": {"object": intent()}}
        ).encode()

        callback = card.parse_callback(body)

        assert callback.order_id == ORDER_ID
        assert callback.status == CallbackStatus.CONFIRMED
        assert callback.confirmation.reference == "pi_123"

    def test_parse_failed_event(self, card) -> None:
        body = json.dumps(
            {
                "type": "payment_intent.payment_failed",
                "data": {"object": intent(status="requires_payment_method")},
            }
        ).encode()

        assert card.parse_callback(body).status == CallbackStatus.FAILED

    def test_parse_event_without_order(self, card) -> None:
        body = json.dumps(
            {"type": "payment_intent.succeeded", "data": {"object": intent(metadata={})}}
        ).encode()

        with pytest.raises(CallbackPayloadError):
            card.parse_callback(body)

    def test_parse_non_json(self, card) -> None:
        with pytest.raises(CallbackPayloadError):
            card.parse_callback(b"not json")


# ============================================================================
# Invoices
# ============================================================================


class TestInvoiceCreation:
    """Tests for opening crypto invoices."""

    @pytest.mark.asyncio
    async def test_create_invoice(self, invoice) -> None:
        response = httpx.Response(
            200,
            json={
                "data": {
                    "id": "inv_abc",
                    "url": "https://pay.test/i/inv_abc",
                    "status": "new",
                    "expirationTime": 1767225600000,
                }
            },
        )
        client = mock_http(post=response)

        with patch.object(invoice, "_get_client", AsyncMock(return_value=client)):
            handle = await invoice.create_async_invoice(
                Money(3300),
                order_id=ORDER_ID,
                notify_url="https://shop.test/api/payments/bitpay/webhook",
                buyer_email="buyer@example.com",
                payment_currency="btc",
            )

        assert handle.invoice_id == "inv_abc"
        assert handle.url == "https://pay.test/i/inv_abc"
        assert handle.expires_at.year == 2026

        args, kwargs = client.post.call_args
        assert args[0] == "/invoices"
        payload = kwargs["json"]
        assert payload["token"] == "test-token"
        assert payload["price"] == 33.0
        assert payload["currency"] == "USD"
        assert payload["orderId"] == ORDER_ID
        assert payload["notificationURL"].endswith("/bitpay/webhook")
        assert payload["buyer"] == {"email": "buyer@example.com"}
        assert payload["paymentCurrencies"] == ["BTC"]

    @pytest.mark.asyncio
    async def test_start_payment_returns_pending(self, invoice) -> None:
        client = mock_http(
            post=httpx.Response(200, json={"data": {"id": "inv_1", "url": "https://pay.test/i/1"}})
        )
        request = PaymentRequest(order_id=OrderId.from_string(ORDER_ID), amount=Money(3300))

        with patch.object(invoice, "_get_client", AsyncMock(return_value=client)):
            outcome = await invoice.start_payment(request)

        assert isinstance(outcome, PendingConfirmation)
        assert outcome.invoice.invoice_id == "inv_1"

    @pytest.mark.asyncio
    async def test_provider_error(self, invoice) -> None:
        client = mock_http(post=httpx.Response(503, text="maintenance"))

        with patch.object(invoice, "_get_client", AsyncMock(return_value=client)):
            with pytest.raises(PaymentProviderError) as exc_info:
                await invoice.create_async_invoice(Money(3300), order_id=ORDER_ID)

        assert exc_info.value.details["status_code"] == 503

    @pytest.mark.asyncio
    async def test_incomplete_response(self, invoice) -> None:
        client = mock_http(post=httpx.Response(200, json={"data": {"id": "inv_1"}}))

        with patch.object(invoice, "_get_client", AsyncMock(return_value=client)):
            with pytest.raises(PaymentProviderError):
                await invoice.create_async_invoice(Money(3300), order_id=ORDER_ID)


class TestInvoiceWebhooks:
    """Tests for invoice notification signatures and parsing."""

    def test_valid_signature(self, invoice, sign_invoice) -> None:
        body = b'{"id": "inv_1"}'
        assert invoice.verify_webhook_signature(body, sign_invoice(body)) is True

    @pytest.mark.parametrize("signature", [None, "", "invalid", "md5=abc", "sha256=abc"])
    def test_invalid_signatures(self, invoice, signature) -> None:
        assert invoice.verify_webhook_signature(b'{"id": "inv_1"}', signature) is False

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("confirmed", CallbackStatus.CONFIRMED),
            ("complete", CallbackStatus.CONFIRMED),
            ("paid", CallbackStatus.PENDING),
            ("new", CallbackStatus.PENDING),
            ("expired", CallbackStatus.EXPIRED),
            ("invalid", CallbackStatus.FAILED),
        ],
    )
    def test_status_mapping(self, invoice, status, expected) -> None:
        body = json.dumps({"data": {"id": "inv_1", "orderId": ORDER_ID, "status": status}})

        assert invoice.parse_callback(body.encode()).status == expected

    def test_flat_notification(self, invoice) -> None:
        body = json.dumps({"id": "inv_1", "orderId": ORDER_ID, "status": "confirmed"})

        callback = invoice.parse_callback(body.encode())

        assert callback.order_id == ORDER_ID
        assert callback.confirmation.provider == "bitpay"
        assert callback.confirmation.reference == "inv_1"

    def test_missing_order_id(self, invoice) -> None:
        with pytest.raises(CallbackPayloadError):
            invoice.parse_callback(b'{"data": {"id": "inv_1", "status": "confirmed"}}')


# ============================================================================
# Registry
# ============================================================================


class TestRegistry:
    """Tests for gateway lookup."""

    def test_lookup(self, card, invoice) -> None:
        registry = PaymentGatewayRegistry([card, invoice])

        assert registry.for_method(PaymentMethod.CARD) is card
        assert registry.for_method(PaymentMethod.CRYPTO_INVOICE) is invoice
        assert registry.for_provider("bitpay") is invoice
        assert registry.for_provider("paypal") is None
        assert registry.providers() == ["bitpay", "stripe"]

    @pytest.mark.asyncio
    async def test_close_closes_clients(self, card, invoice) -> None:
        await card._get_client()
        registry = PaymentGatewayRegistry([card, invoice])

        await registry.close()

        assert card._client is None
        assert invoice._client is None
