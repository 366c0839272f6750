"""Tests for the Order aggregate and its state machine."""

from datetime import datetime, timezone

import pytest

from storefront.domain import (
    ConflictingConfirmationError,
    InvalidStateTransitionError,
    InvoiceHandle,
    Money,
    Order,
    OrderDraft,
    OrderLine,
    OrderStatus,
    PaymentConfirmation,
    PaymentMethod,
    PricingPolicy,
    ShippingAddress,
    validate_order_transition,
)
from storefront.domain.exceptions import InvalidAddressError


# ============================================================================
# Test Fixtures
# ============================================================================


def make_address() -> ShippingAddress:
    return ShippingAddress(street="1 Main St", city="Springfield", postal_code="12345", country="US")


def make_order(method: PaymentMethod = PaymentMethod.CARD) -> Order:
    lines = [OrderLine("P1", "Widget", quantity=2, unit_price=Money(1000))]
    return Order.place(
        owner_id="user-1",
        lines=lines,
        shipping_address=make_address(),
        payment_method=method,
        payment_currency="usd",
        pricing=PricingPolicy().price(Money(2000)),
    )


def confirmation(reference: str = "pi_1") -> PaymentConfirmation:
    return PaymentConfirmation(provider="stripe", reference=reference)


PAID_AT = datetime(2026, 1, 2, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Order Placement
# ============================================================================


class TestOrderPlacement:
    """Tests for creating orders."""

    def test_place_awaiting_payment(self) -> None:
        order = make_order()

        assert order.status == OrderStatus.AWAITING_PAYMENT
        assert order.is_paid is False
        assert order.is_delivered is False
        assert order.total_price == Money(3300)
        assert order.item_count == 2
        assert order.payment_currency == "USD"

    def test_place_records_event(self) -> None:
        order = make_order()
        events = order.collect_events()

        assert [e.event_type for e in events] == ["order.placed"]
        assert events[0].to_dict()["payload"]["total_cents"] == 3300
        assert order.collect_events() == []

    def test_pricing_must_match_lines(self) -> None:
        with pytest.raises(ValueError):
            Order.place(
                owner_id="user-1",
                lines=[OrderLine("P1", "Widget", quantity=1, unit_price=Money(1000))],
                shipping_address=make_address(),
                payment_method=PaymentMethod.CARD,
                payment_currency="USD",
                pricing=PricingPolicy().price(Money(2000)),
            )

    def test_address_fields_required(self) -> None:
        with pytest.raises(InvalidAddressError) as exc_info:
            ShippingAddress(street="1 Main St", city="  ", postal_code="1", country="US")
        assert exc_info.value.details["field"] == "city"


# ============================================================================
# Payment
# ============================================================================


class TestMarkPaid:
    """Tests for applying payment confirmations."""

    def test_mark_paid(self) -> None:
        order = make_order()
        order.collect_events()

        changed = order.mark_paid(confirmation(), PAID_AT)

        assert changed is True
        assert order.is_paid is True
        assert order.paid_at == PAID_AT
        assert order.status == OrderStatus.PAID
        assert order.payment_confirmation.reference == "pi_1"
        assert [e.event_type for e in order.collect_events()] == ["order.paid"]

    def test_same_receipt_is_a_no_op(self) -> None:
        order = make_order()
        order.mark_paid(confirmation(), PAID_AT)
        version = order.version
        order.collect_events()

        later = datetime(2026, 1, 3, tzinfo=timezone.utc)
        redelivered = PaymentConfirmation("stripe", "pi_1", status="succeeded", raw={"x": 1})
        changed = order.mark_paid(redelivered, later)

        assert changed is False
        assert order.paid_at == PAID_AT
        assert order.version == version
        assert order.collect_events() == []

    def test_different_receipt_conflicts(self) -> None:
        order = make_order()
        order.mark_paid(confirmation("pi_1"), PAID_AT)

        with pytest.raises(ConflictingConfirmationError) as exc_info:
            order.mark_paid(confirmation("pi_2"), PAID_AT)

        assert exc_info.value.details["existing_reference"] == "pi_1"
        assert order.payment_confirmation.reference == "pi_1"

    def test_expired_order_cannot_be_paid(self) -> None:
        order = make_order()
        order.expire(PAID_AT)

        with pytest.raises(InvalidStateTransitionError):
            order.mark_paid(confirmation(), PAID_AT)
        assert order.is_paid is False

    def test_attach_invoice(self) -> None:
        order = make_order(PaymentMethod.CRYPTO_INVOICE)
        order.attach_invoice(InvoiceHandle(invoice_id="inv_1", url="https://pay.test/inv_1"))

        assert order.invoice_id == "inv_1"
        assert order.invoice_url == "https://pay.test/inv_1"
        assert order.status == OrderStatus.AWAITING_PAYMENT

    def test_attach_invoice_to_paid_order_rejected(self) -> None:
        order = make_order(PaymentMethod.CRYPTO_INVOICE)
        order.mark_paid(PaymentConfirmation("bitpay", "inv_1"), PAID_AT)

        with pytest.raises(InvalidStateTransitionError):
            order.attach_invoice(InvoiceHandle(invoice_id="inv_2", url="https://pay.test/inv_2"))


# ============================================================================
# Delivery and Expiry
# ============================================================================


class TestDeliveryAndExpiry:
    """Tests for fulfilment and abandonment."""

    def test_deliver_paid_order(self) -> None:
        order = make_order()
        order.mark_paid(confirmation(), PAID_AT)

        assert order.mark_delivered(PAID_AT) is True
        assert order.is_delivered is True
        assert order.status == OrderStatus.DELIVERED
        assert order.mark_delivered(PAID_AT) is False

    def test_unpaid_order_cannot_be_delivered(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            make_order().mark_delivered(PAID_AT)

    def test_expire(self) -> None:
        order = make_order()
        order.collect_events()
        order.expire(PAID_AT)

        assert order.status == OrderStatus.EXPIRED
        assert order.expired_at == PAID_AT
        events = order.collect_events()
        assert events[0].event_type == "order.expired"
        assert events[0].released_units == 2

    def test_paid_order_cannot_expire(self) -> None:
        order = make_order()
        order.mark_paid(confirmation(), PAID_AT)

        with pytest.raises(InvalidStateTransitionError):
            order.expire(PAID_AT)


# ============================================================================
# State Machine
# ============================================================================


class TestOrderStateMachine:
    """Tests for order status transitions."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (OrderStatus.DRAFT, OrderStatus.AWAITING_PAYMENT),
            (OrderStatus.DRAFT, OrderStatus.FAILED),
            (OrderStatus.AWAITING_PAYMENT, OrderStatus.PAID),
            (OrderStatus.AWAITING_PAYMENT, OrderStatus.EXPIRED),
            (OrderStatus.PAID, OrderStatus.DELIVERED),
        ],
    )
    def test_valid_transitions(self, current: OrderStatus, target: OrderStatus) -> None:
        assert current.can_transition_to(target)
        validate_order_transition("order-1", current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (OrderStatus.DRAFT, OrderStatus.PAID),
            (OrderStatus.AWAITING_PAYMENT, OrderStatus.DELIVERED),
            (OrderStatus.PAID, OrderStatus.AWAITING_PAYMENT),
            (OrderStatus.EXPIRED, OrderStatus.PAID),
            (OrderStatus.FAILED, OrderStatus.AWAITING_PAYMENT),
        ],
    )
    def test_invalid_transitions(self, current: OrderStatus, target: OrderStatus) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_order_transition("order-1", current, target)
        assert exc_info.value.details["current_state"] == current.value

    def test_terminal_states(self) -> None:
        assert OrderStatus.DELIVERED.is_terminal()
        assert OrderStatus.FAILED.is_terminal()
        assert OrderStatus.EXPIRED.is_terminal()
        assert not OrderStatus.PAID.is_terminal()

    def test_only_awaiting_payment_is_payable(self) -> None:
        assert OrderStatus.AWAITING_PAYMENT.is_payable()
        assert not any(s.is_payable() for s in OrderStatus if s is not OrderStatus.AWAITING_PAYMENT)

    def test_rejection_lists_allowed_targets(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_order_transition("order-1", OrderStatus.AWAITING_PAYMENT, OrderStatus.DELIVERED)
        assert exc_info.value.details["allowed_transitions"] == ["expired", "paid"]


class TestOrderDraft:
    """Tests for the checkout draft."""

    def test_releases_in_reverse_order(self) -> None:
        draft = OrderDraft(owner_id="user-1")
        first = OrderLine("P1", "Widget", quantity=1, unit_price=Money(1000))
        second = OrderLine("P2", "Gadget", quantity=1, unit_price=Money(2500))
        draft.add_reserved_line(first)
        draft.add_reserved_line(second)

        assert draft.reserved_in_release_order() == [second, first]

    def test_fail(self) -> None:
        draft = OrderDraft(owner_id="user-1")
        draft.fail("out of stock")

        assert draft.status == OrderStatus.FAILED
        assert draft.failure_reason == "out of stock"
        with pytest.raises(InvalidStateTransitionError):
            draft.fail("again")
