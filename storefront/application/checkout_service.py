"""Checkout application service.

Orchestrates the storefront checkout:
- Reserving stock for every cart line, releasing it again if anything
  fails before the order is stored
- Pricing the order (items, shipping tier, tax)
- Persisting the order with its lines, awaiting payment
- Starting payment with the gateway for the order's payment method and
  either marking the order paid (card) or attaching an invoice (crypto)

Order reads and the admin fulfilment step live here too, guarded by the
caller's identity.
"""

from dataclasses import dataclass

import structlog

from storefront.application.inventory import InventoryLedger, get_inventory_ledger
from storefront.application.order_repository import OrderRepository, get_order_repository
from storefront.domain.base import utcnow
from storefront.domain.entities import Order, OrderDraft, OrderLine, sum_lines
from storefront.domain.exceptions import (
    CheckoutRejectedError,
    ConflictingConfirmationError,
    EmptyCartError,
    InvalidQuantityError,
    InvalidStateTransitionError,
    InventoryError,
    OrderNotFoundError,
    PaymentDeclinedError,
    PaymentError,
    PaymentMethodMismatchError,
    UnauthorizedAccessError,
    UnsupportedCurrencyError,
)
from storefront.domain.payments import (
    InvoiceHandle,
    PaymentRequest,
    SynchronousResult,
)
from storefront.domain.pricing import PricingPolicy
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import Identity, OrderId, PaymentMethod, ShippingAddress
from storefront.infrastructure.config import settings
from storefront.infrastructure.payment_gateways import (
    PaymentGatewayRegistry,
    get_payment_gateways,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class CartLine:
    """A requested product and quantity, before stock is reserved."""

    product_id: str
    quantity: int


@dataclass
class CheckoutPayment:
    """Order state after a payment attempt.

    Attributes:
        order: The order as stored after the attempt.
        invoice: Invoice the shopper must pay, for crypto orders.
    """

    order: Order
    invoice: InvoiceHandle | None = None

    @property
    def payment_url(self) -> str | None:
        if self.invoice:
            return self.invoice.url
        return self.order.invoice_url


def default_pricing_policy() -> PricingPolicy:
    """Pricing policy configured in settings."""
    return PricingPolicy(
        shipping_cents=settings.shipping_cents,
        free_shipping_threshold_cents=settings.free_shipping_threshold_cents,
        tax_rate=settings.tax_rate,
    )


class CheckoutService:
    """Application service for placing and paying orders.

    Checkout flow:
    1. Validate the cart, address and payment currency
    2. Reserve stock line by line (all-or-nothing)
    3. Price the order and store it awaiting payment
    4. Start payment with the order's gateway
    5. Mark paid (card) or attach the invoice (crypto)

    A failure in steps 2-3 releases every reservation made so far. A
    failure in step 4 leaves the order awaiting payment so the shopper
    can retry against the same order.
    """

    def __init__(
        self,
        ledger: InventoryLedger | None = None,
        order_repo: OrderRepository | None = None,
        gateways: PaymentGatewayRegistry | None = None,
        pricing: PricingPolicy | None = None,
        base_currency: str | None = None,
        invoice_currencies: list[str] | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            ledger: Inventory ledger.
            order_repo: Order repository.
            gateways: Payment gateways by method.
            pricing: Shipping and tax policy.
            base_currency: Currency every card payment settles in.
            invoice_currencies: Currencies an invoice may be paid in.
            request_id: Request ID for correlation.
        """
        self.ledger = ledger or get_inventory_ledger()
        self.order_repo = order_repo or get_order_repository()
        self.gateways = gateways or get_payment_gateways()
        self.pricing = pricing or default_pricing_policy()
        self.base_currency = (base_currency or settings.base_currency).upper()
        self.invoice_currencies = [
            c.upper() for c in (invoice_currencies or settings.invoice_currencies)
        ]
        self.request_id = request_id

    # -------------------------------------------------------------------------
    # Placing orders
    # -------------------------------------------------------------------------

    async def place_order(
        self,
        identity: Identity,
        lines: list[CartLine],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        payment_currency: str | None = None,
    ) -> Order:
        """Reserve stock for every line and store the order awaiting payment.

        Args:
            identity: Purchasing identity.
            lines: Cart lines.
            shipping_address: Validated shipping address.
            payment_method: Card or crypto invoice.
            payment_currency: Settlement currency. Ignored for cards,
                which always settle in the base currency.

        Returns:
            The stored order.

        Raises:
            EmptyCartError: If lines is empty.
            InvalidQuantityError: If a quantity is not positive.
            UnsupportedCurrencyError: If the currency is not accepted.
            CheckoutRejectedError: If a product is missing or out of stock.
        """
        if not lines:
            raise EmptyCartError()
        for line in lines:
            if line.quantity <= 0:
                raise InvalidQuantityError(line.quantity, line.product_id)
        currency = self._settlement_currency(payment_method, payment_currency)

        draft = OrderDraft(owner_id=identity.user_id)
        current_product = None
        try:
            for line in lines:
                current_product = line.product_id
                product = await self.ledger.reserve(line.product_id, line.quantity)
                draft.add_reserved_line(OrderLine.snapshot(product, line.quantity))

            pricing = self.pricing.price(sum_lines(draft.lines))
            order = await self.order_repo.create_order(
                owner_id=identity.user_id,
                lines=draft.lines,
                shipping_address=shipping_address,
                payment_method=payment_method,
                payment_currency=currency,
                pricing=pricing,
            )
        except InventoryError as e:
            await self._release_reservations(draft, e.message)
            logger.info(
                "Checkout rejected",
                owner_id=identity.user_id,
                product_id=current_product,
                error_code=e.error_code,
                request_id=self.request_id,
            )
            raise CheckoutRejectedError(e, current_product or "") from e
        except BaseException as e:
            # Cancellation included: reservations must not leak
            await self._release_reservations(draft, str(e) or type(e).__name__)
            raise

        draft.placed(order.id)
        logger.info(
            "Order placed",
            order_id=str(order.id),
            owner_id=identity.user_id,
            payment_method=payment_method.value,
            total=str(order.total_price),
            request_id=self.request_id,
        )
        return order

    def _settlement_currency(
        self, payment_method: PaymentMethod, payment_currency: str | None
    ) -> str:
        if payment_method.is_synchronous():
            return self.base_currency
        currency = (payment_currency or self.base_currency).upper()
        if currency not in self.invoice_currencies:
            raise UnsupportedCurrencyError(
                currency, payment_method.value, self.invoice_currencies
            )
        return currency

    async def _release_reservations(self, draft: OrderDraft, reason: str) -> None:
        """Give back every unit reserved by a failed checkout, newest first."""
        draft.fail(reason)
        for line in draft.reserved_in_release_order():
            try:
                await self.ledger.release(line.product_id, line.quantity)
            except Exception as e:
                # Keep releasing the rest; the original failure is re-raised
                logger.error(
                    "Failed to release reserved stock",
                    product_id=line.product_id,
                    quantity=line.quantity,
                    error=str(e),
                    request_id=self.request_id,
                )

    # -------------------------------------------------------------------------
    # Paying orders
    # -------------------------------------------------------------------------

    async def checkout(
        self,
        identity: Identity,
        lines: list[CartLine],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        payment_currency: str | None = None,
        payment_token: str | None = None,
        buyer_email: str | None = None,
    ) -> CheckoutPayment:
        """Place an order and start its payment in one call.

        Card orders without a payment token are only placed; the shopper
        pays them later with pay_order. A failed payment keeps the order,
        and the raised error carries its order_id so the shopper can retry.
        """
        order = await self.place_order(
            identity, lines, shipping_address, payment_method, payment_currency
        )
        if payment_method is PaymentMethod.CARD and not payment_token:
            return CheckoutPayment(order=order)

        try:
            return await self.pay_order(
                identity, str(order.id), payment_token=payment_token, buyer_email=buyer_email
            )
        except PaymentError as e:
            e.details["order_id"] = str(order.id)
            raise

    async def pay_order(
        self,
        identity: Identity,
        order_id: str,
        payment_token: str | None = None,
        buyer_email: str | None = None,
    ) -> CheckoutPayment:
        """Start payment for an order awaiting payment.

        Paying an already-paid order returns it unchanged.

        Raises:
            OrderNotFoundError: If the order does not exist.
            UnauthorizedAccessError: If identity may not access the order.
            InvalidStateTransitionError: If the order has expired.
            MissingPaymentTokenError: If a card order has no token.
            PaymentDeclinedError: If the card was declined.
            PaymentProviderError: If the provider failed.
        """
        order = await self.get_order(identity, order_id)
        if order.is_paid:
            return CheckoutPayment(order=order)
        if not order.status.is_payable():
            raise InvalidStateTransitionError(
                entity_type="Order",
                entity_id=str(order.id),
                current_state=order.status.value,
                target_state=OrderStatus.PAID.value,
            )

        gateway = self.gateways.for_method(order.payment_method)
        request = PaymentRequest(
            order_id=order.id,
            amount=order.total_price,
            payment_currency=order.payment_currency,
            payment_token=payment_token,
            notify_url=f"{settings.public_base_url}/api/payments/{gateway.provider}/webhook",
            redirect_url=f"{settings.public_base_url}/order/{order.id}",
            buyer_email=buyer_email,
            description=f"Order {order.id}",
        )

        logger.info(
            "Starting payment",
            order_id=str(order.id),
            provider=gateway.provider,
            amount=str(order.total_price),
            request_id=self.request_id,
        )
        outcome = await gateway.start_payment(request)

        if isinstance(outcome, SynchronousResult):
            try:
                order = await self.order_repo.mark_paid(order.id, outcome.confirmation, utcnow())
            except InvalidStateTransitionError:
                logger.error(
                    "Charged order is no longer payable",
                    order_id=str(order.id),
                    reference=outcome.confirmation.reference,
                    request_id=self.request_id,
                )
                raise
            return CheckoutPayment(order=order)

        order = await self.order_repo.attach_invoice(order.id, outcome.invoice)
        return CheckoutPayment(order=order, invoice=outcome.invoice)

    async def mark_paid(self, identity: Identity, order_id: str, reference: str) -> Order:
        """Mark a card order paid with a charge made by the client.

        The charge is looked up with the provider. It must be settled, carry
        this order id in its metadata, and match the order total and currency
        before the order changes. Untagged charges are refused, so one charge
        can never pay two orders.

        Raises:
            PaymentMethodMismatchError: If the order is not a card order.
            PaymentDeclinedError: If the charge is unknown or does not match.
            ConflictingConfirmationError: If paid with a different charge.
        """
        order = await self.get_order(identity, order_id)
        if order.payment_method is not PaymentMethod.CARD:
            raise PaymentMethodMismatchError(str(order.id), order.payment_method.value)

        gateway = self.gateways.for_method(PaymentMethod.CARD)
        confirmation = await gateway.retrieve_charge(reference)

        charged_order = confirmation.raw.get("order_id")
        charged_amount = confirmation.raw.get("amount")
        charged_currency = (confirmation.raw.get("currency") or "").upper()
        # A charge proves payment only when tagged with this order, total and currency
        if (
            charged_order != str(order.id)
            or charged_amount != order.total_price.amount_cents
            or charged_currency != order.payment_currency
        ):
            logger.warning(
                "Charge does not match order",
                order_id=str(order.id),
                reference=reference,
                charged_order=charged_order,
                charged_amount=charged_amount,
                charged_currency=charged_currency,
                request_id=self.request_id,
            )
            raise PaymentDeclinedError(
                confirmation.provider,
                "Payment does not match this order",
                details={"reference": reference},
            )

        try:
            return await self.order_repo.mark_paid(order.id, confirmation, utcnow())
        except ConflictingConfirmationError as e:
            logger.error(
                "Conflicting payment confirmation",
                request_id=self.request_id,
                **e.details,
            )
            raise

    # -------------------------------------------------------------------------
    # Fulfilment and reads
    # -------------------------------------------------------------------------

    async def mark_delivered(self, identity: Identity, order_id: str) -> Order:
        """Mark a paid order delivered (admin only)."""
        if not identity.is_admin:
            raise UnauthorizedAccessError("Not authorized as an admin")
        return await self.order_repo.mark_delivered(self._parse_id(order_id), utcnow())

    async def get_order(self, identity: Identity, order_id: str) -> Order:
        """Get an order visible to identity.

        Raises:
            OrderNotFoundError: If the order does not exist.
            UnauthorizedAccessError: If identity is neither owner nor admin.
        """
        order = await self.order_repo.find_by_id(self._parse_id(order_id))
        if order is None:
            raise OrderNotFoundError(order_id)
        if not identity.can_access(order.owner_id):
            logger.warning(
                "Order access denied",
                order_id=order_id,
                user_id=identity.user_id,
                request_id=self.request_id,
            )
            raise UnauthorizedAccessError()
        return order

    async def list_my_orders(self, identity: Identity) -> list[Order]:
        """Orders placed by identity, newest first."""
        return await self.order_repo.find_by_owner(identity.user_id)

    async def list_all_orders(self, identity: Identity) -> list[Order]:
        """Every order, newest first (admin only)."""
        if not identity.is_admin:
            raise UnauthorizedAccessError("Not authorized as an admin")
        return await self.order_repo.find_all()

    @staticmethod
    def _parse_id(order_id: str) -> OrderId:
        try:
            return OrderId.from_string(order_id)
        except ValueError as e:
            raise OrderNotFoundError(order_id) from e


# ============================================================================
# Service Factory
# ============================================================================


def get_checkout_service(request_id: str | None = None) -> CheckoutService:
    """Get checkout service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        CheckoutService instance.
    """
    return CheckoutService(request_id=request_id)
