"""Order API endpoints.

Provides endpoints for the checkout and order lifecycle:
- POST /api/orders - place an order and start its payment
- GET /api/orders/mine - the caller's orders
- GET /api/orders - all orders (admin)
- GET /api/orders/{id} - order details
- POST /api/orders/{id}/payments - start or retry payment
- PUT /api/orders/{id}/pay - mark a card order paid with a client-side charge
- PUT /api/orders/{id}/deliver - mark an order delivered (admin)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from storefront.api.schemas import (
    CheckoutResponse,
    CreateOrderRequest,
    ErrorResponse,
    InvoiceSchema,
    MarkPaidRequest,
    OrderResponse,
    OrdersListResponse,
    PayOrderRequest,
)
from storefront.application.checkout_service import (
    CartLine,
    CheckoutPayment,
    CheckoutService,
    get_checkout_service,
)
from storefront.domain.exceptions import AuthenticationError
from storefront.domain.value_objects import Identity, ShippingAddress

router = APIRouter(prefix="/api/orders", tags=["Orders"])


# ============================================================================
# Dependencies
# ============================================================================


def get_service(request: Request) -> CheckoutService:
    """Get checkout service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_checkout_service(request_id=request_id)


def get_identity(request: Request) -> Identity:
    """Identity resolved by the authentication middleware."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise AuthenticationError()
    return identity


ServiceDep = Annotated[CheckoutService, Depends(get_service)]
IdentityDep = Annotated[Identity, Depends(get_identity)]


def payment_to_response(payment: CheckoutPayment) -> CheckoutResponse:
    return CheckoutResponse(
        order=OrderResponse.from_order(payment.order),
        invoice=InvoiceSchema.from_handle(payment.invoice) if payment.invoice else None,
        payment_url=payment.payment_url,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid cart, address or currency"},
        402: {"model": ErrorResponse, "description": "Card declined, order kept"},
        404: {"model": ErrorResponse, "description": "Product not found"},
        409: {"model": ErrorResponse, "description": "Insufficient stock"},
        502: {"model": ErrorResponse, "description": "Payment provider failure, order kept"},
    },
    summary="Place an order",
)
async def create_order(
    body: CreateOrderRequest,
    identity: IdentityDep,
    service: ServiceDep,
) -> CheckoutResponse:
    """Reserve stock, store the order and start its payment.

    Card orders with a payment_token are charged immediately. Card
    orders without one are only placed. Crypto orders get an invoice
    whose payment_url the shopper must visit.
    """
    payment = await service.checkout(
        identity,
        lines=[CartLine(line.product_id, line.quantity) for line in body.order_items],
        shipping_address=ShippingAddress(**body.shipping_address.model_dump()),
        payment_method=body.payment_method,
        payment_currency=body.payment_currency,
        payment_token=body.payment_token,
        buyer_email=body.buyer_email,
    )
    return payment_to_response(payment)


@router.get("/mine", response_model=OrdersListResponse, summary="List my orders")
async def list_my_orders(identity: IdentityDep, service: ServiceDep) -> OrdersListResponse:
    orders = await service.list_my_orders(identity)
    return OrdersListResponse(
        items=[OrderResponse.from_order(o) for o in orders],
        total=len(orders),
    )


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={403: {"model": ErrorResponse}},
    summary="List all orders (admin)",
)
async def list_orders(identity: IdentityDep, service: ServiceDep) -> OrdersListResponse:
    orders = await service.list_all_orders(identity)
    return OrdersListResponse(
        items=[OrderResponse.from_order(o) for o in orders],
        total=len(orders),
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get order details",
)
async def get_order(order_id: str, identity: IdentityDep, service: ServiceDep) -> OrderResponse:
    order = await service.get_order(identity, order_id)
    return OrderResponse.from_order(order)


@router.post(
    "/{order_id}/payments",
    response_model=CheckoutResponse,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Order no longer payable"},
        502: {"model": ErrorResponse},
    },
    summary="Start or retry payment",
)
async def pay_order(
    order_id: str,
    body: PayOrderRequest,
    identity: IdentityDep,
    service: ServiceDep,
) -> CheckoutResponse:
    payment = await service.pay_order(
        identity,
        order_id,
        payment_token=body.payment_token,
        buyer_email=body.buyer_email,
    )
    return payment_to_response(payment)


@router.put(
    "/{order_id}/pay",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Paid with a different charge"},
    },
    summary="Mark a card order paid",
)
async def mark_paid(
    order_id: str,
    body: MarkPaidRequest,
    identity: IdentityDep,
    service: ServiceDep,
) -> OrderResponse:
    """Confirm a card charge the client made directly with the provider.

    The charge is re-read from the provider before the order changes.
    """
    order = await service.mark_paid(identity, order_id, body.reference)
    return OrderResponse.from_order(order)


@router.put(
    "/{order_id}/deliver",
    response_model=OrderResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Mark an order delivered (admin)",
)
async def mark_delivered(
    order_id: str, identity: IdentityDep, service: ServiceDep
) -> OrderResponse:
    order = await service.mark_delivered(identity, order_id)
    return OrderResponse.from_order(order)
