"""Payment provider webhook endpoints.

Provides:
- POST /api/payments/{provider}/webhook - receive provider callbacks

The body is read raw so the signature is checked against the exact
bytes the provider signed.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Request, status

from storefront.api.middleware import error_envelope
from storefront.api.schemas import ErrorResponse, WebhookResponse
from storefront.application.webhook_service import (
    RejectionReason,
    WebhookService,
    get_webhook_service,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/payments", tags=["Payments"])


# Rejections that are reported without detail
_OPAQUE_REJECTIONS = {RejectionReason.UNKNOWN_PROVIDER, RejectionReason.INVALID_SIGNATURE}

_REJECTION_STATUS = {
    RejectionReason.UNKNOWN_PROVIDER: status.HTTP_404_NOT_FOUND,
    RejectionReason.INVALID_SIGNATURE: status.HTTP_401_UNAUTHORIZED,
    RejectionReason.MALFORMED_PAYLOAD: status.HTTP_400_BAD_REQUEST,
    RejectionReason.UNKNOWN_ORDER: status.HTTP_404_NOT_FOUND,
    RejectionReason.CONFLICTING_CONFIRMATION: status.HTTP_409_CONFLICT,
    RejectionReason.ORDER_EXPIRED: status.HTTP_409_CONFLICT,
}


def get_service() -> WebhookService:
    """Get webhook service."""
    return get_webhook_service()


@router.post(
    "/{provider}/webhook",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Receive payment provider webhook",
)
async def receive_provider_webhook(
    provider: str,
    request: Request,
    service: Annotated[WebhookService, Depends(get_service)],
):
    """Verify a provider callback and reconcile its order.

    Redelivered callbacks are accepted again without changing the order.
    """
    request_id = getattr(request.state, "request_id", None)
    raw_payload = await request.body()

    gateway = service.gateways.for_provider(provider)
    signature = request.headers.get(gateway.signature_header) if gateway else None

    result = await service.handle_provider_callback(
        provider, raw_payload, signature, correlation_id=request_id
    )

    if result.accepted:
        return WebhookResponse(received=True, duplicate=result.duplicate)

    logger.info("Webhook rejected", provider=provider, reason=result.reason.value)
    if result.reason in _OPAQUE_REJECTIONS:
        error_code, message = "WEBHOOK_REJECTED", "Webhook rejected"
    else:
        error_code, message = result.reason.value.upper(), "Webhook not applied"

    return error_envelope(request, _REJECTION_STATUS[result.reason], error_code, message)
