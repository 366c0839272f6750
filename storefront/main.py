"""Storefront API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.api.health import router as health_router
from storefront.api.middleware import error_envelope, setup_middleware
from storefront.api.orders import router as orders_router
from storefront.api.payments import router as payments_router
from storefront.application.expiry_service import get_expiry_service
from storefront.domain.exceptions import DomainError
from storefront.infrastructure.config import settings
from storefront.infrastructure.logging_config import configure_logging
from storefront.infrastructure.payment_gateways import get_payment_gateways

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    # Startup
    configure_logging()
    logger.info(
        "Starting storefront API",
        version=settings.api_version,
        debug=settings.debug,
        use_database=settings.use_database,
    )

    if settings.use_database and settings.create_tables:
        from storefront.infrastructure.database import create_tables

        await create_tables()
        logger.info("Database tables ensured")

    gateways = get_payment_gateways()
    logger.info("Payment providers configured", providers=gateways.providers())

    sweeper = None
    if settings.expiry_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            get_expiry_service().run_forever(settings.expiry_sweep_interval_seconds)
        )

    yield

    # Shutdown
    logger.info("Shutting down storefront API")
    if sweeper:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await gateways.close()
    if settings.use_database:
        from storefront.infrastructure.database import engine

        await engine.dispose()


app = FastAPI(
    title="Storefront Checkout API",
    description="Order placement and payment settlement",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request ID and bearer authentication
setup_middleware(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(orders_router)
app.include_router(payments_router)


# ============================================================================
# Exception Handlers
# ============================================================================


# HTTP status per domain error code; unlisted codes are internal errors
ERROR_STATUS = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "EMPTY_CART": status.HTTP_400_BAD_REQUEST,
    "INVALID_QUANTITY": status.HTTP_400_BAD_REQUEST,
    "INVALID_ADDRESS": status.HTTP_400_BAD_REQUEST,
    "UNSUPPORTED_CURRENCY": status.HTTP_400_BAD_REQUEST,
    "MISSING_PAYMENT_TOKEN": status.HTTP_400_BAD_REQUEST,
    "PAYMENT_METHOD_MISMATCH": status.HTTP_400_BAD_REQUEST,
    "CURRENCY_MISMATCH": status.HTTP_400_BAD_REQUEST,
    "PRODUCT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INSUFFICIENT_STOCK": status.HTTP_409_CONFLICT,
    "ORDER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CONFLICTING_CONFIRMATION": status.HTTP_409_CONFLICT,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "UNAUTHORIZED": status.HTTP_401_UNAUTHORIZED,
    "PAYMENT_DECLINED": status.HTTP_402_PAYMENT_REQUIRED,
    "PAYMENT_PROVIDER_ERROR": status.HTTP_502_BAD_GATEWAY,
}


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    """Answer a domain error with its mapped status."""
    status_code = ERROR_STATUS.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(
            "Request failed",
            path=request.url.path,
            error_code=exc.error_code,
            error=exc.message,
        )
    return error_envelope(request, status_code, exc.error_code, exc.message, exc.details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Wrap framework errors (unknown route, bad method) in the envelope."""
    return error_envelope(request, exc.status_code, "ERROR", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Hide unexpected failures behind INTERNAL_ERROR."""
    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return error_envelope(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An internal error occurred",
    )
