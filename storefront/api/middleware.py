"""API middleware for the storefront.

Provides:
- Request ID correlation and access logging
- Bearer token authentication
- The error envelope shared by every error response
"""

import time
from typing import Any, Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.domain.exceptions import AuthenticationError
from storefront.infrastructure.identity import TokenVerifier

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


def error_envelope(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the {error_code, message, details, request_id} error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details or {},
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=headers,
    )


# ============================================================================
# Request ID Middleware
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags each request with an ID and logs its outcome.

    The ID is taken from X-Request-ID when the client sends one. It is
    stored on request.state, bound into the structlog context and echoed
    in the response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


# ============================================================================
# Authentication Middleware
# ============================================================================


PUBLIC_PATHS = {"/health", "/ready", "/openapi.json"}

# Provider webhooks carry a provider signature instead of a bearer token
PUBLIC_PREFIXES = ("/api/payments/", "/docs", "/redoc")


def is_public(path: str) -> bool:
    path = path.rstrip("/") or "/"
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


class AuthMiddleware(BaseHTTPMiddleware):
    """Puts the caller's Identity on request.state.identity.

    Protected paths need "Authorization: Bearer <token>" with a token the
    verifier accepts; anything else is answered with 401 here.
    """

    def __init__(self, app, verifier: TokenVerifier | None = None) -> None:
        super().__init__(app)
        self.verifier = verifier or TokenVerifier()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if is_public(request.url.path):
            return await call_next(request)

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            logger.warning("Request without bearer token", path=request.url.path)
            return self._unauthorized(request, "Not authorized, no token")

        try:
            identity = self.verifier.verify(token.strip())
        except AuthenticationError as e:
            logger.warning("Bearer token rejected", path=request.url.path)
            return self._unauthorized(request, e.message)

        request.state.identity = identity
        structlog.contextvars.bind_contextvars(user_id=identity.user_id)
        try:
            return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("user_id")

    @staticmethod
    def _unauthorized(request: Request, message: str) -> JSONResponse:
        return error_envelope(
            request,
            status.HTTP_401_UNAUTHORIZED,
            "UNAUTHORIZED",
            message,
            headers={"WWW-Authenticate": "Bearer"},
        )


def setup_middleware(app: FastAPI) -> None:
    """Install authentication inside request ID correlation.

    The last middleware added runs first, so every response, 401s
    included, carries the request ID.
    """
    app.add_middleware(AuthMiddleware)
    app.add_middleware(RequestIdMiddleware)
