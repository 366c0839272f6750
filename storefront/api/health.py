"""Liveness and readiness probes."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from storefront.infrastructure.config import settings
from storefront.infrastructure.payment_gateways import get_payment_gateways

router = APIRouter()


class HealthResponse(BaseModel):
    """Liveness probe response."""

    status: str
    service: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness probe response with one entry per dependency."""

    status: str
    checks: dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service="storefront-checkout",
        version=settings.api_version,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse}},
)
async def readiness_check():
    """Report whether orders can be taken.

    The database, when configured, must answer a trivial query. The
    payment providers are listed but not called.
    """
    checks = {"payment_providers": ",".join(get_payment_gateways().providers())}

    if settings.use_database:
        from storefront.infrastructure.database import engine

        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"unavailable: {e}"
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unavailable", "checks": checks},
            )
    else:
        checks["database"] = "in-memory"

    return ReadinessResponse(status="ready", checks=checks)
