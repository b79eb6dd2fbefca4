"""
Health check endpoint.

Provides system health status for monitoring and load balancers.
"""

from fastapi import APIRouter

from invoice_oracle import __version__
from invoice_oracle.api.schemas import HealthResponse
from invoice_oracle.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Check system health.

    Reports the configured ledger backend for monitoring dashboards
    and load balancer health checks.
    """
    settings = get_settings()

    return HealthResponse(
        status="healthy",
        version=__version__,
        ledger_backend=settings.ledger_backend,
        xrpl_network=settings.xrpl_network,
    )
