"""
FastAPI application entry point.

This is the main application that ties together all components:
- API routes for risk scoring and verification requests
- Ledger event watcher lifecycle
- CORS configuration for frontend access
- Error handling and logging
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from invoice_oracle import __version__
from invoice_oracle.api.dependencies import close_services, get_oracle_node, get_orchestrator
from invoice_oracle.api.routes import health, invoices, scoring, verification
from invoice_oracle.api.schemas import ErrorResponse
from invoice_oracle.config import get_settings
from invoice_oracle.domain.errors import InvoiceOracleError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown tasks:
    - Start polling the ledger for verification events
    - Serve oracle requests in process when the ledger is in memory
    - Stop the background tasks and close network clients on shutdown
    """
    settings = get_settings()

    logger.info(f"Starting Invoice Oracle v{__version__}")
    logger.info(f"Ledger backend: {settings.ledger_backend}")
    logger.info(f"Debug mode: {settings.debug}")

    tasks = [asyncio.create_task(get_orchestrator().watch(settings.event_poll_interval))]
    if settings.ledger_backend == "memory":
        tasks.append(asyncio.create_task(get_oracle_node().watch(settings.event_poll_interval)))

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down Invoice Oracle")
    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task
    await close_services()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance ready to serve requests.
    """
    settings = get_settings()

    app = FastAPI(
        title="Invoice Oracle API",
        description=(
            "Invoice credit-risk scoring and oracle verification.\n\n"
            "Scores trade invoices from debtor, amount, term and market data "
            "and tracks verification requests through the ledger."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(invoices.router, prefix="/api/v1")
    app.include_router(scoring.router, prefix="/api/v1")
    app.include_router(verification.router, prefix="/api/v1")

    @app.exception_handler(InvoiceOracleError)
    async def oracle_error_handler(request: Request, exc: InvoiceOracleError):
        """Domain errors that escaped a route."""
        logger.error(f"{exc.code}: {exc}")
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error=exc.code, detail=str(exc), code=exc.code).model_dump(),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler for unhandled errors."""
        logger.exception(f"Unhandled error: {exc}")

        # Don't expose internal errors in production
        if settings.debug:
            detail = str(exc)
        else:
            detail = "An internal error occurred"

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal Server Error", detail=detail).model_dump(),
        )

    return app


# Create the application instance
app = create_app()


# Development server entry point
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "invoice_oracle.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
