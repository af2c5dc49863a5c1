"""
FastAPI Application Entry Point.

This is the main application file for the Skymap Courier Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from skymap.app.core.config import settings
from skymap.app.api.v1.router import router as api_v1_router
from skymap.app.core.observability import ObservabilityMiddleware, configure_logging
from skymap.app.db.session import engine, Base
from skymap.app.services.notification_service import notification_dispatcher
from skymap.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from skymap.app.models.delivery_fee_package import DeliveryFeePackage
from skymap.app.models.business import Business
from skymap.app.models.user import User
from skymap.app.models.delivery import Delivery
from skymap.app.models.delivery_event import DeliveryEvent
from skymap.app.models.invoice import Invoice
from skymap.app.models.charge import Charge
from skymap.app.models.invoice_item import InvoiceItem
from skymap.app.models.dlq import DeadLetterQueue


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables on startup.
    2. Waits for in-flight notifications on shutdown.
    """
    configure_logging(settings.log_level)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await notification_dispatcher.drain()
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Courier platform backend: delivery lifecycle and billing",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
