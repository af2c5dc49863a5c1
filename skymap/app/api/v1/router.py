"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from skymap.app.api.v1.endpoints import deliveries, invoices

router = APIRouter()

# Delivery lifecycle endpoints
router.include_router(deliveries.router)

# Billing endpoints
router.include_router(invoices.router)
