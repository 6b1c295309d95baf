"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from coursepay.app.api.v1.endpoints import payments, admin_settlement, instructor_earnings

router = APIRouter()

# Checkout and VNPay callbacks
router.include_router(payments.router)

# Admin payroll
router.include_router(admin_settlement.router)

# Instructor self-service
router.include_router(instructor_earnings.router)
