"""
FastAPI Application Entry Point.

This is the main application file for the Course Payment Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from coursepay.app.core.config import settings
from coursepay.app.api.v1.router import router as api_v1_router
from coursepay.app.core.observability import ObservabilityMiddleware, setup_logging
from coursepay.app.db.session import engine, Base
from coursepay.app.domain.payments.vnpay_client import get_vnpay_client
from coursepay.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from coursepay.app.models.user import User
from coursepay.app.models.course import Course
from coursepay.app.models.order import Order, OrderDetail
from coursepay.app.models.transaction import Transaction
from coursepay.app.models.enrollment import Enrollment
from coursepay.app.models.settlement_batch import InstructorSettlementBatch
from coursepay.app.models.instructor_earning import InstructorEarning
from coursepay.app.models.audit_log import AuditLog
from coursepay.app.models.notification import Notification

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Fails fast if the VNPay merchant configuration is incomplete.
    2. Creates database tables on startup.
    """
    get_vnpay_client()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Course payments, enrollments and instructor payroll",
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
