"""
Payment API Endpoints.

Checkout for buyers plus the two VNPay callback entry points:
- /vnpay-return: the buyer's browser comes back here and is redirected to the frontend
- /vnpay-ipn: VNPay's server-to-server notification, answered with RspCode/Message
"""

import logging
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.app.core.config import settings
from coursepay.app.core.dependencies import get_current_user
from coursepay.app.core.exceptions import (
    AmountMismatchError,
    AppException,
    ResourceNotFoundError,
    SignatureInvalidError,
)
from coursepay.app.db.session import get_db
from coursepay.app.domain.payments.callback_service import PaymentCallbackService
from coursepay.app.domain.payments.callback_verifier import normalize_query
from coursepay.app.domain.payments.checkout import CheckoutService
from coursepay.app.domain.payments.vnpay_client import VNPayClient, get_vnpay_client
from coursepay.app.schemas.payment import (
    IPNResponse,
    OrderStatusResponse,
    PaymentCreate,
    PaymentCreateResponse,
    TransactionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "127.0.0.1"


def frontend_callback_url(**params) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None}, quote_via=quote)
    return f"{settings.frontend_url}/payments/callback?{query}"


@router.post("/create", response_model=PaymentCreateResponse)
async def create_payment(
    payload: PaymentCreate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    client: VNPayClient = Depends(get_vnpay_client),
    db: AsyncSession = Depends(get_db)
):
    """
    Start a VNPay checkout for a course.

    Returns the signed payment URL. A pending checkout for the same course is
    returned as-is.
    """
    result = await CheckoutService.create_payment(
        db,
        client,
        user_id=current_user["user_id"],
        course_id=payload.course_id,
        ip_addr=client_ip(request),
    )
    return PaymentCreateResponse(
        order_id=result.order.id,
        transaction_id=result.transaction.id,
        payment_url=result.payment_url,
        amount=result.transaction.amount,
        course_id=result.course.id,
        course_title=result.course.title,
        reused=result.reused,
    )


@router.get("/orders/{order_id}", response_model=OrderStatusResponse)
async def get_order_status(
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Payment status of one of the caller's orders."""
    order, transaction, course_ids = await CheckoutService.get_order_for_buyer(
        db, order_id, current_user["user_id"]
    )
    return OrderStatusResponse(
        order_id=order.id,
        status=order.status,
        total_amount=order.total_amount,
        created_at=order.created_at,
        course_ids=course_ids,
        transaction=TransactionResponse.model_validate(transaction) if transaction else None,
    )


@router.get("/vnpay-return")
async def vnpay_return(
    request: Request,
    client: VNPayClient = Depends(get_vnpay_client),
    db: AsyncSession = Depends(get_db)
):
    """
    Browser return URL.

    Valid callbacks redirect (302) to the frontend with the outcome; a bad
    signature is a 400 and an unknown reference a 404, both without redirect.
    """
    params = normalize_query(request.query_params.multi_items())
    try:
        result = await PaymentCallbackService.process(db, params, client.hash_secret)
    except AppException:
        raise
    except Exception:
        logger.exception("VNPay return processing failed", extra={"txn_ref": params.get("vnp_TxnRef")})
        return RedirectResponse(frontend_callback_url(payment="error"), status_code=302)

    if result.succeeded:
        url = frontend_callback_url(
            payment="success",
            courseId=result.course_id,
            txnRef=result.txn_ref,
        )
    else:
        url = frontend_callback_url(
            payment="failed",
            courseId=result.course_id,
            txnRef=result.txn_ref,
            error=result.message,
        )
    return RedirectResponse(url, status_code=302)


@router.get("/vnpay-ipn", response_model=IPNResponse)
async def vnpay_ipn(
    request: Request,
    client: VNPayClient = Depends(get_vnpay_client),
    db: AsyncSession = Depends(get_db)
):
    """
    VNPay Instant Payment Notification.

    Always answers 200 with the RspCode protocol VNPay expects.
    """
    params = normalize_query(request.query_params.multi_items())
    try:
        result = await PaymentCallbackService.process(db, params, client.hash_secret)
    except SignatureInvalidError:
        return IPNResponse(RspCode="97", Message="Invalid signature")
    except ResourceNotFoundError:
        return IPNResponse(RspCode="01", Message="Order not found")
    except AmountMismatchError:
        return IPNResponse(RspCode="04", Message="Invalid amount")
    except Exception:
        logger.exception("VNPay IPN processing failed", extra={"txn_ref": params.get("vnp_TxnRef")})
        return IPNResponse(RspCode="99", Message="Unknown error")

    if not result.applied:
        return IPNResponse(RspCode="02", Message="Order already confirmed")
    return IPNResponse(RspCode="00", Message="Confirm Success")
