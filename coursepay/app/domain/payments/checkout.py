"""
Checkout Service.

Creates the Order, its single OrderDetail and the pending Transaction for a
course purchase, and returns the signed VNPay URL the buyer is sent to.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.app.core.exceptions import BadRequestError, ResourceNotFoundError
from coursepay.app.domain.payments.vnpay_client import PaymentRequest, VNPayClient
from coursepay.app.models.course import Course
from coursepay.app.models.enrollment import Enrollment
from coursepay.app.models.order import Order, OrderDetail
from coursepay.app.models.payment_enums import OrderStatus, PaymentMethod, TransactionStatus
from coursepay.app.models.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    transaction: Transaction
    course: Course
    payment_url: str
    reused: bool = False


def new_txn_ref() -> str:
    """Unique gateway reference: 32 hex chars of uuid4 plus 8 random hex chars."""
    return uuid.uuid4().hex + secrets.token_hex(4)


def checkout_expired(transaction: Transaction, expire_minutes: int, now: Optional[datetime] = None) -> bool:
    """True once the payment URL's vnp_ExpireDate has passed."""
    now = now or datetime.now(timezone.utc)
    created_at = transaction.created_at
    # SQLite hands back naive UTC timestamps
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at + timedelta(minutes=expire_minutes) <= now


class CheckoutService:

    @staticmethod
    async def _expire_checkout(db: AsyncSession, order: Order, transaction: Transaction) -> bool:
        """
        Close an abandoned checkout: transaction PENDING -> FAILED, order PENDING -> CANCELED.

        Guarded like a gateway callback, so a callback that lands first wins.
        """
        result = await db.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == TransactionStatus.PENDING,
            )
            .values(status=TransactionStatus.FAILED, message="Checkout expired")
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        await db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.status == OrderStatus.PENDING,
            )
            .values(status=OrderStatus.CANCELED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info(
            f"Expired checkout for order {order.id}",
            extra={"txn_ref": transaction.gateway_ref, "transaction_id": transaction.id},
        )
        return True

    @staticmethod
    async def _pending_checkout(db: AsyncSession, user_id: int, course_id: int):
        result = await db.execute(
            select(Order, Transaction)
            .join(OrderDetail, OrderDetail.order_id == Order.id)
            .join(Transaction, Transaction.order_id == Order.id)
            .where(
                Order.user_id == user_id,
                Order.status == OrderStatus.PENDING,
                OrderDetail.course_id == course_id,
                Transaction.status == TransactionStatus.PENDING,
            )
            .order_by(Order.id.desc())
            .limit(1)
        )
        return result.first()

    @staticmethod
    async def create_payment(
        db: AsyncSession,
        client: VNPayClient,
        user_id: int,
        course_id: int,
        ip_addr: str
    ) -> CheckoutResult:
        """
        Start a VNPay payment for one course.

        A buyer with a pending checkout for the same course gets that
        checkout back instead of a second order, as long as its payment URL
        has not expired. An expired one is closed as FAILED/CANCELED and a
        fresh checkout is created.

        Raises:
            ResourceNotFoundError: unknown course
            BadRequestError: free course, own course or already enrolled
        """
        course = await db.get(Course, course_id)
        if not course:
            raise ResourceNotFoundError("Course", course_id)

        if Decimal(course.price) <= 0:
            raise BadRequestError("This course is free. Please use direct enrollment.")

        if course.instructor_id == user_id:
            raise BadRequestError("Cannot enroll in your own course")

        enrolled = await db.execute(
            select(Enrollment.id).where(
                Enrollment.user_id == user_id,
                Enrollment.course_id == course_id,
            )
        )
        if enrolled.scalar_one_or_none():
            raise BadRequestError("Already enrolled in this course")

        pending = await CheckoutService._pending_checkout(db, user_id, course_id)
        if pending:
            order, transaction = pending
            if checkout_expired(transaction, client.expire_minutes):
                if not await CheckoutService._expire_checkout(db, order, transaction):
                    # A callback settled it first; start over with fresh state
                    return await CheckoutService.create_payment(db, client, user_id, course_id, ip_addr)
                pending = None

        if pending:
            return CheckoutResult(
                order=order,
                transaction=transaction,
                course=course,
                payment_url=transaction.payment_url,
                reused=True,
            )

        order = Order(
            user_id=user_id,
            total_amount=course.price,
            status=OrderStatus.PENDING,
            payment_method=PaymentMethod.VNPAY,
        )
        db.add(order)
        await db.flush()

        db.add(OrderDetail(order_id=order.id, course_id=course.id, price=course.price))

        transaction = Transaction(
            order_id=order.id,
            amount=course.price,
            status=TransactionStatus.PENDING,
            gateway_ref=new_txn_ref(),
        )
        db.add(transaction)
        await db.flush()

        transaction.payment_url = client.create_payment_url(
            PaymentRequest(
                amount=Decimal(course.price),
                txn_ref=transaction.gateway_ref,
                ip_addr=ip_addr,
                order_description=f"Thanh toán khóa học: {course.title}",
            )
        )
        await db.commit()

        logger.info(
            f"Checkout created order {order.id} for course {course.id}",
            extra={"txn_ref": transaction.gateway_ref, "transaction_id": transaction.id},
        )
        return CheckoutResult(order=order, transaction=transaction, course=course, payment_url=transaction.payment_url)

    @staticmethod
    async def get_order_for_buyer(db: AsyncSession, order_id: int, user_id: int):
        """
        Order, its transaction and course ids, visible to the buyer only.

        Raises:
            ResourceNotFoundError: unknown order, or an order of another user
        """
        order = await db.get(Order, order_id, populate_existing=True)
        if not order or order.user_id != user_id:
            raise ResourceNotFoundError("Order", order_id)

        transaction = await db.execute(
            select(Transaction).where(Transaction.order_id == order_id)
        )
        course_ids = await db.execute(
            select(OrderDetail.course_id).where(OrderDetail.order_id == order_id).order_by(OrderDetail.id)
        )
        return order, transaction.scalar_one_or_none(), course_ids.scalars().all()
