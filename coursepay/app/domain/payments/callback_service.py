"""
Payment Callback Service.

Runs the full pipeline for a VNPay return or IPN request:

    verify signature -> apply state transition -> materialize enrollments
    -> derive instructor earnings (best effort) -> audit and notify

Enrollment and earning steps are idempotent and run again on replayed
success callbacks, so a crash between steps heals on the gateway's retry.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.app.core.exceptions import SignatureInvalidError
from coursepay.app.domain.payments.callback_verifier import verify_callback
from coursepay.app.domain.payments.enrollment_materializer import EnrollmentMaterializer
from coursepay.app.domain.payments.transaction_state import TransactionStateMachine
from coursepay.app.domain.payroll.earning_ledger import EarningLedger
from coursepay.app.models.order import OrderDetail
from coursepay.app.models.payment_enums import TransactionStatus
from coursepay.app.services.audit import AuditAction, log_event
from coursepay.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


@dataclass
class CallbackResult:
    """Plain snapshot of the stored outcome, safe to use after later rollbacks."""
    txn_ref: str
    transaction_id: int
    order_id: int
    status: TransactionStatus
    message: Optional[str]
    applied: bool
    course_id: Optional[int] = None
    enrolled_course_ids: List[int] = field(default_factory=list)
    earnings_created: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == TransactionStatus.SUCCESS


async def first_course_id(db: AsyncSession, order_id: int) -> Optional[int]:
    """Course of the order's first line, used in the buyer redirect."""
    result = await db.execute(
        select(OrderDetail.course_id)
        .where(OrderDetail.order_id == order_id)
        .order_by(OrderDetail.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


class PaymentCallbackService:

    @staticmethod
    async def process(db: AsyncSession, params: Mapping[str, str], hash_secret: str) -> CallbackResult:
        """
        Verify and apply a gateway callback.

        Args:
            db: Database session
            params: Normalized query parameters
            hash_secret: Merchant hash secret

        Returns:
            CallbackResult describing the stored outcome

        Raises:
            SignatureInvalidError: bad signature or malformed payload, nothing is written
            ResourceNotFoundError: unknown transaction reference
            AmountMismatchError: amount differs from the stored transaction
        """
        # 1. Verify
        verification = verify_callback(params, hash_secret)
        if not verification.valid:
            raise SignatureInvalidError()
        payload = verification.payload

        # 2. State transition (commits)
        transition = await TransactionStateMachine.apply_callback(db, payload)
        transaction, order = transition.transaction, transition.order

        result = CallbackResult(
            txn_ref=payload.txn_ref,
            transaction_id=transaction.id,
            order_id=order.id,
            status=transaction.status,
            message=transaction.message,
            applied=transition.applied,
            course_id=await first_course_id(db, order.id),
        )
        user_id, amount = order.user_id, transaction.amount

        if result.succeeded:
            # 3. Enrollments (commits)
            enrollments = await EnrollmentMaterializer.materialize(db, order)
            result.enrolled_course_ids = [e.course_id for e in enrollments]

            # 4. Earnings, never fails the payment
            try:
                derived = await EarningLedger.derive_from_transaction(db, result.transaction_id)
                result.earnings_created = derived.created
            except Exception:
                await db.rollback()
                logger.exception(
                    f"Earning derivation failed for transaction {result.transaction_id}",
                    extra={"transaction_id": result.transaction_id, "txn_ref": payload.txn_ref},
                )

        # 5. Audit and notify once, on the call that moved the state
        if transition.applied:
            await log_event(
                db=db,
                action=AuditAction.PAYMENT_COMPLETED if result.succeeded else AuditAction.PAYMENT_FAILED,
                entity_type="transaction",
                entity_id=result.transaction_id,
                metadata={
                    "order_id": result.order_id,
                    "txn_ref": payload.txn_ref,
                    "response_code": payload.response_code,
                    "amount": str(amount),
                },
            )
            await NotificationService.notify_payment_result(
                db,
                user_id=user_id,
                order_id=result.order_id,
                success=result.succeeded,
                amount=amount,
                message=payload.message,
            )

        return result
