"""
Transaction/Order state machine.

Applies a verified gateway callback to the stored Transaction and its Order.
Both rows leave PENDING together in one database transaction, guarded by a
compare-and-set on the Transaction status so duplicate or out-of-order
callbacks can never move a terminal transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.app.core.exceptions import AmountMismatchError, ResourceNotFoundError
from coursepay.app.domain.payments.callback_verifier import CallbackOutcome, CallbackPayload
from coursepay.app.models.order import Order
from coursepay.app.models.payment_enums import OrderStatus, TransactionStatus
from coursepay.app.models.transaction import Transaction

logger = logging.getLogger(__name__)

_TRANSACTION_TARGET = {
    CallbackOutcome.SUCCESS: TransactionStatus.SUCCESS,
    CallbackOutcome.FAILED: TransactionStatus.FAILED,
}

_ORDER_TARGET = {
    CallbackOutcome.SUCCESS: OrderStatus.COMPLETED,
    CallbackOutcome.FAILED: OrderStatus.CANCELED,
}


@dataclass
class TransitionResult:
    """Outcome of applying a callback. `applied` is False on replay."""
    transaction: Transaction
    order: Order
    applied: bool

    @property
    def succeeded(self) -> bool:
        return self.transaction.status == TransactionStatus.SUCCESS


class TransactionStateMachine:

    @staticmethod
    async def get_by_ref(db: AsyncSession, txn_ref: str) -> Transaction:
        """
        Raises:
            ResourceNotFoundError: if no transaction carries this gateway reference
        """
        result = await db.execute(
            select(Transaction).where(Transaction.gateway_ref == txn_ref)
        )
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise ResourceNotFoundError("Transaction", txn_ref)
        return transaction

    @staticmethod
    async def apply_callback(db: AsyncSession, payload: CallbackPayload) -> TransitionResult:
        """
        Move a PENDING transaction and its order to their terminal states.

        Flow:
        1. Look up the Transaction by gateway reference
        2. Reject amount mismatches without touching state
        3. Compare-and-set Transaction PENDING -> SUCCESS/FAILED
        4. Compare-and-set Order PENDING -> COMPLETED/CANCELED
        5. Commit both together

        A transaction that is already terminal is returned unchanged with
        `applied=False`.

        Args:
            db: Database session (committed here)
            payload: Verified callback data

        Returns:
            TransitionResult with refreshed transaction and order

        Raises:
            ResourceNotFoundError: unknown gateway reference
            AmountMismatchError: callback amount differs from the stored amount
        """
        # 1. Lookup
        transaction = await TransactionStateMachine.get_by_ref(db, payload.txn_ref)

        # 2. Amount guard
        if Decimal(transaction.amount) != payload.amount:
            logger.warning(
                "Callback amount mismatch",
                extra={"txn_ref": payload.txn_ref, "transaction_id": transaction.id},
            )
            raise AmountMismatchError(expected=transaction.amount, received=payload.amount)

        outcome = payload.outcome
        values = {
            "status": _TRANSACTION_TARGET[outcome],
            "response_code": payload.response_code,
            "message": payload.message,
            "gateway_transaction_no": payload.gateway_transaction_no,
            "bank_code": payload.bank_code,
        }
        if outcome == CallbackOutcome.SUCCESS:
            values["paid_at"] = datetime.now(timezone.utc)

        # 3. Transaction CAS
        result = await db.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == TransactionStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1

        if applied:
            # 4. Order CAS, same unit of work
            await db.execute(
                update(Order)
                .where(
                    Order.id == transaction.order_id,
                    Order.status == OrderStatus.PENDING,
                )
                .values(status=_ORDER_TARGET[outcome])
                .execution_options(synchronize_session=False)
            )
            # 5. Commit
            await db.commit()
            logger.info(
                f"Transaction {transaction.id} -> {values['status'].value}",
                extra={"txn_ref": payload.txn_ref, "transaction_id": transaction.id},
            )
        else:
            await db.rollback()
            logger.info(
                f"Replayed callback for terminal transaction {transaction.id}",
                extra={"txn_ref": payload.txn_ref, "transaction_id": transaction.id},
            )

        await db.refresh(transaction)
        order = await db.get(Order, transaction.order_id, populate_existing=True)
        return TransitionResult(transaction=transaction, order=order, applied=applied)
