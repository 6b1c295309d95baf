"""
Earning Ledger (Domain Logic).

Derives one InstructorEarning per sold course line once its transaction has
succeeded, splitting the captured price into platform fee and instructor net.
Derivation is idempotent: the unique order_detail_id turns a second attempt
into a skipped insert.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.app.core.config import settings
from coursepay.app.core.exceptions import InvalidStateError, ResourceNotFoundError
from coursepay.app.db.upsert import dialect_insert
from coursepay.app.models.course import Course
from coursepay.app.models.instructor_earning import InstructorEarning
from coursepay.app.models.order import OrderDetail
from coursepay.app.models.payment_enums import EarningStatus, TransactionStatus
from coursepay.app.models.transaction import Transaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def split_amount(gross: Decimal, fee_rate: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Split a gross amount into (platform_fee, net).

    The fee is rounded half-up to 2 decimal places and the net is the exact
    remainder, so fee + net == gross always holds.
    """
    gross = Decimal(gross).quantize(CENT)
    fee = (gross * Decimal(fee_rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return fee, gross - fee


def payroll_timezone() -> timezone:
    return timezone(timedelta(hours=settings.payroll_utc_offset_hours))


def earning_month(paid_at: datetime) -> str:
    """
    Payroll month (YYYY-MM) of a payment on the merchant's clock.

    Naive timestamps, as SQLite returns them, are read as UTC.
    """
    if paid_at.tzinfo is None:
        paid_at = paid_at.replace(tzinfo=timezone.utc)
    return paid_at.astimezone(payroll_timezone()).strftime("%Y-%m")


@dataclass
class DerivationResult:
    created: int
    skipped: int
    earnings: List[InstructorEarning] = field(default_factory=list)


@dataclass
class SyncResult:
    processed: int = 0
    total_created: int = 0
    total_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


class EarningLedger:

    @staticmethod
    async def derive_from_transaction(
        db: AsyncSession,
        transaction_id: int,
        fee_rate: Optional[Decimal] = None
    ) -> DerivationResult:
        """
        Create InstructorEarning rows for every line of a successful transaction.

        Flow:
        1. Validate Transaction state (SUCCESS, paid_at set)
        2. Load order lines with their course owner
        3. Split each captured price into fee and net
        4. Insert with ON CONFLICT (order_detail_id) DO NOTHING
        5. Commit

        Args:
            db: Database session (committed here)
            transaction_id: Transaction to derive from
            fee_rate: Platform fee rate override, defaults to settings

        Returns:
            DerivationResult with created/skipped counts and the earnings of the transaction

        Raises:
            ResourceNotFoundError: unknown transaction
            InvalidStateError: transaction is not SUCCESS
        """
        rate = settings.platform_fee_rate if fee_rate is None else fee_rate

        # 1. Validate
        transaction = await db.get(Transaction, transaction_id)
        if not transaction:
            raise ResourceNotFoundError("Transaction", transaction_id)
        if transaction.status != TransactionStatus.SUCCESS or transaction.paid_at is None:
            raise InvalidStateError(
                f"Transaction {transaction_id} is {transaction.status.value}, earnings require a successful payment",
                details={"transaction_id": transaction_id},
            )

        # 2. Order lines
        result = await db.execute(
            select(OrderDetail.id, OrderDetail.price, Course.instructor_id)
            .join(Course, Course.id == OrderDetail.course_id)
            .where(OrderDetail.order_id == transaction.order_id)
            .order_by(OrderDetail.id)
        )
        lines = result.all()

        month = earning_month(transaction.paid_at)
        created = 0
        skipped = 0

        # 3 + 4. One guarded insert per line
        for detail_id, price, instructor_id in lines:
            fee, net = split_amount(price, rate)
            stmt = dialect_insert(db, InstructorEarning.__table__).values(
                instructor_id=instructor_id,
                order_detail_id=detail_id,
                transaction_id=transaction.id,
                gross_amount=Decimal(price).quantize(CENT),
                platform_fee_amount=fee,
                net_amount=net,
                month=month,
                status=EarningStatus.UNSETTLED,
            ).on_conflict_do_nothing(index_elements=["order_detail_id"])
            insert_result = await db.execute(stmt)
            if insert_result.rowcount == 1:
                created += 1
            else:
                skipped += 1

        # 5. Commit
        await db.commit()

        earnings = await db.execute(
            select(InstructorEarning)
            .where(InstructorEarning.transaction_id == transaction.id)
            .order_by(InstructorEarning.order_detail_id)
        )
        logger.info(
            f"Derived earnings for transaction {transaction.id}: created={created} skipped={skipped}",
            extra={"transaction_id": transaction.id},
        )
        return DerivationResult(created=created, skipped=skipped, earnings=earnings.scalars().all())

    @staticmethod
    async def sync_underived_earnings(
        db: AsyncSession,
        limit: Optional[int] = None,
        from_date: Optional[date] = None
    ) -> SyncResult:
        """
        Back-fill earnings for successful transactions that are missing them.

        Each transaction is derived in its own database transaction; a failure
        is rolled back, recorded in `errors` and the scan continues.

        Args:
            db: Database session
            limit: Maximum transactions to process, defaults to settings.earning_sync_limit
            from_date: Only consider transactions paid on or after this date (payroll time zone)
        """
        limit = limit or settings.earning_sync_limit

        # Success transactions with at least one line lacking an earning
        query = (
            select(Transaction.id)
            .join(OrderDetail, OrderDetail.order_id == Transaction.order_id)
            .outerjoin(InstructorEarning, InstructorEarning.order_detail_id == OrderDetail.id)
            .where(
                Transaction.status == TransactionStatus.SUCCESS,
                Transaction.paid_at.is_not(None),
                InstructorEarning.id.is_(None),
            )
        )
        if from_date:
            query = query.where(
                Transaction.paid_at >= datetime.combine(from_date, time.min, tzinfo=payroll_timezone()).astimezone(timezone.utc)
            )
        query = (
            query.group_by(Transaction.id)
            .order_by(func.min(Transaction.paid_at), Transaction.id)
            .limit(limit)
        )

        result = await db.execute(query)
        transaction_ids = result.scalars().all()

        sync = SyncResult()
        for transaction_id in transaction_ids:
            try:
                derived = await EarningLedger.derive_from_transaction(db, transaction_id)
            except Exception as e:
                await db.rollback()
                logger.exception(
                    f"Earning sync failed for transaction {transaction_id}",
                    extra={"transaction_id": transaction_id},
                )
                sync.errors.append({"transaction_id": transaction_id, "error": str(e)})
                continue
            sync.processed += 1
            sync.total_created += derived.created
            sync.total_skipped += derived.skipped

        logger.info(
            f"Earning sync: processed={sync.processed} created={sync.total_created} "
            f"skipped={sync.total_skipped} errors={len(sync.errors)}"
        )
        return sync

    @staticmethod
    async def list_instructor_earnings(
        db: AsyncSession,
        instructor_id: int,
        month: Optional[str] = None,
        status: Optional[EarningStatus] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[InstructorEarning]:
        query = select(InstructorEarning).where(InstructorEarning.instructor_id == instructor_id)
        if month:
            query = query.where(InstructorEarning.month == month)
        if status:
            query = query.where(InstructorEarning.status == status)
        query = query.order_by(InstructorEarning.created_at.desc(), InstructorEarning.id.desc())
        result = await db.execute(query.limit(limit).offset(offset))
        return result.scalars().all()

    @staticmethod
    async def instructor_totals(db: AsyncSession, instructor_id: int) -> Dict[str, Decimal]:
        """Net totals per earning status for one instructor."""
        result = await db.execute(
            select(InstructorEarning.status, func.coalesce(func.sum(InstructorEarning.net_amount), 0))
            .where(InstructorEarning.instructor_id == instructor_id)
            .group_by(InstructorEarning.status)
        )
        totals = {status.value: Decimal("0.00") for status in EarningStatus}
        for status, amount in result.all():
            totals[status.value] = Decimal(amount).quantize(CENT)
        return totals

    @staticmethod
    async def pending_summary(db: AsyncSession, month: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Unsettled earnings grouped by instructor and month.

        Returns:
            Rows of instructor_id, month, earning_count, total_gross, total_platform_fee, total_net
        """
        query = (
            select(
                InstructorEarning.instructor_id,
                InstructorEarning.month,
                func.count(InstructorEarning.id),
                func.sum(InstructorEarning.gross_amount),
                func.sum(InstructorEarning.platform_fee_amount),
                func.sum(InstructorEarning.net_amount),
            )
            .where(InstructorEarning.status == EarningStatus.UNSETTLED)
            .group_by(InstructorEarning.instructor_id, InstructorEarning.month)
            .order_by(InstructorEarning.month, InstructorEarning.instructor_id)
        )
        if month:
            query = query.where(InstructorEarning.month == month)

        result = await db.execute(query)
        return [
            {
                "instructor_id": instructor_id,
                "month": row_month,
                "earning_count": count,
                "total_gross": Decimal(gross).quantize(CENT),
                "total_platform_fee": Decimal(fee).quantize(CENT),
                "total_net": Decimal(net).quantize(CENT),
            }
            for instructor_id, row_month, count, gross, fee, net in result.all()
        ]
