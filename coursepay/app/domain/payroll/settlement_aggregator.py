"""
Settlement Aggregator (Domain Logic).

Groups unsettled instructor earnings into monthly settlement batches and
drives the batch workflow:

    GENERATED -> PAID      (earnings BATCHED -> SETTLED)
    GENERATED -> CANCELED  (earnings released back to UNSETTLED)

Each instructor group is its own atomic unit; a failing group is rolled back
and reported without blocking the others.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.app.core.config import settings
from coursepay.app.core.exceptions import (
    AlreadyGeneratedError,
    AlreadyPaidError,
    InvalidStateError,
    ResourceNotFoundError,
)
from coursepay.app.models.instructor_earning import InstructorEarning
from coursepay.app.models.payment_enums import EarningStatus, SettlementBatchStatus
from coursepay.app.models.settlement_batch import InstructorSettlementBatch, SettlementRunLock
from coursepay.app.models.user import User

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class SettlementKey(NamedTuple):
    instructor_id: int
    month: str


@dataclass
class SettlementGroup:
    """Running totals for one (instructor, month) group."""
    earning_ids: List[int] = field(default_factory=list)
    total_gross: Decimal = ZERO
    total_platform_fee: Decimal = ZERO
    total_net: Decimal = ZERO

    def add(self, earning_id: int, gross: Decimal, fee: Decimal, net: Decimal) -> None:
        self.earning_ids.append(earning_id)
        self.total_gross += Decimal(gross)
        self.total_platform_fee += Decimal(fee)
        self.total_net += Decimal(net)


@dataclass
class GenerationResult:
    month: str
    batches_created: int = 0
    earnings_processed: int = 0
    batches: List[InstructorSettlementBatch] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)


def fold_earnings(rows: Iterable[Tuple[int, int, str, Decimal, Decimal, Decimal]]) -> Dict[SettlementKey, SettlementGroup]:
    """
    Fold earning rows into per-(instructor, month) groups.

    Args:
        rows: (earning_id, instructor_id, month, gross, fee, net) tuples

    Returns:
        Groups in first-seen order
    """
    groups: Dict[SettlementKey, SettlementGroup] = {}
    for earning_id, instructor_id, month, gross, fee, net in rows:
        key = SettlementKey(instructor_id, month)
        if key not in groups:
            groups[key] = SettlementGroup()
        groups[key].add(earning_id, gross, fee, net)
    return groups


class SettlementAggregator:

    @staticmethod
    async def month_has_batches(db: AsyncSession, month: str) -> bool:
        """True if any non-canceled batch exists for the month."""
        result = await db.execute(
            select(func.count(InstructorSettlementBatch.id)).where(
                InstructorSettlementBatch.month == month,
                InstructorSettlementBatch.status != SettlementBatchStatus.CANCELED,
            )
        )
        return result.scalar_one() > 0

    @staticmethod
    async def payroll_summary(db: AsyncSession, month: str) -> List[Dict[str, Any]]:
        """
        Preview of what generate_batches would create for a month.

        Returns:
            One row per instructor with name, email, totals and earning count
        """
        result = await db.execute(
            select(
                InstructorEarning.instructor_id,
                User.full_name,
                User.email,
                func.count(InstructorEarning.id),
                func.sum(InstructorEarning.gross_amount),
                func.sum(InstructorEarning.platform_fee_amount),
                func.sum(InstructorEarning.net_amount),
            )
            .join(User, User.id == InstructorEarning.instructor_id)
            .where(
                InstructorEarning.month == month,
                InstructorEarning.status == EarningStatus.UNSETTLED,
            )
            .group_by(InstructorEarning.instructor_id, User.full_name, User.email)
            .order_by(InstructorEarning.instructor_id)
        )
        return [
            {
                "instructor_id": instructor_id,
                "instructor_name": full_name or "Unknown",
                "instructor_email": email,
                "earning_count": count,
                "total_gross": Decimal(gross).quantize(ZERO),
                "total_platform_fee": Decimal(fee).quantize(ZERO),
                "total_net": Decimal(net).quantize(ZERO),
            }
            for instructor_id, full_name, email, count, gross, fee, net in result.all()
        ]

    @staticmethod
    async def _lock_month(db: AsyncSession, month: str) -> None:
        """
        Claim the month's run lock, taking over a stale one.

        Raises:
            InvalidStateError: another run holds the lock
        """
        now = datetime.now(timezone.utc)
        await db.execute(
            delete(SettlementRunLock).where(
                SettlementRunLock.month == month,
                SettlementRunLock.locked_at < now - timedelta(minutes=settings.settlement_lock_minutes),
            ).execution_options(synchronize_session=False)
        )
        db.add(SettlementRunLock(month=month, locked_at=now))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise InvalidStateError(
                f"Settlement generation for {month} is already running",
                error_code="ERR_SETTLEMENT_RUNNING",
                details={"month": month},
            )

    @staticmethod
    async def _unlock_month(db: AsyncSession, month: str) -> None:
        await db.execute(
            delete(SettlementRunLock)
            .where(SettlementRunLock.month == month)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    @staticmethod
    async def generate_batches(db: AsyncSession, month: str) -> GenerationResult:
        """
        Create one settlement batch per instructor for a month.

        Runs for the same month are serialized by SettlementRunLock, so the
        month guard and the batch inserts cannot interleave with another run.

        Args:
            db: Database session (committed per group)
            month: YYYY-MM

        Returns:
            GenerationResult; `failed` lists groups that were rolled back

        Raises:
            AlreadyGeneratedError: batches already exist for the month
            InvalidStateError: another run for the month is in progress
        """
        await SettlementAggregator._lock_month(db, month)
        try:
            generation = await SettlementAggregator._generate_locked(db, month)
        except Exception:
            await db.rollback()
            await SettlementAggregator._unlock_month(db, month)
            raise
        await SettlementAggregator._unlock_month(db, month)
        return generation

    @staticmethod
    async def _generate_locked(db: AsyncSession, month: str) -> GenerationResult:
        """
        Flow:
        1. Month guard: refuse if a non-canceled batch already exists
        2. Load UNSETTLED earnings of the month and fold them by SettlementKey
        3. Per group: insert batch, link earnings (precondition UNSETTLED),
           verify every earning was linked, commit
        4. Reload the created batches
        """
        # 1. Guard
        if await SettlementAggregator.month_has_batches(db, month):
            raise AlreadyGeneratedError(month)

        # 2. Fold
        result = await db.execute(
            select(
                InstructorEarning.id,
                InstructorEarning.instructor_id,
                InstructorEarning.month,
                InstructorEarning.gross_amount,
                InstructorEarning.platform_fee_amount,
                InstructorEarning.net_amount,
            )
            .where(
                InstructorEarning.month == month,
                InstructorEarning.status == EarningStatus.UNSETTLED,
                InstructorEarning.settlement_batch_id.is_(None),
            )
            .order_by(InstructorEarning.instructor_id, InstructorEarning.id)
        )
        groups = fold_earnings(result.all())

        generation = GenerationResult(month=month)
        created_ids: List[int] = []

        # 3. One atomic unit per group
        for key, group in groups.items():
            try:
                batch = InstructorSettlementBatch(
                    instructor_id=key.instructor_id,
                    month=key.month,
                    total_gross=group.total_gross,
                    total_platform_fee=group.total_platform_fee,
                    total_net=group.total_net,
                    status=SettlementBatchStatus.GENERATED,
                )
                db.add(batch)
                await db.flush()

                linked = await db.execute(
                    update(InstructorEarning)
                    .where(
                        InstructorEarning.id.in_(group.earning_ids),
                        InstructorEarning.status == EarningStatus.UNSETTLED,
                    )
                    .values(settlement_batch_id=batch.id, status=EarningStatus.BATCHED)
                    .execution_options(synchronize_session=False)
                )
                if linked.rowcount != len(group.earning_ids):
                    raise InvalidStateError(
                        f"Only {linked.rowcount} of {len(group.earning_ids)} earnings were still unsettled",
                        details={"instructor_id": key.instructor_id, "month": key.month},
                    )

                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.exception(
                    f"Settlement generation failed for instructor {key.instructor_id}",
                    extra={"month": key.month},
                )
                generation.failed.append({"instructor_id": key.instructor_id, "error": str(e)})
                continue

            created_ids.append(batch.id)
            generation.earnings_processed += len(group.earning_ids)

        # 4. Reload, rolled-back groups expire session state
        if created_ids:
            batches = await db.execute(
                select(InstructorSettlementBatch)
                .where(InstructorSettlementBatch.id.in_(created_ids))
                .order_by(InstructorSettlementBatch.instructor_id)
                .execution_options(populate_existing=True)
            )
            generation.batches = batches.scalars().all()
        generation.batches_created = len(created_ids)

        logger.info(
            f"Generated {generation.batches_created} settlement batch(es), "
            f"{generation.earnings_processed} earning(s), {len(generation.failed)} failure(s)",
            extra={"month": month},
        )
        return generation

    @staticmethod
    async def get_batch(db: AsyncSession, batch_id: int) -> InstructorSettlementBatch:
        """
        Raises:
            ResourceNotFoundError: unknown batch
        """
        batch = await db.get(InstructorSettlementBatch, batch_id, populate_existing=True)
        if not batch:
            raise ResourceNotFoundError("Settlement batch", batch_id)
        return batch

    @staticmethod
    async def mark_batch_paid(db: AsyncSession, batch_id: int) -> Tuple[InstructorSettlementBatch, int]:
        """
        Mark a GENERATED batch as PAID and settle its earnings atomically.

        Returns:
            (batch, number of earnings moved to SETTLED)

        Raises:
            ResourceNotFoundError: unknown batch
            AlreadyPaidError: batch is already PAID
            InvalidStateError: batch is CANCELED
        """
        batch = await SettlementAggregator.get_batch(db, batch_id)

        result = await db.execute(
            update(InstructorSettlementBatch)
            .where(
                InstructorSettlementBatch.id == batch_id,
                InstructorSettlementBatch.status == SettlementBatchStatus.GENERATED,
            )
            .values(status=SettlementBatchStatus.PAID, paid_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            await db.refresh(batch)
            if batch.status == SettlementBatchStatus.PAID:
                raise AlreadyPaidError(batch_id)
            raise InvalidStateError(
                f"Cannot mark a {batch.status.value} settlement batch as paid",
                details={"batch_id": batch_id},
            )

        settled = await db.execute(
            update(InstructorEarning)
            .where(
                InstructorEarning.settlement_batch_id == batch_id,
                InstructorEarning.status == EarningStatus.BATCHED,
            )
            .values(status=EarningStatus.SETTLED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(batch)

        logger.info(f"Settlement batch {batch_id} paid", extra={"batch_id": batch_id, "month": batch.month})
        return batch, settled.rowcount

    @staticmethod
    async def cancel_batch(db: AsyncSession, batch_id: int) -> Tuple[InstructorSettlementBatch, int]:
        """
        Cancel a GENERATED batch and release its earnings for re-aggregation.

        Returns:
            (batch, number of earnings released to UNSETTLED)

        Raises:
            ResourceNotFoundError: unknown batch
            InvalidStateError: batch is PAID or already CANCELED
        """
        batch = await SettlementAggregator.get_batch(db, batch_id)

        result = await db.execute(
            update(InstructorSettlementBatch)
            .where(
                InstructorSettlementBatch.id == batch_id,
                InstructorSettlementBatch.status == SettlementBatchStatus.GENERATED,
            )
            .values(status=SettlementBatchStatus.CANCELED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            await db.refresh(batch)
            raise InvalidStateError(
                f"Cannot cancel a {batch.status.value} settlement batch",
                details={"batch_id": batch_id},
            )

        released = await db.execute(
            update(InstructorEarning)
            .where(InstructorEarning.settlement_batch_id == batch_id)
            .values(settlement_batch_id=None, status=EarningStatus.UNSETTLED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(batch)

        logger.info(f"Settlement batch {batch_id} canceled", extra={"batch_id": batch_id, "month": batch.month})
        return batch, released.rowcount

    @staticmethod
    async def list_batches(
        db: AsyncSession,
        status: Optional[SettlementBatchStatus] = None,
        month: Optional[str] = None,
        instructor_id: Optional[int] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Tuple[InstructorSettlementBatch, int]], int]:
        """
        Paginated batches, newest first, with their earning counts.

        Returns:
            ([(batch, earnings_count), ...], total matching batches)
        """
        filters = []
        if status:
            filters.append(InstructorSettlementBatch.status == status)
        if month:
            filters.append(InstructorSettlementBatch.month == month)
        if instructor_id:
            filters.append(InstructorSettlementBatch.instructor_id == instructor_id)

        total = await db.execute(
            select(func.count(InstructorSettlementBatch.id)).where(*filters)
        )

        earning_counts = (
            select(
                InstructorEarning.settlement_batch_id.label("batch_id"),
                func.count(InstructorEarning.id).label("earnings_count"),
            )
            .group_by(InstructorEarning.settlement_batch_id)
            .subquery()
        )
        result = await db.execute(
            select(InstructorSettlementBatch, func.coalesce(earning_counts.c.earnings_count, 0))
            .outerjoin(earning_counts, earning_counts.c.batch_id == InstructorSettlementBatch.id)
            .where(*filters)
            .order_by(InstructorSettlementBatch.created_at.desc(), InstructorSettlementBatch.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return [(batch, count) for batch, count in result.all()], total.scalar_one()

    @staticmethod
    async def get_batch_detail(
        db: AsyncSession,
        batch_id: int
    ) -> Tuple[InstructorSettlementBatch, List[InstructorEarning]]:
        """Batch with its member earnings."""
        batch = await SettlementAggregator.get_batch(db, batch_id)
        result = await db.execute(
            select(InstructorEarning)
            .where(InstructorEarning.settlement_batch_id == batch_id)
            .order_by(InstructorEarning.id)
        )
        return batch, result.scalars().all()

    @staticmethod
    async def get_stats(db: AsyncSession) -> Dict[str, Any]:
        """Batch counts per status, plus paid and outstanding net amounts."""
        result = await db.execute(
            select(
                InstructorSettlementBatch.status,
                func.count(InstructorSettlementBatch.id),
                func.coalesce(func.sum(InstructorSettlementBatch.total_net), 0),
            ).group_by(InstructorSettlementBatch.status)
        )
        counts = {status.value: 0 for status in SettlementBatchStatus}
        amounts = {status.value: ZERO for status in SettlementBatchStatus}
        for status, count, total_net in result.all():
            counts[status.value] = count
            amounts[status.value] = Decimal(total_net).quantize(ZERO)

        return {
            "counts": {**counts, "total": sum(counts.values())},
            "amounts": {
                "total_paid": amounts[SettlementBatchStatus.PAID.value],
                "pending": amounts[SettlementBatchStatus.GENERATED.value],
            },
        }
