"""
Settlement aggregator tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from coursepay.app.core.exceptions import (
    AlreadyGeneratedError,
    AlreadyPaidError,
    InvalidStateError,
    ResourceNotFoundError,
)
from coursepay.app.domain.payroll.earning_ledger import EarningLedger
from coursepay.app.domain.payroll.exports import export_settlements_csv
from coursepay.app.domain.payroll.settlement_aggregator import (
    SettlementAggregator,
    SettlementKey,
    fold_earnings,
)
from coursepay.app.models.course import Course
from coursepay.app.models.enums import UserRole
from coursepay.app.models.instructor_earning import InstructorEarning
from coursepay.app.models.payment_enums import EarningStatus, SettlementBatchStatus, TransactionStatus
from coursepay.app.models.settlement_batch import InstructorSettlementBatch, SettlementRunLock
from coursepay.app.models.transaction import Transaction
from coursepay.app.models.user import User
from coursepay.tests.factories import create_checkout

MONTH = "2026-10"
PAID_AT = datetime(2026, 10, 12, 8, 30, tzinfo=timezone.utc)


async def paid_sale(db_session, buyer, courses, txn_ref, paid_at=PAID_AT):
    """A successful checkout with its earnings derived."""
    _, transaction = await create_checkout(db_session, buyer, courses, txn_ref)
    await db_session.execute(
        update(Transaction)
        .where(Transaction.id == transaction.id)
        .values(status=TransactionStatus.SUCCESS, paid_at=paid_at)
    )
    await db_session.commit()
    await EarningLedger.derive_from_transaction(db_session, transaction.id)
    return transaction


async def earnings_of(db_session, **filters):
    query = select(InstructorEarning).execution_options(populate_existing=True)
    for name, value in filters.items():
        query = query.where(getattr(InstructorEarning, name) == value)
    result = await db_session.execute(query.order_by(InstructorEarning.id))
    return result.scalars().all()


@pytest.fixture
async def second_instructor(db_session):
    user = User(email="instructor2@test.vn", username="instructor2", full_name="Lê C", role=UserRole.INSTRUCTOR)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def month_sales(db_session, users, course, second_instructor):
    """Two sales for the first instructor, one for the second, all in MONTH."""
    other_course = Course(instructor_id=second_instructor.id, title="Docker", price=Decimal("333333.33"))
    db_session.add(other_course)
    await db_session.commit()

    await paid_sale(db_session, users["student"], [course], "s1")
    await paid_sale(db_session, users["admin"], [course], "s2")
    await paid_sale(db_session, users["student"], [other_course], "s3")
    return {"course": course, "other_course": other_course}


def test_fold_groups_by_instructor_and_month():
    rows = [
        (1, 10, MONTH, Decimal("100.00"), Decimal("30.00"), Decimal("70.00")),
        (2, 11, MONTH, Decimal("50.00"), Decimal("15.00"), Decimal("35.00")),
        (3, 10, MONTH, Decimal("0.01"), Decimal("0.00"), Decimal("0.01")),
    ]

    groups = fold_earnings(rows)

    assert list(groups) == [SettlementKey(10, MONTH), SettlementKey(11, MONTH)]
    first = groups[SettlementKey(10, MONTH)]
    assert first.earning_ids == [1, 3]
    assert first.total_gross == Decimal("100.01")
    assert first.total_platform_fee == Decimal("30.00")
    assert first.total_net == Decimal("70.01")


@pytest.mark.asyncio
async def test_generate_creates_one_batch_per_instructor(db_session, users, second_instructor, month_sales):
    result = await SettlementAggregator.generate_batches(db_session, MONTH)

    assert result.batches_created == 2
    assert result.earnings_processed == 3
    assert result.failed == []

    by_instructor = {b.instructor_id: b for b in result.batches}
    first = by_instructor[users["instructor"].id]
    assert first.total_gross == Decimal("1000000.00")
    assert first.total_platform_fee == Decimal("300000.00")
    assert first.total_net == Decimal("700000.00")
    assert first.status == SettlementBatchStatus.GENERATED

    second = by_instructor[second_instructor.id]
    assert second.total_gross == Decimal("333333.33")
    assert second.total_platform_fee == Decimal("100000.00")
    assert second.total_net == Decimal("233333.33")


@pytest.mark.asyncio
async def test_batch_totals_equal_member_earnings(db_session, month_sales):
    result = await SettlementAggregator.generate_batches(db_session, MONTH)

    for batch in result.batches:
        members = await earnings_of(db_session, settlement_batch_id=batch.id)
        assert all(e.status == EarningStatus.BATCHED for e in members)
        assert batch.total_gross == sum(e.gross_amount for e in members)
        assert batch.total_platform_fee == sum(e.platform_fee_amount for e in members)
        assert batch.total_net == sum(e.net_amount for e in members)
        assert batch.total_gross == batch.total_platform_fee + batch.total_net


@pytest.mark.asyncio
async def test_generate_twice_raises_and_changes_nothing(db_session, month_sales):
    await SettlementAggregator.generate_batches(db_session, MONTH)

    with pytest.raises(AlreadyGeneratedError) as exc_info:
        await SettlementAggregator.generate_batches(db_session, MONTH)

    assert exc_info.value.status_code == 409
    batches = await db_session.execute(select(InstructorSettlementBatch))
    assert len(batches.scalars().all()) == 2


async def run_locks(db_session):
    result = await db_session.execute(
        select(SettlementRunLock).execution_options(populate_existing=True)
    )
    return result.scalars().all()


@pytest.mark.asyncio
async def test_generate_refused_while_month_is_locked(db_session, month_sales):
    db_session.add(SettlementRunLock(month=MONTH, locked_at=datetime.now(timezone.utc)))
    await db_session.commit()

    with pytest.raises(InvalidStateError) as exc_info:
        await SettlementAggregator.generate_batches(db_session, MONTH)

    assert exc_info.value.error_code == "ERR_SETTLEMENT_RUNNING"
    batches = await db_session.execute(select(InstructorSettlementBatch))
    assert batches.scalars().all() == []
    assert len(await earnings_of(db_session, status=EarningStatus.UNSETTLED)) == 3


@pytest.mark.asyncio
async def test_stale_month_lock_is_taken_over(db_session, month_sales):
    db_session.add(SettlementRunLock(month=MONTH, locked_at=datetime.now(timezone.utc) - timedelta(hours=2)))
    await db_session.commit()

    result = await SettlementAggregator.generate_batches(db_session, MONTH)

    assert result.batches_created == 2
    assert await run_locks(db_session) == []


@pytest.mark.asyncio
async def test_month_lock_released_after_refusal(db_session, month_sales):
    await SettlementAggregator.generate_batches(db_session, MONTH)
    assert await run_locks(db_session) == []

    with pytest.raises(AlreadyGeneratedError):
        await SettlementAggregator.generate_batches(db_session, MONTH)

    assert await run_locks(db_session) == []


@pytest.mark.asyncio
async def test_generate_ignores_other_months(db_session, users, course):
    await paid_sale(db_session, users["student"], [course], "sep1", paid_at=datetime(2026, 9, 30, 12, 0, tzinfo=timezone.utc))

    result = await SettlementAggregator.generate_batches(db_session, MONTH)

    assert result.batches_created == 0
    assert len(await earnings_of(db_session, status=EarningStatus.UNSETTLED)) == 1


@pytest.mark.asyncio
async def test_failed_group_is_reported_and_others_commit(db_session, users, second_instructor, month_sales, mocker):
    first_instructor_id = users["instructor"].id
    original_flush = db_session.flush
    calls = {"n": 0}

    async def flaky_flush(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("insert failed")
        return await original_flush(*args, **kwargs)

    mocker.patch.object(db_session, "flush", side_effect=flaky_flush)

    result = await SettlementAggregator.generate_batches(db_session, MONTH)

    assert result.batches_created == 1
    assert result.failed == [{"instructor_id": first_instructor_id, "error": "insert failed"}]
    assert len(await earnings_of(db_session, status=EarningStatus.UNSETTLED)) == 2


@pytest.mark.asyncio
async def test_mark_paid_settles_earnings(db_session, month_sales):
    result = await SettlementAggregator.generate_batches(db_session, MONTH)
    batch_id = result.batches[0].id

    batch, settled = await SettlementAggregator.mark_batch_paid(db_session, batch_id)

    assert batch.status == SettlementBatchStatus.PAID
    assert batch.paid_at is not None
    members = await earnings_of(db_session, settlement_batch_id=batch_id)
    assert settled == len(members)
    assert all(e.status == EarningStatus.SETTLED for e in members)


@pytest.mark.asyncio
async def test_mark_paid_twice_conflicts(db_session, month_sales):
    result = await SettlementAggregator.generate_batches(db_session, MONTH)
    batch_id = result.batches[0].id
    batch, _ = await SettlementAggregator.mark_batch_paid(db_session, batch_id)
    paid_at = batch.paid_at

    with pytest.raises(AlreadyPaidError):
        await SettlementAggregator.mark_batch_paid(db_session, batch_id)

    batch = await SettlementAggregator.get_batch(db_session, batch_id)
    assert batch.paid_at == paid_at


@pytest.mark.asyncio
async def test_paid_batch_cannot_be_canceled(db_session, month_sales):
    result = await SettlementAggregator.generate_batches(db_session, MONTH)
    batch_id = result.batches[0].id
    await SettlementAggregator.mark_batch_paid(db_session, batch_id)

    with pytest.raises(InvalidStateError):
        await SettlementAggregator.cancel_batch(db_session, batch_id)


@pytest.mark.asyncio
async def test_cancel_releases_earnings_for_regeneration(db_session, month_sales):
    result = await SettlementAggregator.generate_batches(db_session, MONTH)
    canceled_ids = [b.id for b in result.batches]

    for batch_id in canceled_ids:
        batch, released = await SettlementAggregator.cancel_batch(db_session, batch_id)
        assert batch.status == SettlementBatchStatus.CANCELED
        assert released >= 1

    unsettled = await earnings_of(db_session, status=EarningStatus.UNSETTLED)
    assert len(unsettled) == 3
    assert all(e.settlement_batch_id is None for e in unsettled)

    with pytest.raises(InvalidStateError):
        await SettlementAggregator.mark_batch_paid(db_session, canceled_ids[0])

    regenerated = await SettlementAggregator.generate_batches(db_session, MONTH)
    assert regenerated.batches_created == 2
    assert regenerated.earnings_processed == 3


@pytest.mark.asyncio
async def test_unknown_batch(db_session):
    with pytest.raises(ResourceNotFoundError):
        await SettlementAggregator.mark_batch_paid(db_session, 404)
    with pytest.raises(ResourceNotFoundError):
        await SettlementAggregator.cancel_batch(db_session, 404)


@pytest.mark.asyncio
async def test_summary_stats_and_export(db_session, users, month_sales):
    summary = await SettlementAggregator.payroll_summary(db_session, MONTH)
    first = next(row for row in summary if row["instructor_id"] == users["instructor"].id)
    assert first["earning_count"] == 2
    assert first["total_net"] == Decimal("700000.00")
    assert first["instructor_name"] == "Nguyễn Văn A"

    result = await SettlementAggregator.generate_batches(db_session, MONTH)
    await SettlementAggregator.mark_batch_paid(db_session, result.batches[0].id)

    stats = await SettlementAggregator.get_stats(db_session)
    assert stats["counts"] == {"generated": 1, "paid": 1, "canceled": 0, "total": 2}
    assert stats["amounts"]["total_paid"] + stats["amounts"]["pending"] == Decimal("933333.33")

    rows, total = await SettlementAggregator.list_batches(db_session, month=MONTH)
    assert total == 2
    assert sorted(count for _, count in rows) == [1, 2]

    csv_text = await export_settlements_csv(db_session, month=MONTH)
    lines = csv_text.strip().splitlines()
    assert lines[0].startswith("Batch ID,Instructor ID,Instructor Name")
    assert len(lines) == 3
