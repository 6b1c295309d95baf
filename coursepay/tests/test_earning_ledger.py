"""
Earning ledger tests.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from coursepay.app.core.exceptions import InvalidStateError, ResourceNotFoundError
from coursepay.app.domain.payroll.earning_ledger import EarningLedger, earning_month, split_amount
from coursepay.app.models.course import Course
from coursepay.app.models.instructor_earning import InstructorEarning
from coursepay.app.models.payment_enums import EarningStatus, TransactionStatus
from coursepay.app.models.transaction import Transaction
from coursepay.tests.factories import create_checkout


async def mark_paid(db_session, transaction, paid_at=None):
    await db_session.execute(
        update(Transaction)
        .where(Transaction.id == transaction.id)
        .values(status=TransactionStatus.SUCCESS, paid_at=paid_at or datetime(2026, 10, 5, 9, 0, tzinfo=timezone.utc))
    )
    await db_session.commit()


def test_split_amount_examples():
    assert split_amount(Decimal("500000"), Decimal("0.30")) == (Decimal("150000.00"), Decimal("350000.00"))
    assert split_amount(Decimal("333333.33"), Decimal("0.30")) == (Decimal("100000.00"), Decimal("233333.33"))


@pytest.mark.parametrize("gross", ["0.01", "0.05", "1.15", "99999.99", "333333.33", "123456.78"])
def test_split_amount_conserves_gross(gross):
    fee, net = split_amount(Decimal(gross), Decimal("0.30"))
    assert fee + net == Decimal(gross)
    assert fee == fee.quantize(Decimal("0.01"))


@pytest.mark.parametrize("paid_at, month", [
    (datetime(2026, 10, 31, 16, 59, tzinfo=timezone.utc), "2026-10"),
    (datetime(2026, 10, 31, 17, 0, tzinfo=timezone.utc), "2026-11"),
    (datetime(2026, 10, 31, 17, 30), "2026-11"),
    (datetime(2026, 11, 1, 6, 0, tzinfo=timezone(timedelta(hours=7))), "2026-11"),
])
def test_earning_month_uses_merchant_clock(paid_at, month):
    assert earning_month(paid_at) == month


@pytest.mark.asyncio
async def test_derive_books_early_morning_payment_in_local_month(db_session, checkout):
    order, transaction = checkout
    # 02:00 on 1 October in Vietnam
    await mark_paid(db_session, transaction, datetime(2026, 9, 30, 19, 0, tzinfo=timezone.utc))

    result = await EarningLedger.derive_from_transaction(db_session, transaction.id)

    assert result.earnings[0].month == "2026-10"


@pytest.mark.asyncio
async def test_derive_creates_one_earning_per_line(db_session, checkout, course, users):
    order, transaction = checkout
    await mark_paid(db_session, transaction)

    result = await EarningLedger.derive_from_transaction(db_session, transaction.id)

    assert result.created == 1
    assert result.skipped == 0
    earning = result.earnings[0]
    assert earning.instructor_id == users["instructor"].id
    assert earning.gross_amount == Decimal("500000.00")
    assert earning.platform_fee_amount == Decimal("150000.00")
    assert earning.net_amount == Decimal("350000.00")
    assert earning.month == "2026-10"
    assert earning.status == EarningStatus.UNSETTLED
    assert earning.settlement_batch_id is None


@pytest.mark.asyncio
async def test_derive_is_idempotent(db_session, checkout):
    order, transaction = checkout
    await mark_paid(db_session, transaction)

    await EarningLedger.derive_from_transaction(db_session, transaction.id)
    again = await EarningLedger.derive_from_transaction(db_session, transaction.id)

    assert again.created == 0
    assert again.skipped == 1
    rows = await db_session.execute(select(InstructorEarning))
    assert len(rows.scalars().all()) == 1


@pytest.mark.asyncio
async def test_derive_covers_every_order_line(db_session, users, course):
    second = Course(instructor_id=users["instructor"].id, title="SQL", price=Decimal("333333.33"))
    db_session.add(second)
    await db_session.commit()
    order, transaction = await create_checkout(db_session, users["student"], [course, second], "multi1")
    await mark_paid(db_session, transaction)

    result = await EarningLedger.derive_from_transaction(db_session, transaction.id)

    assert result.created == 2
    nets = sorted(e.net_amount for e in result.earnings)
    assert nets == [Decimal("233333.33"), Decimal("350000.00")]


@pytest.mark.asyncio
async def test_derive_uses_configured_rate(db_session, checkout):
    order, transaction = checkout
    await mark_paid(db_session, transaction)

    result = await EarningLedger.derive_from_transaction(db_session, transaction.id, fee_rate=Decimal("0.25"))

    assert result.earnings[0].platform_fee_amount == Decimal("125000.00")
    assert result.earnings[0].net_amount == Decimal("375000.00")


@pytest.mark.asyncio
async def test_derive_rejects_pending_and_unknown(db_session, checkout):
    order, transaction = checkout

    with pytest.raises(InvalidStateError):
        await EarningLedger.derive_from_transaction(db_session, transaction.id)

    with pytest.raises(ResourceNotFoundError):
        await EarningLedger.derive_from_transaction(db_session, 9999)


@pytest.mark.asyncio
async def test_sync_backfills_missing_earnings(db_session, users, course):
    _, paid = await create_checkout(db_session, users["student"], [course], "sync1")
    await mark_paid(db_session, paid)
    await create_checkout(db_session, users["admin"], [course], "sync2")  # still pending

    result = await EarningLedger.sync_underived_earnings(db_session, limit=10)

    assert result.processed == 1
    assert result.total_created == 1
    assert result.errors == []

    again = await EarningLedger.sync_underived_earnings(db_session, limit=10)
    assert again.processed == 0


@pytest.mark.asyncio
async def test_sync_respects_from_date(db_session, users, course):
    _, old = await create_checkout(db_session, users["student"], [course], "old1")
    await mark_paid(db_session, old, datetime(2026, 8, 1, tzinfo=timezone.utc))

    result = await EarningLedger.sync_underived_earnings(db_session, from_date=date(2026, 9, 1))

    assert result.processed == 0


@pytest.mark.asyncio
async def test_sync_collects_errors_and_continues(db_session, users, course, mocker):
    _, first = await create_checkout(db_session, users["student"], [course], "err1")
    _, second = await create_checkout(db_session, users["admin"], [course], "err2")
    await mark_paid(db_session, first, datetime(2026, 10, 1, tzinfo=timezone.utc))
    await mark_paid(db_session, second, datetime(2026, 10, 2, tzinfo=timezone.utc))
    first_id = first.id

    original = EarningLedger.derive_from_transaction

    async def flaky(db, transaction_id, fee_rate=None):
        if transaction_id == first_id:
            raise RuntimeError("boom")
        return await original(db, transaction_id, fee_rate)

    mocker.patch.object(EarningLedger, "derive_from_transaction", side_effect=flaky)

    result = await EarningLedger.sync_underived_earnings(db_session, limit=10)

    assert result.processed == 1
    assert result.total_created == 1
    assert result.errors == [{"transaction_id": first_id, "error": "boom"}]


@pytest.mark.asyncio
async def test_instructor_totals_and_pending_summary(db_session, checkout, users):
    order, transaction = checkout
    await mark_paid(db_session, transaction)
    await EarningLedger.derive_from_transaction(db_session, transaction.id)

    totals = await EarningLedger.instructor_totals(db_session, users["instructor"].id)
    assert totals == {
        "unsettled": Decimal("350000.00"),
        "batched": Decimal("0.00"),
        "settled": Decimal("0.00"),
    }

    summary = await EarningLedger.pending_summary(db_session, "2026-10")
    assert summary == [
        {
            "instructor_id": users["instructor"].id,
            "month": "2026-10",
            "earning_count": 1,
            "total_gross": Decimal("500000.00"),
            "total_platform_fee": Decimal("150000.00"),
            "total_net": Decimal("350000.00"),
        }
    ]
