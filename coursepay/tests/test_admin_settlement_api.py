"""
Admin settlement and instructor earnings API tests.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select, update

from coursepay.app.models.audit_log import AuditLog
from coursepay.app.models.notification import Notification, NotificationType
from coursepay.app.models.payment_enums import TransactionStatus
from coursepay.app.models.transaction import Transaction
from coursepay.tests.factories import auth_headers

BASE = "/v1/admin/settlement"


@pytest.fixture
async def paid_checkout(db_session, checkout):
    """The 'abc123' checkout marked successful without earnings."""
    order, transaction = checkout
    await db_session.execute(
        update(Transaction)
        .where(Transaction.id == transaction.id)
        .values(status=TransactionStatus.SUCCESS, paid_at=datetime(2026, 10, 3, tzinfo=timezone.utc))
    )
    await db_session.commit()
    return transaction


@pytest.mark.asyncio
async def test_settlement_requires_admin(client, users):
    response = await client.post(f"{BASE}/generate", json={"month": "2026-10"}, headers=auth_headers(users["student"]))
    assert response.status_code == 403

    response = await client.post(f"{BASE}/generate", json={"month": "2026-10"})
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_generate_validates_month(client, users):
    response = await client.post(f"{BASE}/generate", json={"month": "2026-13"}, headers=auth_headers(users["admin"]))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_payroll_workflow(client, db_session, users, paid_checkout):
    admin = auth_headers(users["admin"])
    instructor_id = users["instructor"].id

    # Sync derives the missing earning
    sync = await client.post(f"{BASE}/earnings/sync", json={"limit": 10}, headers=admin)
    assert sync.status_code == 200
    assert sync.json()["processed"] == 1
    assert sync.json()["total_created"] == 1

    pending = await client.get(f"{BASE}/earnings/pending", params={"month": "2026-10"}, headers=admin)
    assert pending.json()[0]["total_net"] == "350000.00"

    summary = await client.get(f"{BASE}/summary", params={"month": "2026-10"}, headers=admin)
    assert summary.json()[0]["instructor_id"] == instructor_id

    # Generate
    generate = await client.post(f"{BASE}/generate", json={"month": "2026-10"}, headers=admin)
    assert generate.status_code == 200
    body = generate.json()
    assert body["batches_created"] == 1
    batch = body["batches"][0]
    assert batch["status"] == "generated"
    assert batch["total_gross"] == "500000.00"
    assert batch["total_platform_fee"] == "150000.00"
    assert batch["total_net"] == "350000.00"

    again = await client.post(f"{BASE}/generate", json={"month": "2026-10"}, headers=admin)
    assert again.status_code == 409
    assert again.json()["error_code"] == "ERR_SETTLEMENT_EXISTS"

    detail = await client.get(f"{BASE}/batches/{batch['id']}", headers=admin)
    assert detail.json()["earnings_count"] == 1
    assert detail.json()["earnings"][0]["status"] == "batched"

    # Pay
    paid = await client.post(f"{BASE}/batches/{batch['id']}/mark-paid", headers=admin)
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert paid.json()["earnings_updated"] == 1

    paid_again = await client.post(f"{BASE}/batches/{batch['id']}/mark-paid", headers=admin)
    assert paid_again.status_code == 409
    assert paid_again.json()["error_code"] == "ERR_SETTLEMENT_PAID"

    cancel = await client.post(f"{BASE}/batches/{batch['id']}/cancel", headers=admin)
    assert cancel.status_code == 409

    stats = await client.get(f"{BASE}/stats", headers=admin)
    assert stats.json()["counts"]["paid"] == 1
    assert stats.json()["amounts"]["total_paid"] == "350000.00"

    listing = await client.get(f"{BASE}/batches", params={"status": "paid"}, headers=admin)
    assert listing.json()["total"] == 1

    export = await client.get(f"{BASE}/export", params={"month": "2026-10"}, headers=admin)
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert "350000.00" in export.text

    # Instructor sees the payout
    mine = await client.get("/v1/instructor/settlements", headers=auth_headers(users["instructor"]))
    assert [b["status"] for b in mine.json()] == ["paid"]

    earnings = await client.get("/v1/instructor/earnings", headers=auth_headers(users["instructor"]))
    assert earnings.json()["totals"]["settled"] == "350000.00"

    notes = await db_session.execute(
        select(Notification).where(Notification.user_id == instructor_id).execution_options(populate_existing=True)
    )
    assert [n.type for n in notes.scalars().all()] == [NotificationType.SETTLEMENT_PAID]

    audits = await db_session.execute(select(AuditLog.action).order_by(AuditLog.id))
    assert audits.scalars().all() == [
        "EARNINGS_SYNCED",
        "SETTLEMENT_GENERATED",
        "SETTLEMENT_PAID",
    ]


@pytest.mark.asyncio
async def test_cancel_then_regenerate(client, users, paid_checkout):
    admin = auth_headers(users["admin"])
    await client.post(f"{BASE}/earnings/derive", json={"transaction_id": paid_checkout.id}, headers=admin)
    generate = await client.post(f"{BASE}/generate", json={"month": "2026-10"}, headers=admin)
    batch_id = generate.json()["batches"][0]["id"]

    cancel = await client.post(f"{BASE}/batches/{batch_id}/cancel", headers=admin)
    assert cancel.status_code == 200
    assert cancel.json()["status"] == "canceled"
    assert cancel.json()["earnings_updated"] == 1

    regenerate = await client.post(f"{BASE}/generate", json={"month": "2026-10"}, headers=admin)
    assert regenerate.status_code == 200
    assert regenerate.json()["batches_created"] == 1


@pytest.mark.asyncio
async def test_derive_pending_transaction_conflicts(client, users, checkout):
    order, transaction = checkout
    response = await client.post(
        f"{BASE}/earnings/derive",
        json={"transaction_id": transaction.id},
        headers=auth_headers(users["admin"]),
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_STATE_001"


@pytest.mark.asyncio
async def test_unknown_batch_is_not_found(client, users):
    response = await client.post(f"{BASE}/batches/999/mark-paid", headers=auth_headers(users["admin"]))
    assert response.status_code == 404
