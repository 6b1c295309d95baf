"""
CSV exports for payroll.
"""

import csv
import io
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.app.models.payment_enums import SettlementBatchStatus
from coursepay.app.models.settlement_batch import InstructorSettlementBatch
from coursepay.app.models.user import User

SETTLEMENT_HEADERS = [
    "Batch ID",
    "Instructor ID",
    "Instructor Name",
    "Instructor Email",
    "Month",
    "Total Gross",
    "Platform Fee",
    "Total Net",
    "Status",
    "Paid At",
    "Created At",
]


def _iso(value) -> str:
    return value.isoformat() if value else ""


def render_settlements_csv(batches: List[InstructorSettlementBatch], instructors: Dict[int, User]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(SETTLEMENT_HEADERS)

    for batch in batches:
        instructor = instructors.get(batch.instructor_id)
        writer.writerow(
            [
                batch.id,
                batch.instructor_id,
                instructor.full_name if instructor and instructor.full_name else "",
                instructor.email if instructor else "",
                batch.month,
                batch.total_gross,
                batch.total_platform_fee,
                batch.total_net,
                batch.status.value,
                _iso(batch.paid_at),
                _iso(batch.created_at),
            ]
        )

    return output.getvalue()


async def export_settlements_csv(
    db: AsyncSession,
    status: Optional[SettlementBatchStatus] = None,
    month: Optional[str] = None
) -> str:
    """All matching settlement batches as CSV, newest first."""
    query = select(InstructorSettlementBatch)
    if status:
        query = query.where(InstructorSettlementBatch.status == status)
    if month:
        query = query.where(InstructorSettlementBatch.month == month)
    query = query.order_by(InstructorSettlementBatch.created_at.desc(), InstructorSettlementBatch.id.desc())

    result = await db.execute(query)
    batches = result.scalars().all()

    instructor_ids = {batch.instructor_id for batch in batches}
    instructors: Dict[int, User] = {}
    if instructor_ids:
        users = await db.execute(select(User).where(User.id.in_(instructor_ids)))
        instructors = {user.id: user for user in users.scalars().all()}

    return render_settlements_csv(batches, instructors)
