"""
Enrollment Materializer.

Grants course access for every line of a completed order. Re-running it for
the same order is the normal replay path and leaves exactly one enrollment
per (user, course).
"""

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.app.core.exceptions import InvalidStateError
from coursepay.app.db.upsert import dialect_insert
from coursepay.app.models.enrollment import Enrollment
from coursepay.app.models.order import Order, OrderDetail
from coursepay.app.models.payment_enums import EnrollmentStatus, OrderStatus

logger = logging.getLogger(__name__)


class EnrollmentMaterializer:

    @staticmethod
    async def materialize(db: AsyncSession, order: Order) -> List[Enrollment]:
        """
        Upsert one Enrollment per course in a completed order.

        Uses INSERT ... ON CONFLICT (user_id, course_id) DO UPDATE so an
        enrollment that already exists is re-pointed at this order instead of
        duplicated.

        Args:
            db: Database session (committed here)
            order: A COMPLETED order

        Returns:
            The enrollments for the order's courses

        Raises:
            InvalidStateError: if the order is not COMPLETED
        """
        if order.status != OrderStatus.COMPLETED:
            raise InvalidStateError(
                f"Order {order.id} is {order.status.value}, enrollments require a completed order",
                details={"order_id": order.id},
            )

        result = await db.execute(
            select(OrderDetail.course_id).where(OrderDetail.order_id == order.id)
        )
        course_ids = sorted(set(result.scalars().all()))
        if not course_ids:
            return []

        rows = [
            {
                "user_id": order.user_id,
                "course_id": course_id,
                "order_id": order.id,
                "status": EnrollmentStatus.ACTIVE,
            }
            for course_id in course_ids
        ]
        stmt = dialect_insert(db, Enrollment.__table__).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "course_id"],
            set_={"order_id": stmt.excluded.order_id},
        )
        await db.execute(stmt)
        await db.commit()

        enrollments = await db.execute(
            select(Enrollment)
            .where(Enrollment.user_id == order.user_id, Enrollment.course_id.in_(course_ids))
            .order_by(Enrollment.course_id)
            .execution_options(populate_existing=True)
        )
        materialized = enrollments.scalars().all()
        logger.info(f"Materialized {len(materialized)} enrollment(s) for order {order.id}")
        return materialized
