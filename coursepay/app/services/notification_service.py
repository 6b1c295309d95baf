"""
Notification Service.

Writes in-app notifications after a payment or payout has committed.
Notifications are best effort: a failure is logged and never undoes the
business operation that triggered it.
"""

import logging
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Dict, Any

from coursepay.app.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification. Caller commits."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        db.add(notif)
        await db.flush()
        return notif

    @staticmethod
    async def notify(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Notification]:
        """
        Create and commit a notification. Failures are rolled back and logged.

        Returns:
            The notification, or None if it could not be written
        """
        try:
            notif = await NotificationService.create_notification(
                db, user_id, title, message, type, metadata
            )
            await db.commit()
            return notif
        except Exception as e:
            await db.rollback()
            logger.warning(f"Notification for user {user_id} failed: {e}")
            return None

    @staticmethod
    async def notify_payment_result(
        db: AsyncSession,
        user_id: int,
        order_id: int,
        success: bool,
        amount: Decimal,
        message: str
    ) -> Optional[Notification]:
        if success:
            return await NotificationService.notify(
                db, user_id,
                title="Thanh toán thành công",
                message=f"Đơn hàng #{order_id} đã được thanh toán {amount} VND.",
                type=NotificationType.PAYMENT_SUCCESS,
                metadata={"order_id": order_id},
            )
        return await NotificationService.notify(
            db, user_id,
            title="Thanh toán thất bại",
            message=f"Đơn hàng #{order_id}: {message}",
            type=NotificationType.PAYMENT_FAILED,
            metadata={"order_id": order_id},
        )

    @staticmethod
    async def notify_settlement_paid(
        db: AsyncSession,
        instructor_id: int,
        batch_id: int,
        month: str,
        total_net: Decimal
    ) -> Optional[Notification]:
        return await NotificationService.notify(
            db, instructor_id,
            title="Đã thanh toán thu nhập",
            message=f"Thu nhập tháng {month} ({total_net} VND) đã được chuyển.",
            type=NotificationType.SETTLEMENT_PAID,
            metadata={"batch_id": batch_id, "month": month},
        )

