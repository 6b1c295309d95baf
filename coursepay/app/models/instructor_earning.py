"""
Instructor Earning database model.

One instructor's share of one sold course line.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from coursepay.app.db.session import Base
from coursepay.app.models.payment_enums import EarningStatus


class InstructorEarning(Base):
    """
    Instructor Earning model.

    Invariants:
    - gross_amount == platform_fee_amount + net_amount (2 decimal places)
    - exactly one row per OrderDetail (unique order_detail_id)
    - month is YYYY-MM of the transaction's paid_at
    """
    __tablename__ = "instructor_earnings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Linkage
    instructor_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    order_detail_id = Column(Integer, ForeignKey('order_details.id'), nullable=False, unique=True, index=True)
    transaction_id = Column(Integer, ForeignKey('transactions.id'), nullable=False, index=True)

    # Financials
    gross_amount = Column(Numeric(12, 2), nullable=False)
    platform_fee_amount = Column(Numeric(12, 2), nullable=False)
    net_amount = Column(Numeric(12, 2), nullable=False)

    month = Column(String(7), nullable=False, index=True)
    status = Column(Enum(EarningStatus), default=EarningStatus.UNSETTLED, nullable=False, index=True)

    # Null until batched
    settlement_batch_id = Column(Integer, ForeignKey('instructor_settlement_batches.id'), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<InstructorEarning(id={self.id}, instructor={self.instructor_id}, net={self.net_amount}, status='{self.status.value}')>"
