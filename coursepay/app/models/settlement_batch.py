"""
Instructor Settlement Batch database model.

Monthly payout unit for one instructor.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Index, text
from sqlalchemy.sql import func
from coursepay.app.db.session import Base
from coursepay.app.models.payment_enums import SettlementBatchStatus

# Canceled batches are kept for the record but release the (instructor, month) slot
_OPEN_BATCH = text("status != 'CANCELED'")


class InstructorSettlementBatch(Base):
    """
    Settlement Batch model.

    Totals equal the sum of the member InstructorEarning rows.
    Workflow: GENERATED -> PAID (terminal) or GENERATED -> CANCELED (terminal).
    """
    __tablename__ = "instructor_settlement_batches"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Payee
    instructor_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    month = Column(String(7), nullable=False, index=True)

    # Aggregated financials
    total_gross = Column(Numeric(14, 2), nullable=False)
    total_platform_fee = Column(Numeric(14, 2), nullable=False)
    total_net = Column(Numeric(14, 2), nullable=False)

    status = Column(Enum(SettlementBatchStatus), default=SettlementBatchStatus.GENERATED, nullable=False, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # One open batch per instructor and month
    __table_args__ = (
        Index('ux_settlement_batches_instructor_month_open', 'instructor_id', 'month', unique=True,
              postgresql_where=_OPEN_BATCH, sqlite_where=_OPEN_BATCH),
    )

    def __repr__(self):
        return f"<InstructorSettlementBatch(id={self.id}, instructor={self.instructor_id}, month='{self.month}', status='{self.status.value}')>"


class SettlementRunLock(Base):
    """
    Settlement Run Lock model.

    One row per month while generate_batches runs for it; the unique month
    makes a second concurrent run fail its insert.
    """
    __tablename__ = "settlement_run_locks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    month = Column(String(7), nullable=False, unique=True)
    locked_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<SettlementRunLock(month='{self.month}', locked_at={self.locked_at})>"
