"""
Instructor Earnings API Endpoints.

Read-only payroll views for the authenticated instructor.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from coursepay.app.db.session import get_db
from coursepay.app.models.enums import UserRole
from coursepay.app.models.payment_enums import EarningStatus
from coursepay.app.schemas.settlement import (
    MONTH_PATTERN,
    EarningResponse,
    InstructorEarningsResponse,
    SettlementBatchResponse,
)
from coursepay.app.core.guards import require_role
from coursepay.app.domain.payroll.earning_ledger import EarningLedger
from coursepay.app.domain.payroll.settlement_aggregator import SettlementAggregator

router = APIRouter(prefix="/instructor", tags=["Instructor - Earnings"])


@router.get("/earnings", response_model=InstructorEarningsResponse)
async def my_earnings(
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN),
    status: Optional[EarningStatus] = Query(None),
    limit: int = Query(100, gt=0, le=500),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_role([UserRole.INSTRUCTOR])),
    db: AsyncSession = Depends(get_db)
):
    """List the instructor's earnings with per-status net totals."""
    instructor_id = current_user["user_id"]
    earnings = await EarningLedger.list_instructor_earnings(
        db, instructor_id, month=month, status=status, limit=limit, offset=offset
    )
    totals = await EarningLedger.instructor_totals(db, instructor_id)
    return InstructorEarningsResponse(
        instructor_id=instructor_id,
        totals=totals,
        earnings=[EarningResponse.model_validate(e) for e in earnings],
    )


@router.get("/settlements", response_model=List[SettlementBatchResponse])
async def my_settlements(
    current_user: dict = Depends(require_role([UserRole.INSTRUCTOR])),
    db: AsyncSession = Depends(get_db)
):
    """List the instructor's settlement batches, newest first."""
    rows, _ = await SettlementAggregator.list_batches(
        db, instructor_id=current_user["user_id"], limit=100
    )
    return [
        SettlementBatchResponse.model_validate(batch).model_copy(update={"earnings_count": count})
        for batch, count in rows
    ]
