"""
Admin Settlement API Endpoints.

Earning sync and monthly instructor payroll: preview, generate, pay, cancel,
list, stats and CSV export.
"""

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from coursepay.app.db.session import get_db
from coursepay.app.models.enums import UserRole
from coursepay.app.models.payment_enums import SettlementBatchStatus
from coursepay.app.schemas.settlement import (
    MONTH_PATTERN,
    EarningDeriveRequest,
    EarningDeriveResponse,
    EarningResponse,
    EarningSyncRequest,
    EarningSyncResponse,
    InstructorEarningsResponse,
    PayrollSummaryRow,
    PendingEarningGroup,
    SettlementActionResponse,
    SettlementBatchDetail,
    SettlementBatchList,
    SettlementBatchResponse,
    SettlementGenerateRequest,
    SettlementGenerateResponse,
    SettlementStats,
)
from coursepay.app.core.guards import require_role
from coursepay.app.domain.payroll.earning_ledger import EarningLedger
from coursepay.app.domain.payroll.exports import export_settlements_csv
from coursepay.app.domain.payroll.settlement_aggregator import SettlementAggregator
from coursepay.app.services.audit import log_event, AuditAction
from coursepay.app.services.notification_service import NotificationService

router = APIRouter(prefix="/admin/settlement", tags=["Admin - Settlement"])

admin_only = require_role([UserRole.ADMIN])


def _batch_response(batch, earnings_count: Optional[int] = None) -> SettlementBatchResponse:
    response = SettlementBatchResponse.model_validate(batch)
    response.earnings_count = earnings_count
    return response


@router.post("/earnings/sync", response_model=EarningSyncResponse)
async def sync_earnings(
    payload: Optional[EarningSyncRequest] = None,
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """
    Back-fill earnings for successful transactions that have none.
    """
    payload = payload or EarningSyncRequest()
    result = await EarningLedger.sync_underived_earnings(db, limit=payload.limit, from_date=payload.from_date)

    await log_event(
        db=db,
        action=AuditAction.EARNINGS_SYNCED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        metadata={
            "processed": result.processed,
            "created": result.total_created,
            "errors": len(result.errors),
        }
    )

    return EarningSyncResponse(
        processed=result.processed,
        total_created=result.total_created,
        total_skipped=result.total_skipped,
        errors=result.errors,
    )


@router.post("/earnings/derive", response_model=EarningDeriveResponse)
async def derive_earnings(
    payload: EarningDeriveRequest,
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Derive earnings for a single successful transaction."""
    result = await EarningLedger.derive_from_transaction(db, payload.transaction_id)

    await log_event(
        db=db,
        action=AuditAction.EARNINGS_DERIVED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="transaction",
        entity_id=payload.transaction_id,
        metadata={"created": result.created, "skipped": result.skipped}
    )

    return EarningDeriveResponse(
        transaction_id=payload.transaction_id,
        created=result.created,
        skipped=result.skipped,
        earnings=[EarningResponse.model_validate(e) for e in result.earnings],
    )


@router.get("/earnings/pending", response_model=List[PendingEarningGroup])
async def pending_earnings(
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Unsettled earnings grouped by instructor and month."""
    return await EarningLedger.pending_summary(db, month)


@router.get("/earnings/{instructor_id}", response_model=InstructorEarningsResponse)
async def instructor_earnings(
    instructor_id: int = Path(..., description="Instructor user ID"),
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN),
    limit: int = Query(100, gt=0, le=500),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Earnings of one instructor with per-status net totals."""
    earnings = await EarningLedger.list_instructor_earnings(
        db, instructor_id, month=month, limit=limit, offset=offset
    )
    totals = await EarningLedger.instructor_totals(db, instructor_id)
    return InstructorEarningsResponse(
        instructor_id=instructor_id,
        totals=totals,
        earnings=[EarningResponse.model_validate(e) for e in earnings],
    )


@router.get("/summary", response_model=List[PayrollSummaryRow])
async def payroll_summary(
    month: str = Query(..., pattern=MONTH_PATTERN),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Preview of the batches a month would generate."""
    return await SettlementAggregator.payroll_summary(db, month)


@router.post("/generate", response_model=SettlementGenerateResponse)
async def generate_settlement(
    payload: SettlementGenerateRequest,
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """
    Generate settlement batches for a month.

    Returns 409 if the month already has non-canceled batches.
    """
    result = await SettlementAggregator.generate_batches(db, payload.month)

    await log_event(
        db=db,
        action=AuditAction.SETTLEMENT_GENERATED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        metadata={
            "month": payload.month,
            "batches_created": result.batches_created,
            "earnings_processed": result.earnings_processed,
            "failed": len(result.failed),
        }
    )

    return SettlementGenerateResponse(
        month=result.month,
        batches_created=result.batches_created,
        earnings_processed=result.earnings_processed,
        batches=[_batch_response(b) for b in result.batches],
        failed=result.failed,
    )


@router.get("/batches", response_model=SettlementBatchList)
async def list_batches(
    status: Optional[SettlementBatchStatus] = Query(None),
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN),
    instructor_id: Optional[int] = Query(None, gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, gt=0, le=100),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """List settlement batches, newest first."""
    rows, total = await SettlementAggregator.list_batches(
        db, status=status, month=month, instructor_id=instructor_id, page=page, limit=limit
    )
    return SettlementBatchList(
        batches=[_batch_response(batch, count) for batch, count in rows],
        page=page,
        limit=limit,
        total=total,
    )


@router.get("/batches/{batch_id}", response_model=SettlementBatchDetail)
async def get_batch(
    batch_id: int = Path(..., description="Settlement batch ID"),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Settlement batch with its member earnings."""
    batch, earnings = await SettlementAggregator.get_batch_detail(db, batch_id)
    return SettlementBatchDetail(
        **_batch_response(batch, len(earnings)).model_dump(),
        earnings=[EarningResponse.model_validate(e) for e in earnings],
    )


@router.post("/batches/{batch_id}/mark-paid", response_model=SettlementActionResponse)
async def mark_batch_paid(
    batch_id: int = Path(..., description="Settlement batch ID"),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """
    Mark a GENERATED batch as PAID.

    Returns 409 if the batch is already paid or was canceled.
    """
    batch, settled = await SettlementAggregator.mark_batch_paid(db, batch_id)

    await log_event(
        db=db,
        action=AuditAction.SETTLEMENT_PAID,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="settlement_batch",
        entity_id=batch.id,
        metadata={"month": batch.month, "total_net": str(batch.total_net), "earnings": settled}
    )
    response = SettlementActionResponse(
        batch_id=batch.id,
        status=batch.status,
        earnings_updated=settled,
        paid_at=batch.paid_at,
    )
    await NotificationService.notify_settlement_paid(
        db,
        instructor_id=batch.instructor_id,
        batch_id=batch.id,
        month=batch.month,
        total_net=batch.total_net,
    )
    return response


@router.post("/batches/{batch_id}/cancel", response_model=SettlementActionResponse)
async def cancel_batch(
    batch_id: int = Path(..., description="Settlement batch ID"),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a GENERATED batch and release its earnings."""
    batch, released = await SettlementAggregator.cancel_batch(db, batch_id)

    await log_event(
        db=db,
        action=AuditAction.SETTLEMENT_CANCELED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="settlement_batch",
        entity_id=batch.id,
        metadata={"month": batch.month, "earnings_released": released}
    )

    return SettlementActionResponse(
        batch_id=batch.id,
        status=batch.status,
        earnings_updated=released,
        paid_at=batch.paid_at,
    )


@router.get("/stats", response_model=SettlementStats)
async def settlement_stats(
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Batch counts and amounts by status."""
    return await SettlementAggregator.get_stats(db)


@router.get("/export")
async def export_settlements(
    status: Optional[SettlementBatchStatus] = Query(None),
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Settlement batches as a CSV download."""
    content = await export_settlements_csv(db, status=status, month=month)
    filename = f"settlements-{month or 'all'}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
