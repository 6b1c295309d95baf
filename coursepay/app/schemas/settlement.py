"""
Settlement and Earning Schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from coursepay.app.models.payment_enums import EarningStatus, SettlementBatchStatus

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class EarningResponse(BaseModel):
    id: int
    instructor_id: int
    order_detail_id: int
    transaction_id: int
    gross_amount: Decimal
    platform_fee_amount: Decimal
    net_amount: Decimal
    month: str
    status: EarningStatus
    settlement_batch_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class EarningSyncRequest(BaseModel):
    limit: Optional[int] = Field(None, gt=0, le=1000)
    from_date: Optional[date] = None


class EarningSyncResponse(BaseModel):
    processed: int
    total_created: int
    total_skipped: int
    errors: List[Dict[str, Any]]


class EarningDeriveRequest(BaseModel):
    transaction_id: int = Field(..., gt=0)


class EarningDeriveResponse(BaseModel):
    transaction_id: int
    created: int
    skipped: int
    earnings: List[EarningResponse]


class PendingEarningGroup(BaseModel):
    instructor_id: int
    month: str
    earning_count: int
    total_gross: Decimal
    total_platform_fee: Decimal
    total_net: Decimal


class InstructorEarningsResponse(BaseModel):
    instructor_id: int
    totals: Dict[str, Decimal]
    earnings: List[EarningResponse]


class PayrollSummaryRow(BaseModel):
    instructor_id: int
    instructor_name: str
    instructor_email: str
    earning_count: int
    total_gross: Decimal
    total_platform_fee: Decimal
    total_net: Decimal


class SettlementGenerateRequest(BaseModel):
    month: str = Field(..., pattern=MONTH_PATTERN)


class SettlementBatchResponse(BaseModel):
    id: int
    instructor_id: int
    month: str
    total_gross: Decimal
    total_platform_fee: Decimal
    total_net: Decimal
    status: SettlementBatchStatus
    paid_at: Optional[datetime]
    created_at: datetime
    earnings_count: Optional[int] = None

    class Config:
        from_attributes = True


class SettlementGenerateResponse(BaseModel):
    month: str
    batches_created: int
    earnings_processed: int
    batches: List[SettlementBatchResponse]
    failed: List[Dict[str, Any]]


class SettlementBatchList(BaseModel):
    batches: List[SettlementBatchResponse]
    page: int
    limit: int
    total: int


class SettlementBatchDetail(SettlementBatchResponse):
    earnings: List[EarningResponse]


class SettlementActionResponse(BaseModel):
    """Response for mark-paid / cancel actions."""
    batch_id: int
    status: SettlementBatchStatus
    earnings_updated: int
    paid_at: Optional[datetime]


class SettlementStats(BaseModel):
    counts: Dict[str, int]
    amounts: Dict[str, Decimal]
