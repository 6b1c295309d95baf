"""
Payment Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from coursepay.app.models.payment_enums import OrderStatus, TransactionStatus


class PaymentCreate(BaseModel):
    """Schema for starting a course payment."""
    course_id: int = Field(..., gt=0)


class PaymentCreateResponse(BaseModel):
    order_id: int
    transaction_id: int
    payment_url: str
    amount: Decimal
    course_id: int
    course_title: str
    reused: bool = False


class TransactionResponse(BaseModel):
    id: int
    amount: Decimal
    status: TransactionStatus
    gateway_ref: str
    gateway_transaction_no: Optional[str]
    response_code: Optional[str]
    message: Optional[str]
    bank_code: Optional[str]
    paid_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderStatusResponse(BaseModel):
    order_id: int
    status: OrderStatus
    total_amount: Decimal
    created_at: datetime
    course_ids: List[int]
    transaction: Optional[TransactionResponse]


class IPNResponse(BaseModel):
    """VNPay IPN acknowledgement."""
    RspCode: str
    Message: str
