"""
Payment, enrollment and payroll enumerations.
"""

import enum


class OrderStatus(str, enum.Enum):
    """Order status enumeration."""
    PENDING = "pending"  # Waiting for the gateway callback
    COMPLETED = "completed"  # Paid
    CANCELED = "canceled"  # Payment failed or abandoned


class TransactionStatus(str, enum.Enum):
    """Gateway transaction status. Write-once from PENDING."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class EarningStatus(str, enum.Enum):
    """Instructor earning lifecycle."""
    UNSETTLED = "unsettled"  # Not yet in a batch
    BATCHED = "batched"  # Linked to a generated batch
    SETTLED = "settled"  # Batch paid out


class SettlementBatchStatus(str, enum.Enum):
    """Settlement batch status: GENERATED -> PAID or GENERATED -> CANCELED."""
    GENERATED = "generated"
    PAID = "paid"
    CANCELED = "canceled"


class PaymentMethod(str, enum.Enum):
    VNPAY = "vnpay"
