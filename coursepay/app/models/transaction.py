"""
Gateway Transaction database model.

One VNPay payment attempt, tied 1:1 to an Order.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from coursepay.app.db.session import Base
from coursepay.app.models.payment_enums import TransactionStatus


class Transaction(Base):
    """
    Transaction model.

    `gateway_ref` (vnp_TxnRef) is generated by us, unique, and is the
    idempotency key for callbacks. Status is write-once: PENDING -> SUCCESS
    or PENDING -> FAILED.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, unique=True, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False, index=True)

    # Gateway correlation
    gateway_ref = Column(String(64), nullable=False, unique=True, index=True)
    gateway_transaction_no = Column(String(64), nullable=True)
    response_code = Column(String(8), nullable=True)
    message = Column(String(255), nullable=True)
    bank_code = Column(String(32), nullable=True)
    payment_url = Column(Text, nullable=True)

    # Set only on success
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Transaction(id={self.id}, ref='{self.gateway_ref}', status='{self.status.value}')>"
