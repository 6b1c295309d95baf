"""
Order and OrderDetail database models.

An order is one purchase intent; each OrderDetail is one course line.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from coursepay.app.db.session import Base
from coursepay.app.models.payment_enums import OrderStatus, PaymentMethod


class Order(Base):
    """
    Order model.

    Status moves PENDING -> COMPLETED or PENDING -> CANCELED exactly once,
    together with its Transaction.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Buyer
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Financials
    total_amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.VNPAY, nullable=False)

    # Status
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Order(id={self.id}, status='{self.status.value}', total={self.total_amount})>"


class OrderDetail(Base):
    """
    Order line model. Immutable once created.

    `price` is the course price captured at checkout, never re-read from
    the live course.
    """
    __tablename__ = "order_details"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey('courses.id'), nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<OrderDetail(id={self.id}, order_id={self.order_id}, course_id={self.course_id})>"
