"""
Enrollment database model.

Grants a user access to a course. At most one row per (user, course),
enforced by a unique constraint that the materializer upserts against.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from coursepay.app.db.session import Base
from coursepay.app.models.payment_enums import EnrollmentStatus


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey('courses.id'), nullable=False, index=True)

    # Null for free enrollments
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=True, index=True)

    status = Column(Enum(EnrollmentStatus), default=EnrollmentStatus.ACTIVE, nullable=False)
    enrolled_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'course_id', name='uq_enrollments_user_course'),
    )

    def __repr__(self):
        return f"<Enrollment(user_id={self.user_id}, course_id={self.course_id}, order_id={self.order_id})>"
