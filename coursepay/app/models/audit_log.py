"""
Audit Log Database Model.

Tracks payment completions and admin payroll actions.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from coursepay.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - PAYMENT_COMPLETED / PAYMENT_FAILED (system actor)
    - EARNINGS_SYNCED / EARNINGS_DERIVED
    - SETTLEMENT_GENERATED / SETTLEMENT_PAID / SETTLEMENT_CANCELED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for gateway callbacks)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What the action touched, e.g. ("settlement_batch", 12)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)
    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
