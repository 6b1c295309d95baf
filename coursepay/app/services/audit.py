"""
Audit logging service for payment and payroll events.

Audit rows are added to the caller's session; the caller decides when the
unit of work commits.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from coursepay.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    # Payments
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"

    # Earnings
    EARNINGS_SYNCED = "EARNINGS_SYNCED"
    EARNINGS_DERIVED = "EARNINGS_DERIVED"

    # Settlements
    SETTLEMENT_GENERATED = "SETTLEMENT_GENERATED"
    SETTLEMENT_PAID = "SETTLEMENT_PAID"
    SETTLEMENT_CANCELED = "SETTLEMENT_CANCELED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    commit: bool = True
) -> AuditLog:
    """
    Record an audit event.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action, None for system events
        actor_username: Username of actor
        entity_type: Kind of record acted upon
        entity_id: ID of record acted upon
        metadata: Additional context as JSON
        ip_address: IP address of the request
        commit: Commit immediately; pass False to ride along with the caller's transaction

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    if commit:
        await db.commit()
    else:
        await db.flush()

    return audit_log
