"""
Audit logging service for money movements and operator actions.

Audit rows are written in their own session after the settlement unit
has committed, so a failing audit write can never roll a payment back.
Callers treat a failure as a degraded success.
"""

import logging
from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Standardized audit action constants."""
    INVOICE_SETTLED = "INVOICE_SETTLED"
    ORDER_SETTLED = "ORDER_SETTLED"
    WALLET_TOPPED_UP = "WALLET_TOPPED_UP"
    PEER_TRANSFER = "PEER_TRANSFER"
    LEDGER_TRANSFER = "LEDGER_TRANSFER"
    TOPUP_INITIATED = "TOPUP_INITIATED"
    TOPUP_CONFIRMED = "TOPUP_CONFIRMED"
    TOPUP_DECLINED = "TOPUP_DECLINED"
    PAYMENT_LINK_ISSUED = "PAYMENT_LINK_ISSUED"
    PAYMENT_LINK_REDEEMED = "PAYMENT_LINK_REDEEMED"
    RECONCILIATION_PATCHED = "RECONCILIATION_PATCHED"
    DLQ_REQUEUED = "DLQ_REQUEUED"
    APP_PERMISSION_GRANTED = "APP_PERMISSION_GRANTED"
    APP_PERMISSION_REVOKED = "APP_PERMISSION_REVOKED"


async def log_event(
    session_factory: async_sessionmaker,
    action: str,
    actor_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[int] = None,
    transaction_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Write one audit row in a dedicated session.

    Args:
        session_factory: Factory for the dedicated session
        action: Action being recorded (use AuditAction constants)
        actor_id: Account performing the action, None for system actions
        resource_type: "invoice", "order", "transaction", ...
        resource_id: ID of the touched resource
        transaction_id: Ledger transaction produced, if any
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance

    Raises:
        Any database error; the caller decides how to degrade.
    """
    async with session_factory() as db:
        audit_log = AuditLog(
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            transaction_id=transaction_id,
            meta_data=metadata,
            ip_address=ip_address
        )
        db.add(audit_log)
        await db.commit()
        await db.refresh(audit_log)
        return audit_log


async def get_audit_trail(
    db: AsyncSession,
    actor_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> List[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if actor_id:
        query = query.where(AuditLog.actor_id == actor_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
