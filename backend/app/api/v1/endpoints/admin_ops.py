"""
Admin Operations API Endpoints.

Outbox draining, dead letter requeue, reconciliation and audit trail.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.config import settings
from backend.app.core.guards import require_operation
from backend.app.db.session import get_db, get_session_factory
from backend.app.domain.settlement.reconciliation import ReconciliationReport, ReconciliationService
from backend.app.domain.validation.gate import Operation
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.user import User
from backend.app.schemas.notification import OutboxDrainResponse
from backend.app.services.audit import AuditAction, get_audit_trail, log_event
from backend.app.services.notifier import CrossAppNotifier

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])

require_ops = require_operation(Operation.RUN_OPS)


@router.post("/outbox/drain", response_model=OutboxDrainResponse)
async def drain_outbox(
    batch_size: int = Query(None, ge=1, le=1000),
    admin: User = Depends(require_ops),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Deliver pending notification events now."""
    return await CrossAppNotifier.drain(session_factory, batch_size)


@router.post("/reconcile", response_model=ReconciliationReport)
async def reconcile(
    limit: int = Query(None, ge=1, le=5000),
    admin: User = Depends(require_ops),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Re-apply mark-paid for completed payments whose document was not updated."""
    return await ReconciliationService.run(session_factory, limit or settings.reconciliation_batch_size)


@router.get("/dlq")
async def list_dlq(
    status_filter: DLQStatus = Query(DLQStatus.FAILED, alias="status"),
    admin: User = Depends(require_ops),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(DeadLetterQueue)
        .where(DeadLetterQueue.status == status_filter)
        .order_by(desc(DeadLetterQueue.id))
        .limit(100)
    )
    return [
        {
            "id": item.id,
            "task_name": item.task_name,
            "source_event_id": item.source_event_id,
            "error_message": item.error_message,
            "retry_count": item.retry_count,
            "status": item.status.value,
        }
        for item in result.scalars().all()
    ]


@router.post("/dlq/{dlq_id}/retry")
async def retry_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    admin: User = Depends(require_ops),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Put a dead-lettered notification event back on the outbox."""
    item = await CrossAppNotifier.requeue_dead_letter(session_factory, dlq_id)
    await log_event(
        session_factory,
        AuditAction.DLQ_REQUEUED,
        actor_id=admin.id,
        resource_type="dlq",
        resource_id=dlq_id,
    )
    return {"message": f"Task {item.task_name} requeued", "retry_count": item.retry_count}


@router.get("/audit")
async def audit_trail(
    action: str = Query(None),
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(require_ops),
    db: AsyncSession = Depends(get_db)
) -> List[dict]:
    logs = await get_audit_trail(db, action=action, limit=limit)
    return [
        {
            "id": log.id,
            "action": log.action,
            "actor_id": log.actor_id,
            "resource_type": log.resource_type,
            "resource_id": log.resource_id,
            "transaction_id": log.transaction_id,
            "metadata": log.meta_data,
            "timestamp": log.timestamp.isoformat() if log.timestamp else None,
        }
        for log in logs
    ]
