"""
Outbox writer.

Events are added to the caller's session so they commit (or roll back)
together with the state change they describe.
"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.outbox import OutboxEvent, OutboxEventType, OutboxStatus


def append_event(
    db: AsyncSession,
    event_type: OutboxEventType,
    aggregate_type: str,
    aggregate_id: int,
    payload: Dict[str, Any],
) -> OutboxEvent:
    event = OutboxEvent(
        event_type=event_type.value,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        payload=payload,
        status=OutboxStatus.PENDING,
        attempts=0,
    )
    db.add(event)
    return event


def transaction_payload(txn) -> Dict[str, Any]:
    """JSON-safe snapshot of a transaction for event consumers."""
    return {
        "transaction_id": txn.id,
        "type": txn.type.value,
        "status": txn.status.value,
        "payer_id": txn.payer_id,
        "receiver_id": txn.receiver_id,
        "company_id": txn.company_id,
        "amount": str(txn.amount),
        "source_app": txn.source_app.value,
        "description": txn.description,
        "metadata": txn.metadata_payload or {},
        "reference": txn.reference,
    }
