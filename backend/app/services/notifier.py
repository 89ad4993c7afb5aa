"""
Cross-App Notifier.

Drains the outbox written by settlement units and turns every event into
exactly one in-app notification. Runs outside the settlement transaction:
a failing delivery is logged and counted on the event, and after
``outbox_max_attempts`` the event is parked in the dead letter queue.
Delivery is at-least-once.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.clock import utc_now
from backend.app.core.config import settings
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.db.transaction import run_atomic
from backend.app.models.company import Company
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.notification import Notification, NotificationType
from backend.app.models.outbox import OutboxEvent, OutboxEventType, OutboxStatus
from backend.app.schemas.notification import OutboxDrainResponse
from backend.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# transaction.created, keyed by transaction type:
# (recipient field, notification type, title, message template)
_TRANSACTION_TEMPLATES = {
    "invoice_payment": ("receiver_id", NotificationType.INVOICE, "Invoice Payment Received",
                        "Invoice payment of {amount} {currency} received"),
    "product_purchase": ("receiver_id", NotificationType.ORDER, "Order Payment Received",
                         "Order payment of {amount} {currency} received"),
    "transfer": ("receiver_id", NotificationType.PAYMENT, "Payment Received",
                 "You received a payment of {amount} {currency}"),
    "wallet_topup": ("payer_id", NotificationType.PAYMENT, "Payment Successful",
                     "Your payment of {amount} {currency} was successful"),
}


async def _company_owner(db: AsyncSession, company_id: int) -> int:
    company = await db.get(Company, company_id)
    if company is None:
        raise ResourceNotFoundError("Company", company_id)
    return company.owner_id


async def render_notification(db: AsyncSession, event: OutboxEvent) -> Notification:
    """Map one outbox event to its notification."""
    payload = event.payload
    event_type = OutboxEventType(event.event_type)

    if event_type == OutboxEventType.TRANSACTION_CREATED:
        recipient_field, kind, title, template = _TRANSACTION_TEMPLATES[payload["type"]]
        metadata = payload.get("metadata") or {}
        data = {"transaction_id": payload["transaction_id"]}
        if "invoice_id" in metadata:
            data["invoice_id"] = metadata["invoice_id"]
        if "order_id" in metadata:
            data["order_id"] = metadata["order_id"]
        return NotificationService.build(
            user_id=payload[recipient_field],
            type=kind,
            title=title,
            message=template.format(amount=payload["amount"], currency=settings.currency),
            data=data,
        )

    if event_type == OutboxEventType.TRANSACTION_FAILED:
        return NotificationService.build(
            user_id=payload["payer_id"],
            type=NotificationType.PAYMENT,
            title="Payment Failed",
            message=f"Your payment of {payload['amount']} {settings.currency} failed",
            data={"transaction_id": payload["transaction_id"]},
        )

    if event_type == OutboxEventType.INVOICE_PAID:
        return NotificationService.build(
            user_id=await _company_owner(db, payload["company_id"]),
            type=NotificationType.PAYMENT,
            title="Invoice Paid",
            message=f"Invoice {payload['invoice_number']} has been paid by {payload['payer_email']}",
            data={"invoice_id": payload["invoice_id"], "transaction_id": payload["transaction_id"]},
        )

    # ORDER_PAID
    return NotificationService.build(
        user_id=await _company_owner(db, payload["company_id"]),
        type=NotificationType.PAYMENT,
        title="Order Paid",
        message=f"Order {payload['order_id']} has been paid by {payload['payer_email']}",
        data={"order_id": payload["order_id"], "transaction_id": payload["transaction_id"]},
    )


class CrossAppNotifier:

    @staticmethod
    async def _dispatch(session_factory: async_sessionmaker, event_id: int) -> bool:
        async def work(db: AsyncSession) -> bool:
            event = await db.get(OutboxEvent, event_id)
            if event is None or event.status != OutboxStatus.PENDING:
                return False
            notification = await render_notification(db, event)
            notification.source_event_id = event.id
            db.add(notification)
            event.status = OutboxStatus.PROCESSED
            event.attempts = event.attempts + 1
            event.processed_at = utc_now()
            return True

        return await run_atomic(session_factory, work, label="outbox_dispatch")

    @staticmethod
    async def _record_failure(session_factory: async_sessionmaker, event_id: int, error: Exception) -> bool:
        """Count a failed delivery; returns True when the event was dead-lettered."""
        async def work(db: AsyncSession) -> bool:
            event = await db.get(OutboxEvent, event_id)
            if event is None:
                return False
            event.attempts = event.attempts + 1
            event.last_error = f"{type(error).__name__}: {error}"[:1000]
            if event.attempts < settings.outbox_max_attempts:
                return False
            event.status = OutboxStatus.FAILED
            db.add(DeadLetterQueue(
                task_name=event.event_type,
                source_event_id=event.id,
                error_message=event.last_error,
                payload=event.payload,
                status=DLQStatus.FAILED,
                retry_count=0,
            ))
            return True

        try:
            return await run_atomic(session_factory, work, label="outbox_failure")
        except Exception:
            logger.exception("Could not record outbox failure", extra={"event_id": event_id})
            return False

    @staticmethod
    async def drain(session_factory: async_sessionmaker, batch_size: Optional[int] = None) -> OutboxDrainResponse:
        """Deliver up to ``batch_size`` pending events, oldest first."""
        limit = batch_size or settings.outbox_batch_size
        async with session_factory() as db:
            result = await db.execute(
                select(OutboxEvent.id)
                .where(OutboxEvent.status == OutboxStatus.PENDING)
                .order_by(OutboxEvent.id)
                .limit(limit)
            )
            event_ids = list(result.scalars().all())

        processed = failed = dead_lettered = 0
        for event_id in event_ids:
            try:
                if await CrossAppNotifier._dispatch(session_factory, event_id):
                    processed += 1
            except Exception as exc:
                # Delivery failures stay inside the notifier
                logger.exception("Outbox delivery failed", extra={"event_id": event_id})
                failed += 1
                if await CrossAppNotifier._record_failure(session_factory, event_id, exc):
                    dead_lettered += 1
                    logger.error("Outbox event dead-lettered", extra={"event_id": event_id})

        if event_ids:
            logger.info(
                "Outbox drained",
                extra={"processed": processed, "failed": failed, "dead_lettered": dead_lettered},
            )
        return OutboxDrainResponse(processed=processed, failed=failed, dead_lettered=dead_lettered)

    @staticmethod
    async def drain_quietly(session_factory: async_sessionmaker) -> None:
        """Background-task entry point; never raises."""
        try:
            await CrossAppNotifier.drain(session_factory)
        except Exception:
            logger.exception("Outbox drain aborted")

    @staticmethod
    async def requeue_dead_letter(session_factory: async_sessionmaker, dlq_id: int) -> DeadLetterQueue:
        """Put a dead-lettered event back on the outbox with its attempt counter reset."""
        async def work(db: AsyncSession) -> DeadLetterQueue:
            item = await db.get(DeadLetterQueue, dlq_id)
            if item is None:
                raise ResourceNotFoundError("DLQ item", dlq_id)
            event = await db.get(OutboxEvent, item.source_event_id) if item.source_event_id else None
            if event is None:
                raise ResourceNotFoundError("Outbox event", item.source_event_id)
            event.status = OutboxStatus.PENDING
            event.attempts = 0
            event.last_error = None
            item.status = DLQStatus.RETRYING
            item.retry_count = (item.retry_count or 0) + 1
            item.last_retry_at = utc_now()
            return item

        return await run_atomic(session_factory, work, label="dlq_requeue")


async def run_outbox_worker(session_factory: async_sessionmaker, interval_seconds: float) -> None:
    """Poll the outbox until cancelled."""
    logger.info("Outbox worker started", extra={"interval_seconds": interval_seconds})
    while True:
        await CrossAppNotifier.drain_quietly(session_factory)
        await asyncio.sleep(interval_seconds)
