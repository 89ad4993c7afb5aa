"""
Outbox Event Model.

Domain events appended in the same atomic unit as a settlement and
drained asynchronously by the cross-app notifier.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
import enum


class OutboxStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"  # Moved to the dead letter queue


class OutboxEventType(str, enum.Enum):
    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_FAILED = "transaction.failed"
    INVOICE_PAID = "invoice.paid"
    ORDER_PAID = "order.paid"


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    event_type = Column(String(64), nullable=False, index=True)
    aggregate_type = Column(String(32), nullable=False)
    aggregate_id = Column(Integer, nullable=False, index=True)
    payload = Column(JSON, nullable=False)

    status = Column(Enum(OutboxStatus), default=OutboxStatus.PENDING, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<OutboxEvent(id={self.id}, type='{self.event_type}', status='{self.status}')>"
