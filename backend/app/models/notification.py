"""
Notification Database Model.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import value_enum
import enum


class NotificationType(str, enum.Enum):
    PAYMENT = "payment_notification"
    INVOICE = "invoice_notification"
    ORDER = "order_notification"
    SYSTEM = "system_notification"


class Notification(Base):
    """
    In-App Notification.
    Append-only; only the receiving user flips the read flag.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Recipient
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Content
    type = Column(value_enum(NotificationType), default=NotificationType.SYSTEM, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)

    # Outbox event that produced it (duplicates allowed on redelivery)
    source_event_id = Column(Integer, nullable=True, index=True)

    # State
    read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, title='{self.title}')>"
