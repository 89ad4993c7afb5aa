"""
Notification Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Dict, Any
from backend.app.models.notification import NotificationType


class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: str
    data: Optional[Dict[str, Any]]
    read: bool
    created_at: datetime
    read_at: Optional[datetime]

    class Config:
        from_attributes = True


class OutboxDrainResponse(BaseModel):
    processed: int
    failed: int
    dead_lettered: int


class ReadStateResponse(BaseModel):
    success: bool = True
    count: int
