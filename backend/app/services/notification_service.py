"""
Notification Service.

Creation and read-state management of in-app notifications. Rows are
append-only apart from the read flag, which only the recipient flips.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, desc
from typing import Optional, Dict, Any, List

from backend.app.core.clock import utc_now
from backend.app.models.notification import Notification, NotificationType


class NotificationService:

    @staticmethod
    def build(
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.SYSTEM,
        data: Optional[Dict[str, Any]] = None,
        source_event_id: Optional[int] = None,
    ) -> Notification:
        return Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data,
            source_event_id=source_event_id,
            read=False,
        )

    @staticmethod
    async def create_notification(db: AsyncSession, **fields) -> Notification:
        notif = NotificationService.build(**fields)
        db.add(notif)
        await db.flush()  # Caller commits
        return notif

    @staticmethod
    async def list_for_user(
        db: AsyncSession, user_id: int, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        """Newest first."""
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.read.is_(False))
        result = await db.execute(
            query.order_by(desc(Notification.created_at), desc(Notification.id)).limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def unread_count(db: AsyncSession, user_id: int) -> int:
        result = await db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.read.is_(False)
            )
        )
        return result.scalar_one()

    @staticmethod
    async def _flag_read(db: AsyncSession, *criteria) -> int:
        result = await db.execute(
            update(Notification)
            .where(Notification.read.is_(False), *criteria)
            .values(read=True, read_at=utc_now())
        )
        return result.rowcount

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """False when the notification is not the user's. Re-reading keeps the first read_at."""
        owned = await db.execute(
            select(Notification.id).where(Notification.id == notification_id, Notification.user_id == user_id)
        )
        if owned.scalar_one_or_none() is None:
            return False
        await NotificationService._flag_read(db, Notification.id == notification_id)
        return True

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: int) -> int:
        return await NotificationService._flag_read(db, Notification.user_id == user_id)
