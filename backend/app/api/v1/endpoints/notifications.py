"""
Notification API Endpoints.

Inbox of the settlement notifications produced by the outbox drain.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.services.notification_service import NotificationService
from backend.app.schemas.notification import NotificationResponse, ReadStateResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await NotificationService.list_for_user(db, current_user["user_id"], unread_only, limit)


@router.get("/unread-count", response_model=ReadStateResponse)
async def unread_count(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return ReadStateResponse(count=await NotificationService.unread_count(db, current_user["user_id"]))


@router.patch("/read-all", response_model=ReadStateResponse)
async def mark_all_notifications_read(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Flip every unread notification of the caller."""
    count = await NotificationService.mark_all_read(db, current_user["user_id"])
    await db.commit()
    return ReadStateResponse(count=count)


@router.patch("/{notification_id}/read", response_model=ReadStateResponse)
async def mark_notification_read(
    notification_id: int = Path(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Another user's notification is reported as missing."""
    if not await NotificationService.mark_read(db, notification_id, current_user["user_id"]):
        raise ResourceNotFoundError("Notification", notification_id)

    await db.commit()
    return ReadStateResponse(count=1)
