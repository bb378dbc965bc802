"""
services/notification/router.py
In-app notification inbox. Rows are written by the dispatcher; this
module only reads, marks and deletes them.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import Notification, NotificationPriority, NotificationType, User, utcnow
from shared.schemas.schemas import (
    MessageResponse,
    NotificationEnvelope,
    NotificationListResponse,
    NotificationResponse,
)
from shared.utils.errors import NotFoundError

router = APIRouter(prefix="/notifications", tags=["Notifications"])


async def _get_notification_or_404(db: AsyncSession, notification_id: UUID, user: User) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id, Notification.user_id == user.id
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


@router.get("", response_model=NotificationListResponse)
async def get_my_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    read: Optional[bool] = Query(None),
    type: Optional[NotificationType] = Query(None),
    priority: Optional[NotificationPriority] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest first; `unread_count` covers the whole inbox, not just this page."""
    query = select(Notification).where(Notification.user_id == current_user.id)
    if read is not None:
        query = query.where(Notification.is_read == read)
    if type:
        query = query.where(Notification.type == type)
    if priority:
        query = query.where(Notification.priority == priority)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    unread = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    result = await db.execute(
        query.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    notifications = result.scalars().all()

    return NotificationListResponse(
        count=len(notifications),
        total=total,
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        unread_count=unread or 0,
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
    )


@router.put("/read-all", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        update(Notification)
        .where(Notification.user_id == current_user.id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True, read_at=utcnow())
    )
    await db.commit()
    return MessageResponse(message="All notifications marked as read")


@router.put("/{notification_id}/read", response_model=NotificationEnvelope)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await _get_notification_or_404(db, notification_id, current_user)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
    await db.commit()
    return NotificationEnvelope(
        message="Notification marked as read",
        notification=NotificationResponse.model_validate(notification),
    )


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await _get_notification_or_404(db, notification_id, current_user)
    await db.delete(notification)
    await db.commit()
    return MessageResponse(message="Notification deleted")


@router.delete("", response_model=MessageResponse)
async def delete_all_notifications(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(delete(Notification).where(Notification.user_id == current_user.id))
    await db.commit()
    return MessageResponse(message="All notifications deleted")
