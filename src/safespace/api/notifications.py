"""Notification API routes — the in-app inbox."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.auth.dependencies import CurrentIdentity, get_current_user
from safespace.db.engine import get_db
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.dependencies import get_broadcaster
from safespace.schemas.notification import NotificationRead, UnreadCount
from safespace.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
)

router = APIRouter(prefix="/notifications")


def _svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> NotificationService:
    return NotificationService(db, broadcaster)


@router.get("", response_model=list[NotificationRead])
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    return await svc.list_for_user(
        identity.user_id, unread_only=unread_only, limit=limit
    )


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    return {"unread": await svc.unread_count(identity.user_id)}


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_notification_read(
    notification_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    try:
        return await svc.mark_read(notification_id, identity.user_id)
    except NotificationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
