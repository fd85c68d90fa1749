"""Notification service — in-app notifications with live push.

Learn: A notification is a row (so it survives reloads) plus a
`notification.created` broadcast on the owner's user channel (so an open
browser shows it immediately). Urgent notifications — the ones created
for panic alerts — are critical broadcasts: a failed push is escalated.

Two-step API so callers can batch rows into their own transaction:
- stage()   adds rows, no commit, no broadcast
- publish() broadcasts rows that are already committed
create() does both for the single-notification case.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.db.models import Notification
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.events import NotificationCreated
from safespace.realtime.snapshots import NotificationSnapshot

TYPE_MESSAGE_RECEIVED = "message_received"
TYPE_PANIC_ALERT = "panic_alert"
TYPE_PANIC_ALERT_RESOLVED = "panic_alert_resolved"
TYPE_GROUP_MEMBER_ADDED = "group_member_added"
TYPE_CONNECTION_ASSIGNED = "connection_assigned"
TYPE_CONNECTION_TERMINATED = "connection_terminated"
TYPE_SYSTEM_ANNOUNCEMENT = "system_announcement"

_ICONS = {
    TYPE_MESSAGE_RECEIVED: "message",
    TYPE_PANIC_ALERT: "alert-triangle",
    TYPE_PANIC_ALERT_RESOLVED: "check-circle",
    TYPE_GROUP_MEMBER_ADDED: "users",
    TYPE_CONNECTION_ASSIGNED: "user-check",
    TYPE_CONNECTION_TERMINATED: "user-minus",
    TYPE_SYSTEM_ANNOUNCEMENT: "megaphone",
}

PRIORITIES = ("low", "normal", "high", "urgent")


class NotificationNotFoundError(Exception):
    """Raised when a notification is missing or owned by someone else."""


def icon_for(notification_type: str) -> str:
    return _ICONS.get(notification_type, "bell")


class NotificationService:
    def __init__(self, db: AsyncSession, broadcaster: Broadcaster):
        self.db = db
        self.broadcaster = broadcaster

    def stage(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        *,
        data: Optional[dict[str, Any]] = None,
        action_url: Optional[str] = None,
        priority: str = "normal",
    ) -> Notification:
        if priority not in PRIORITIES:
            raise ValueError(f"Unknown priority: {priority!r}")
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=data,
            action_url=action_url,
            icon=icon_for(notification_type),
            priority=priority,
        )
        self.db.add(notification)
        return notification

    async def publish(self, notifications: list[Notification]) -> list[bool]:
        results = []
        for notification in notifications:
            snapshot = NotificationSnapshot.model_validate(notification)
            results.append(
                await self.broadcaster.dispatch(NotificationCreated(snapshot))
            )
        return results

    async def create(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        **kwargs,
    ) -> tuple[Notification, bool]:
        notification = self.stage(user_id, notification_type, title, message, **kwargs)
        await self.db.commit()
        [sent] = await self.publish([notification])
        return notification, sent

    async def list_for_user(
        self,
        user_id: int,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        q = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        if unread_only:
            q = q.where(Notification.read_at.is_(None))
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def unread_count(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.read_at.is_(None),
            )
        )
        return result.scalar_one()

    async def mark_read(self, notification_id: int, user_id: int) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if not notification or notification.user_id != user_id:
            raise NotificationNotFoundError(
                f"Notification {notification_id} not found"
            )
        if notification.read_at is None:
            notification.read_at = datetime.now(timezone.utc)
            await self.db.commit()
        return notification
