"""Message service — direct and group chat.

Learn: The message row is always committed before the broadcast. If the
live push fails the message is still saved; callers get
(message, broadcast_success) and tell the user that others will see it
on their next refresh.

Direct messaging is limited to people with a care relationship:
- anyone ↔ a platform admin
- therapist ↔ client with an active connection
- guardian ↔ their own child
"""

from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from safespace.db.models import Message, TherapistClientConnection, User
from safespace.events.store import EventStore, stream
from safespace.events.types import AUDIT_MESSAGE_SENT
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.events import MessageSent
from safespace.realtime.snapshots import MessageSnapshot
from safespace.services.group_service import (
    GroupPermissionError,
    GroupService,
)
from safespace.services.user_service import UserService

MESSAGE_TYPES = ("text", "image", "file", "system")


class MessagingNotAllowedError(Exception):
    """Raised when two users have no relationship that permits messaging."""


class MessageService:
    def __init__(self, db: AsyncSession, broadcaster: Broadcaster):
        self.db = db
        self.events = EventStore(db)
        self.users = UserService(db)
        self.groups = GroupService(db, broadcaster)
        self.broadcaster = broadcaster

    # ─── Permissions ────────────────────────────────────

    async def conversation_allowed(self, a: User, b: User) -> bool:
        if a.id == b.id:
            return False
        if a.has_role("admin") or b.has_role("admin"):
            return True
        if a.guardian_id == b.id or b.guardian_id == a.id:
            return True

        result = await self.db.execute(
            select(TherapistClientConnection.id).where(
                TherapistClientConnection.status == "active",
                or_(
                    and_(
                        TherapistClientConnection.therapist_id == a.id,
                        TherapistClientConnection.client_id == b.id,
                    ),
                    and_(
                        TherapistClientConnection.therapist_id == b.id,
                        TherapistClientConnection.client_id == a.id,
                    ),
                ),
            )
        )
        return result.first() is not None

    # ─── Send ───────────────────────────────────────────

    async def send_direct(
        self,
        sender_id: int,
        recipient_id: int,
        content: str,
        message_type: str = "text",
    ) -> tuple[Message, bool]:
        sender = await self.users.get(sender_id)
        recipient = await self.users.get(recipient_id)
        if not await self.conversation_allowed(sender, recipient):
            raise MessagingNotAllowedError(
                f"User {sender.id} may not message user {recipient.id}"
            )

        message = Message(
            sender_id=sender.id,
            recipient_id=recipient.id,
            content=content,
            message_type=message_type,
        )
        return await self._store_and_broadcast(message)

    async def send_group(
        self,
        sender_id: int,
        group_id: int,
        content: str,
        message_type: str = "text",
    ) -> tuple[Message, bool]:
        sender = await self.users.get(sender_id)
        group = await self.groups.get_group(group_id)
        if not sender.has_role("admin") and not await self.groups.membership(
            group.id, sender.id
        ):
            raise GroupPermissionError(
                f"User {sender.id} is not a member of group {group.id}"
            )

        message = Message(
            sender_id=sender.id,
            group_id=group.id,
            content=content,
            message_type=message_type,
        )
        return await self._store_and_broadcast(message)

    async def _store_and_broadcast(self, message: Message) -> tuple[Message, bool]:
        if message.message_type not in MESSAGE_TYPES:
            raise ValueError(f"Unknown message type: {message.message_type!r}")
        self.db.add(message)
        await self.db.flush()
        await self.events.append(
            stream_id=stream("message", message.id),
            event_type=AUDIT_MESSAGE_SENT,
            data={
                "sender_id": message.sender_id,
                "recipient_id": message.recipient_id,
                "group_id": message.group_id,
            },
        )
        await self.db.commit()

        message = await self.get_message(message.id)
        sent = await self.broadcaster.dispatch(
            MessageSent(MessageSnapshot.model_validate(message))
        )
        return message, sent

    # ─── Read ───────────────────────────────────────────

    async def get_message(self, message_id: int) -> Optional[Message]:
        result = await self.db.execute(
            select(Message)
            .where(Message.id == message_id)
            .options(
                selectinload(Message.sender),
                selectinload(Message.recipient),
                selectinload(Message.group),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def conversation(
        self,
        user_id: int,
        other_id: int,
        limit: int = 50,
    ) -> list[Message]:
        """Direct messages between two users, oldest first."""
        result = await self.db.execute(
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == user_id, Message.recipient_id == other_id),
                    and_(Message.sender_id == other_id, Message.recipient_id == user_id),
                )
            )
            .options(selectinload(Message.sender), selectinload(Message.recipient))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def group_messages(
        self,
        group_id: int,
        viewer_id: int,
        limit: int = 50,
    ) -> list[Message]:
        viewer = await self.users.get(viewer_id)
        group = await self.groups.get_group(group_id)
        if not viewer.has_role("admin") and not await self.groups.membership(
            group.id, viewer.id
        ):
            raise GroupPermissionError(
                f"User {viewer.id} may not read group {group.id}"
            )

        result = await self.db.execute(
            select(Message)
            .where(Message.group_id == group.id)
            .options(selectinload(Message.sender), selectinload(Message.group))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))
