"""Group service — support groups and their membership.

Learn: Membership changes are broadcast to three audiences at once: the
group room (members see the roster change), the affected user's own
channel (they may not be subscribed to the room yet, or any more), and
admin monitoring. Creating a group only seats its creator and is not
broadcast.

Who may change membership:
- platform admins, and group admins, may add or remove anyone
- any member may remove themselves (leave)
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from safespace.db.models import Group, GroupMember, User
from safespace.events.store import EventStore, stream
from safespace.events.types import (
    AUDIT_GROUP_CREATED,
    AUDIT_GROUP_MEMBER_ADDED,
    AUDIT_GROUP_MEMBER_REMOVED,
)
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.events import GroupMemberAdded, GroupMemberRemoved
from safespace.realtime.snapshots import GroupRef, UserRef
from safespace.services.user_service import UserService

MEMBER_ROLES = ("admin", "member")


class GroupNotFoundError(Exception):
    """Raised when a group does not exist or is inactive."""


class GroupPermissionError(Exception):
    """Raised when the acting user may not perform a group operation."""


class MembershipNotFoundError(Exception):
    """Raised when removing a user who is not a member."""


class GroupService:
    def __init__(self, db: AsyncSession, broadcaster: Broadcaster):
        self.db = db
        self.events = EventStore(db)
        self.users = UserService(db)
        self.broadcaster = broadcaster

    # ─── Groups ─────────────────────────────────────────

    async def create_group(
        self,
        *,
        name: str,
        created_by_id: int,
        description: Optional[str] = None,
    ) -> Group:
        creator = await self.users.get(created_by_id)
        group = Group(name=name, description=description, created_by=creator.id)
        self.db.add(group)
        await self.db.flush()

        self.db.add(GroupMember(group_id=group.id, user_id=creator.id, role="admin"))
        await self.events.append(
            stream_id=stream("group", group.id),
            event_type=AUDIT_GROUP_CREATED,
            data={"name": name, "created_by": creator.id},
        )
        await self.db.commit()
        return await self.get_group(group.id)

    async def get_group(self, group_id: int) -> Group:
        result = await self.db.execute(
            select(Group)
            .where(Group.id == group_id, Group.is_active.is_(True))
            .options(selectinload(Group.members).selectinload(GroupMember.user))
            .execution_options(populate_existing=True)
        )
        group = result.scalars().first()
        if not group:
            raise GroupNotFoundError(f"Group {group_id} not found")
        return group

    async def membership(self, group_id: int, user_id: int) -> Optional[GroupMember]:
        result = await self.db.execute(
            select(GroupMember)
            .where(
                GroupMember.group_id == group_id,
                GroupMember.user_id == user_id,
            )
            .options(selectinload(GroupMember.user))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_groups_for(self, user_id: int) -> list[Group]:
        """Active groups the user belongs to, with their rosters."""
        result = await self.db.execute(
            select(Group)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(GroupMember.user_id == user_id, Group.is_active.is_(True))
            .options(selectinload(Group.members).selectinload(GroupMember.user))
            .order_by(Group.id)
        )
        return list(result.scalars().all())

    async def group_ids_for(self, user_id: int) -> list[int]:
        result = await self.db.execute(
            select(GroupMember.group_id)
            .join(Group, Group.id == GroupMember.group_id)
            .where(GroupMember.user_id == user_id, Group.is_active.is_(True))
            .order_by(GroupMember.group_id)
        )
        return list(result.scalars().all())

    async def _can_manage(self, group_id: int, actor: User) -> bool:
        if actor.has_role("admin"):
            return True
        membership = await self.membership(group_id, actor.id)
        return membership is not None and membership.role == "admin"

    # ─── Membership ─────────────────────────────────────

    async def add_member(
        self,
        group_id: int,
        user_id: int,
        *,
        role: str = "member",
        added_by_id: Optional[int] = None,
    ) -> tuple[GroupMember, Optional[bool]]:
        """Add a user to a group.

        Returns (membership, broadcast result). Adding an existing member
        changes nothing and broadcasts nothing (result None); so does an
        add without a known actor.
        """
        if role not in MEMBER_ROLES:
            raise ValueError(f"Unknown group role: {role!r}")
        group = await self.get_group(group_id)
        user = await self.users.get(user_id)
        added_by = await self.users.get_optional(added_by_id)
        if added_by and not await self._can_manage(group.id, added_by):
            raise GroupPermissionError(
                f"User {added_by.id} may not add members to group {group.id}"
            )

        existing = await self.membership(group.id, user.id)
        if existing:
            return existing, None

        self.db.add(GroupMember(group_id=group.id, user_id=user.id, role=role))
        await self.events.append(
            stream_id=stream("group", group.id),
            event_type=AUDIT_GROUP_MEMBER_ADDED,
            data={
                "user_id": user.id,
                "role": role,
                "added_by": added_by.id if added_by else None,
            },
        )
        await self.db.commit()

        member = await self.membership(group.id, user.id)
        if not added_by:
            return member, None
        sent = await self.broadcaster.dispatch(
            GroupMemberAdded(
                GroupRef.model_validate(group),
                UserRef.model_validate(user),
                UserRef.model_validate(added_by),
                role,
            )
        )
        return member, sent

    async def remove_member(
        self,
        group_id: int,
        user_id: int,
        *,
        removed_by_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """Remove a member. Returns the broadcast result."""
        group = await self.get_group(group_id)
        user = await self.users.get(user_id)
        removed_by = await self.users.get_optional(removed_by_id)
        if (
            removed_by
            and removed_by.id != user.id
            and not await self._can_manage(group.id, removed_by)
        ):
            raise GroupPermissionError(
                f"User {removed_by.id} may not remove members from group {group.id}"
            )

        membership = await self.membership(group.id, user.id)
        if not membership:
            raise MembershipNotFoundError(
                f"User {user.id} is not a member of group {group.id}"
            )

        await self.db.delete(membership)
        await self.events.append(
            stream_id=stream("group", group.id),
            event_type=AUDIT_GROUP_MEMBER_REMOVED,
            data={
                "user_id": user.id,
                "removed_by": removed_by.id if removed_by else None,
                "reason": reason,
            },
        )
        await self.db.commit()

        return await self.broadcaster.dispatch(
            GroupMemberRemoved(
                GroupRef.model_validate(group),
                UserRef.model_validate(user),
                UserRef.model_validate(removed_by) if removed_by else None,
                reason,
            )
        )
