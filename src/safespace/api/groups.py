"""Group API routes — support groups and membership."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.auth.dependencies import CurrentIdentity, get_current_user
from safespace.db.engine import get_db
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.dependencies import get_broadcaster
from safespace.schemas.group import (
    GroupCreate,
    GroupMemberCreate,
    GroupRead,
    MemberAddResponse,
    MemberRemoveResponse,
)
from safespace.services.group_service import (
    GroupNotFoundError,
    GroupPermissionError,
    GroupService,
    MembershipNotFoundError,
)
from safespace.services.user_service import UserNotFoundError

router = APIRouter(prefix="/groups")


def _svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> GroupService:
    return GroupService(db, broadcaster)


@router.post("", response_model=GroupRead, status_code=201)
async def create_group(
    body: GroupCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: GroupService = Depends(_svc),
):
    """Create a group. The creator becomes its first admin."""
    try:
        return await svc.create_group(
            name=body.name,
            description=body.description,
            created_by_id=identity.user_id,
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("", response_model=list[GroupRead])
async def list_my_groups(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: GroupService = Depends(_svc),
):
    return await svc.list_groups_for(identity.user_id)


@router.get("/{group_id}", response_model=GroupRead)
async def get_group(
    group_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: GroupService = Depends(_svc),
):
    try:
        group = await svc.get_group(group_id)
        viewer = await svc.users.get(identity.user_id)
    except (GroupNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    if not viewer.has_role("admin") and not await svc.membership(group.id, viewer.id):
        raise HTTPException(status_code=403, detail="Not a member of this group")
    return group


@router.post("/{group_id}/members", response_model=MemberAddResponse, status_code=201)
async def add_member(
    group_id: int,
    body: GroupMemberCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: GroupService = Depends(_svc),
):
    try:
        member, sent = await svc.add_member(
            group_id,
            body.user_id,
            role=body.role,
            added_by_id=identity.user_id,
        )
    except (GroupNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GroupPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"member": member, "broadcast_success": sent}


@router.delete("/{group_id}/members/{user_id}", response_model=MemberRemoveResponse)
async def remove_member(
    group_id: int,
    user_id: int,
    reason: Optional[str] = Query(default=None, max_length=500),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: GroupService = Depends(_svc),
):
    """Remove a member, or leave the group when user_id is yourself."""
    try:
        sent = await svc.remove_member(
            group_id,
            user_id,
            removed_by_id=identity.user_id,
            reason=reason,
        )
    except (GroupNotFoundError, UserNotFoundError, MembershipNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GroupPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"removed": True, "broadcast_success": sent}
