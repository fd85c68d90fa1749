"""Message API routes — direct and group chat.

Learn: Sending returns 201 even when the live broadcast failed; the
message is saved and `broadcast_success` says whether other clients
were notified in real time.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.auth.dependencies import CurrentIdentity, get_current_user
from safespace.db.engine import get_db
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.dependencies import get_broadcaster
from safespace.schemas.message import (
    DirectMessageCreate,
    GroupMessageCreate,
    MessageRead,
    MessageSendResponse,
)
from safespace.services.group_service import GroupNotFoundError, GroupPermissionError
from safespace.services.message_service import MessageService, MessagingNotAllowedError
from safespace.services.user_service import UserNotFoundError

router = APIRouter()


def _svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> MessageService:
    return MessageService(db, broadcaster)


# ─── Direct ─────────────────────────────────────────────

@router.post("/messages", response_model=MessageSendResponse, status_code=201)
async def send_direct_message(
    body: DirectMessageCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    try:
        message, sent = await svc.send_direct(
            identity.user_id, body.recipient_id, body.content, body.message_type
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MessagingNotAllowedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"message": message, "broadcast_success": sent}


@router.get("/messages/with/{other_id}", response_model=list[MessageRead])
async def get_conversation(
    other_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    return await svc.conversation(identity.user_id, other_id, limit=limit)


# ─── Group ──────────────────────────────────────────────

@router.post(
    "/groups/{group_id}/messages",
    response_model=MessageSendResponse,
    status_code=201,
)
async def send_group_message(
    group_id: int,
    body: GroupMessageCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    try:
        message, sent = await svc.send_group(
            identity.user_id, group_id, body.content, body.message_type
        )
    except (GroupNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GroupPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"message": message, "broadcast_success": sent}


@router.get("/groups/{group_id}/messages", response_model=list[MessageRead])
async def get_group_messages(
    group_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    try:
        return await svc.group_messages(group_id, identity.user_id, limit=limit)
    except (GroupNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GroupPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
