"""Connection API routes — therapist ↔ client relationships.

Learn: Admins create connections and set any status. Either party may
terminate their own connection. Every real status change is pushed to
both parties as connection.status-changed.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.auth.dependencies import (
    CurrentIdentity,
    get_current_user,
    require_admin,
)
from safespace.db.engine import get_db
from safespace.db.models import User
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.dependencies import get_broadcaster
from safespace.schemas.connection import (
    ConnectionCreate,
    ConnectionRead,
    ConnectionResponse,
    ConnectionStatusUpdate,
)
from safespace.services.connection_service import (
    ConnectionNotFoundError,
    ConnectionPermissionError,
    ConnectionService,
    ConnectionStateError,
)
from safespace.services.user_service import UserNotFoundError

router = APIRouter(prefix="/connections")


def _svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> ConnectionService:
    return ConnectionService(db, broadcaster)


@router.post("", response_model=ConnectionResponse, status_code=201)
async def create_connection(
    body: ConnectionCreate,
    admin: User = Depends(require_admin),
    svc: ConnectionService = Depends(_svc),
):
    try:
        connection, sent = await svc.create_connection(
            therapist_id=body.therapist_id,
            client_id=body.client_id,
            client_type=body.client_type,
            connection_type=body.connection_type,
            assigned_by_id=admin.id,
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConnectionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"connection": connection, "broadcast_success": sent}


@router.get("", response_model=list[ConnectionRead])
async def list_my_connections(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: ConnectionService = Depends(_svc),
):
    return await svc.list_for_user(identity.user_id)


@router.patch("/{connection_id}", response_model=ConnectionResponse)
async def update_connection_status(
    connection_id: int,
    body: ConnectionStatusUpdate,
    admin: User = Depends(require_admin),
    svc: ConnectionService = Depends(_svc),
):
    try:
        connection, sent = await svc.change_status(
            connection_id, body.status, changed_by_id=admin.id
        )
    except ConnectionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConnectionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"connection": connection, "broadcast_success": sent}


@router.post("/{connection_id}/terminate", response_model=ConnectionResponse)
async def terminate_connection(
    connection_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: ConnectionService = Depends(_svc),
):
    try:
        connection, sent = await svc.terminate(
            connection_id, terminated_by_id=identity.user_id
        )
    except (ConnectionNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConnectionPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"connection": connection, "broadcast_success": sent}
