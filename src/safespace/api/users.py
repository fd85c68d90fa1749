"""User API routes.

Learn: Accounts are provisioned by admins (there is no self sign-up on a
platform for children). /users/me/channels shows exactly which broadcast
channels the WebSocket will subscribe this user to.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.auth.dependencies import get_current_account, require_admin
from safespace.db.engine import get_db
from safespace.db.models import User
from safespace.realtime.access import authorized_channels
from safespace.schemas.user import UserCreate, UserRead
from safespace.services.group_service import GroupService
from safespace.services.user_service import (
    DuplicateEmailError,
    UserNotFoundError,
    UserService,
)

router = APIRouter(prefix="/users")


def _svc(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


@router.post("", response_model=UserRead, status_code=201)
async def create_user(
    body: UserCreate,
    _admin: User = Depends(require_admin),
    svc: UserService = Depends(_svc),
):
    try:
        return await svc.create(
            name=body.name,
            email=body.email,
            roles=body.roles,
            guardian_id=body.guardian_id,
        )
    except DuplicateEmailError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/me", response_model=UserRead)
async def get_me(user: User = Depends(get_current_account)):
    return user


@router.get("/me/channels", response_model=list[str])
async def get_my_channels(
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    group_ids = await GroupService(db, broadcaster=None).group_ids_for(user.id)
    return authorized_channels(user, group_ids)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(
    user_id: int,
    _admin: User = Depends(require_admin),
    svc: UserService = Depends(_svc),
):
    try:
        return await svc.get(user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
