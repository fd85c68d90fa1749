"""Panic alert API routes.

Learn: POST /panic-alerts is the panic button. It returns 201 as soon as
the alert is stored, whether or not the live push went out; a failed
push is escalated server-side (critical log + audit entry) rather than
surfaced as an error to a child in distress.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.auth.dependencies import CurrentIdentity, get_current_user
from safespace.db.engine import get_db
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.dependencies import get_broadcaster
from safespace.schemas.panic_alert import (
    PanicAlertCreate,
    PanicAlertRead,
    PanicAlertResolve,
    PanicAlertResponse,
    UnviewedCount,
)
from safespace.services.panic_alert_service import (
    PanicAlertNotFoundError,
    PanicAlertPermissionError,
    PanicAlertService,
    PanicAlertStateError,
)
from safespace.services.user_service import UserNotFoundError

router = APIRouter(prefix="/panic-alerts")


def _svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> PanicAlertService:
    return PanicAlertService(db, broadcaster)


@router.post("", response_model=PanicAlertResponse, status_code=201)
async def trigger_panic_alert(
    body: PanicAlertCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PanicAlertService = Depends(_svc),
):
    try:
        alert, sent = await svc.trigger(identity.user_id, body.location_data)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PanicAlertPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"alert": alert, "broadcast_success": sent}


@router.get("", response_model=list[PanicAlertRead])
async def list_panic_alerts(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PanicAlertService = Depends(_svc),
):
    """Recent alerts visible to the caller (open, or resolved in the last 2h)."""
    try:
        return await svc.list_for_user(identity.user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/unviewed-count", response_model=UnviewedCount)
async def unviewed_count(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PanicAlertService = Depends(_svc),
):
    return {"unviewed": await svc.unviewed_count(identity.user_id)}


@router.get("/{alert_id}", response_model=PanicAlertRead)
async def get_panic_alert(
    alert_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PanicAlertService = Depends(_svc),
):
    """Alert detail. Viewing marks the caller's notification as seen."""
    try:
        return await svc.get_for_user(alert_id, identity.user_id)
    except (PanicAlertNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PanicAlertPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.post("/{alert_id}/acknowledge", response_model=PanicAlertResponse)
async def acknowledge_panic_alert(
    alert_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PanicAlertService = Depends(_svc),
):
    try:
        alert, sent = await svc.acknowledge(alert_id, identity.user_id)
    except (PanicAlertNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PanicAlertPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except PanicAlertStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"alert": alert, "broadcast_success": sent}


@router.post("/{alert_id}/resolve", response_model=PanicAlertResponse)
async def resolve_panic_alert(
    alert_id: int,
    body: PanicAlertResolve,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PanicAlertService = Depends(_svc),
):
    try:
        alert, sent = await svc.resolve(alert_id, identity.user_id, notes=body.notes)
    except (PanicAlertNotFoundError, UserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PanicAlertPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except PanicAlertStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"alert": alert, "broadcast_success": sent}
