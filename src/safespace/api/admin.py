"""Admin API routes — audit log access.

Learn: GET /admin/broadcast-failures lists safety-critical broadcasts
that never reached Redis. Each entry carries the channels and payload
that should have gone out, so staff can follow up by other means.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.auth.dependencies import require_admin
from safespace.db.engine import get_db
from safespace.events.store import EventStore, stream
from safespace.events.types import AUDIT_BROADCAST_DELIVERY_FAILED
from safespace.schemas.event import EventRead

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.get("/broadcast-failures", response_model=list[EventRead])
async def list_broadcast_failures(
    after_id: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await EventStore(db).read_all(
        after_id=after_id,
        event_types=[AUDIT_BROADCAST_DELIVERY_FAILED],
        limit=limit,
    )


@router.get("/events", response_model=list[EventRead])
async def list_events(
    after_id: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Full audit log, oldest first. Page with after_id."""
    return await EventStore(db).read_all(after_id=after_id, limit=limit)


@router.get("/streams/{kind}/{entity_id}", response_model=list[EventRead])
async def read_entity_stream(
    kind: str,
    entity_id: int,
    after_id: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """History of one entity, e.g. /admin/streams/panic_alert/12."""
    return await EventStore(db).read_stream(stream(kind, entity_id), after_id=after_id)
