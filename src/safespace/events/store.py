"""Audit event store — append-only log of state changes.

Learn: Broadcasts are ephemeral; this table is not. Services append one
row per state change (message sent, alert resolved, ...) in the same
transaction as the change itself. The broadcaster appends a
`broadcast.delivery_failed` row when a safety-critical publish is lost,
so operators can see which live notifications never went out.

Streams are named "<kind>:<id>", e.g. "panic_alert:12".
"""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.db.models import Event


def stream(kind: str, entity_id: Any) -> str:
    return f"{kind}:{entity_id}"


class EventStore:
    """Append-only event store backed by the application database."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict[str, Any],
        metadata: Optional[dict[str, Any]] = None,
    ) -> Event:
        """Append an event to a stream. Flushes so the id is available."""
        event = Event(
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta=metadata or {},
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def read_stream(
        self,
        stream_id: str,
        after_id: int = 0,
        limit: int = 100,
    ) -> list[Event]:
        result = await self.db.execute(
            select(Event)
            .where(Event.stream_id == stream_id, Event.id > after_id)
            .order_by(Event.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def read_all(
        self,
        after_id: int = 0,
        event_types: Optional[list[str]] = None,
        limit: int = 100,
    ) -> list[Event]:
        """Read events across all streams, oldest first."""
        query = select(Event).where(Event.id > after_id).order_by(Event.id).limit(limit)
        if event_types:
            query = query.where(Event.type.in_(event_types))
        result = await self.db.execute(query)
        return list(result.scalars().all())
