"""FastAPI dependency that wires a Broadcaster per request.

Learn: The broadcaster is built per request because its failure hook
writes to the request's database session. If Redis was unreachable at
startup the transport holds None and every publish fails fast with a
TransportError, which the broadcaster handles like any other miss.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.db.engine import get_db
from safespace.events.store import EventStore
from safespace.realtime.broadcaster import Broadcaster, DeliveryFailureRecorder
from safespace.realtime.pubsub import current_redis
from safespace.realtime.transport import RedisTransport


def get_broadcaster(db: AsyncSession = Depends(get_db)) -> Broadcaster:
    return Broadcaster(
        RedisTransport(current_redis()),
        on_critical_failure=[DeliveryFailureRecorder(EventStore(db))],
    )
