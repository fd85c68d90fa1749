"""Broadcaster — resolve, project, publish.

Learn: Services call `await broadcaster.dispatch(event)` right after their
database commit. The pipeline is strictly sequential:

1. event.broadcast_on()   — ResolutionError propagates to the caller
2. event.broadcast_with() — projection errors propagate too
3. transport.publish()    — exactly once, no retries

A TransportError never undoes the business write. For ordinary events it
is logged and dispatch returns False (the UI catches up on reload). For
critical events (panic alerts, urgent notifications) it is logged at
critical level and every registered failure hook runs, so an emergency
path that went dark is visible to operators.
"""

from typing import Awaitable, Callable, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError

from safespace.events.store import EventStore
from safespace.events.types import AUDIT_BROADCAST_DELIVERY_FAILED
from safespace.realtime.events import BroadcastEvent
from safespace.realtime.transport import Transport, TransportError

logger = structlog.get_logger()

FailureHook = Callable[[BroadcastEvent, list[str], TransportError], Awaitable[None]]


class Broadcaster:
    """Dispatches broadcast events to a transport."""

    def __init__(
        self,
        transport: Transport,
        *,
        on_critical_failure: Sequence[FailureHook] = (),
    ):
        self.transport = transport
        self.on_critical_failure = list(on_critical_failure)

    async def dispatch(self, event: BroadcastEvent) -> bool:
        """Publish one event. Returns True when the transport accepted it."""
        channels = event.broadcast_on()
        payload = event.broadcast_with()
        name = event.broadcast_as()

        try:
            await self.transport.publish(channels, name, payload)
        except TransportError as e:
            await self._handle_failure(event, name, channels, e)
            return False

        logger.info(
            "broadcast.sent",
            broadcast=name,
            channels=channels,
            **event.log_context(),
        )
        return True

    async def _handle_failure(
        self,
        event: BroadcastEvent,
        name: str,
        channels: list[str],
        error: TransportError,
    ) -> None:
        if not event.critical:
            logger.warning(
                "broadcast.delivery_failed",
                broadcast=name,
                channels=channels,
                error=str(error),
                **event.log_context(),
            )
            return

        logger.critical(
            "broadcast.critical_delivery_failed",
            broadcast=name,
            channels=channels,
            error=str(error),
            **event.log_context(),
        )
        for hook in self.on_critical_failure:
            try:
                await hook(event, channels, error)
            except Exception:
                logger.exception(
                    "broadcast.failure_hook_error",
                    broadcast=name,
                    hook=getattr(hook, "__name__", repr(hook)),
                )


class DeliveryFailureRecorder:
    """Critical-failure hook that appends a durable audit entry.

    Learn: Redis pub/sub keeps nothing. Writing the miss to the event
    store gives administrators a record of which responders were never
    reached live, and with what payload.
    """

    def __init__(self, events: EventStore):
        self.events = events

    @property
    def __name__(self) -> str:
        return type(self).__name__

    async def __call__(
        self,
        event: BroadcastEvent,
        channels: list[str],
        error: TransportError,
    ) -> None:
        try:
            await self.events.append(
                stream_id=f"broadcast:{event.broadcast_as()}",
                event_type=AUDIT_BROADCAST_DELIVERY_FAILED,
                data={
                    "broadcast": event.broadcast_as(),
                    "channels": channels,
                    "payload": event.broadcast_with(),
                    "error": str(error),
                    **event.log_context(),
                },
            )
            await self.events.db.commit()
        except SQLAlchemyError:
            # leave the session usable for the request and later hooks
            await self.events.db.rollback()
            raise
