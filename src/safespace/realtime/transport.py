"""Broadcast transports — the publish boundary.

Learn: A transport takes (channels, event name, payload) and publishes
it once. It does not retry and does not know about event severity; it
either returns or raises TransportError. The broadcaster decides what a
failure means.

Every channel receives the same JSON envelope:

    {"event": "message.sent", "channel": "user.7", "data": {...}}

published on "<prefix><channel>" (prefix "private-" by default, the
Pusher/Reverb convention for authenticated channels).
"""

import json
from typing import Any, Optional, Protocol, Sequence

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from safespace.config import settings

logger = structlog.get_logger()


class TransportError(Exception):
    """Raised when the broadcast transport cannot publish."""


class Transport(Protocol):
    async def publish(
        self,
        channels: Sequence[str],
        event_name: str,
        payload: dict[str, Any],
    ) -> None:
        ...


def encode_envelope(channel: str, event_name: str, payload: dict[str, Any]) -> str:
    return json.dumps({"event": event_name, "channel": channel, "data": payload})


class RedisTransport:
    """Publish to Redis channels in one pipelined round trip."""

    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        prefix: str = settings.broadcast_channel_prefix,
    ):
        self.redis = redis
        self.prefix = prefix

    def physical_channel(self, channel: str) -> str:
        return f"{self.prefix}{channel}"

    async def publish(
        self,
        channels: Sequence[str],
        event_name: str,
        payload: dict[str, Any],
    ) -> None:
        if self.redis is None:
            raise TransportError("Redis is not connected")

        messages = [
            (self.physical_channel(ch), encode_envelope(ch, event_name, payload))
            for ch in channels
        ]
        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                for name, message in messages:
                    pipe.publish(name, message)
                receivers = await pipe.execute()
        except (RedisError, OSError) as e:
            raise TransportError(f"Redis publish failed: {e}") from e

        logger.debug(
            "transport.published",
            broadcast=event_name,
            channels=list(channels),
            receivers=sum(receivers),
        )
