"""Process-wide Redis client used by the broadcast transport and WebSockets.

Learn: Redis pub/sub delivers to whoever is subscribed right now and
forgets the message. Browsers that miss an update reload state over HTTP.
Safety-critical publishes that fail are escalated and recorded by the
broadcaster instead.

Timeouts are kept short so an unreachable Redis fails a publish quickly
rather than holding up the request that caused it.
"""

from typing import Optional

import redis.asyncio as aioredis

from safespace.config import settings

# Set by init_redis() during app startup; None until then or after shutdown.
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Create the Redis client and check the server answers.

    The client is kept even when the ping fails: redis-py reconnects on
    the next command, so publishes start working again once Redis is back.
    """
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def current_redis() -> Optional[aioredis.Redis]:
    """The Redis client, or None before startup and after shutdown."""
    return _redis
