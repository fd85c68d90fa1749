"""WebSocket endpoint — real-time event delivery to frontend clients.

Learn: Each client connects once to /ws?token=JWT. The handler:
1. Authenticates via the JWT query param
2. Works out every channel the user may hear (own inbox, group rooms,
   operational channels for their roles)
3. Subscribes to those Redis channels and forwards each envelope as-is
4. Handles client disconnection gracefully

Group rooms follow membership while the socket is open. Membership
events always reach the affected user's own channel, so when one about
this user arrives there the handler joins or leaves the group room.
"""

import asyncio
import json
from typing import Any, Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.exceptions import RedisError
from starlette.websockets import WebSocketState

from safespace.auth.jwt import TokenError, user_id_from_token
from safespace.db.engine import async_session_factory
from safespace.db.models import User
from safespace.events.types import GROUP_MEMBER_ADDED, GROUP_MEMBER_REMOVED
from safespace.realtime.access import authorized_channels
from safespace.realtime.channels import group_channel, user_channel
from safespace.realtime.pubsub import current_redis
from safespace.realtime.transport import RedisTransport
from safespace.services.group_service import GroupService

logger = structlog.get_logger()
router = APIRouter()


async def _load_subscriber(user_id: int):
    async with async_session_factory() as db:
        user = await db.get(User, user_id)
        if not user or user.status != "active":
            return None, []
        # GroupService only reads here; no broadcaster needed
        group_ids = await GroupService(db, broadcaster=None).group_ids_for(user.id)
        return user, authorized_channels(user, group_ids)


def membership_change(
    envelope: dict[str, Any], user_id: int
) -> Optional[tuple[str, str]]:
    """("join" | "leave", group channel) when the envelope moves this user.

    Only envelopes on the user's own channel count; the same event also
    arrives on the group room and on admin monitoring.
    """
    if envelope.get("channel") != user_channel(user_id):
        return None
    action = {GROUP_MEMBER_ADDED: "join", GROUP_MEMBER_REMOVED: "leave"}.get(
        envelope.get("event")
    )
    if action is None:
        return None
    data = envelope.get("data") or {}
    if (data.get("user") or {}).get("id") != user_id:
        return None
    group_id = (data.get("group") or {}).get("id")
    if group_id is None:
        return None
    return action, group_channel(group_id)


async def run_until_first_exits(
    tasks: dict[str, asyncio.Task], *, user_id: int
) -> None:
    """Wait for the first listener to finish, then cancel and reap the rest.

    A listener that died with an exception is logged, not re-raised.
    """
    done, pending = await asyncio.wait(
        list(tasks.values()), return_when=asyncio.FIRST_COMPLETED
    )
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    for name, task in tasks.items():
        if task in done and not task.cancelled() and task.exception() is not None:
            logger.warning(
                "websocket.listener_failed",
                user_id=user_id,
                listener=name,
                error=str(task.exception()),
            )


@router.websocket("/ws")
async def user_websocket(websocket: WebSocket):
    """WebSocket endpoint for a user's real-time events.

    Learn: Two concurrent tasks run:
    1. Redis listener — reads from pub/sub, sends to WebSocket
    2. Client listener — answers pings, notices disconnects

    When either side finishes, the other is cancelled and awaited.
    """
    # ── Authentication ──────────────────────────────────────
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Authentication required")
        return
    try:
        user_id = user_id_from_token(token)
    except TokenError:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return

    user, channels = await _load_subscriber(user_id)
    if user is None:
        await websocket.close(code=4003, reason="Account not available")
        return

    r = current_redis()
    if r is None:
        await websocket.close(code=1013, reason="Real-time service unavailable")
        return

    transport = RedisTransport(r)
    pubsub = r.pubsub()
    try:
        await pubsub.subscribe(*[transport.physical_channel(ch) for ch in channels])
    except (RedisError, OSError) as e:
        logger.warning("websocket.subscribe_failed", user_id=user.id, error=str(e))
        await pubsub.aclose()
        await websocket.close(code=1013, reason="Real-time service unavailable")
        return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    logger.info("websocket.connected", user_id=user.id, channels=channels)

    async def follow_membership(raw: str) -> None:
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError:
            return
        if not isinstance(envelope, dict):
            return
        change = membership_change(envelope, user.id)
        if change is None:
            return
        action, channel = change
        if action == "join" and channel not in channels:
            await pubsub.subscribe(transport.physical_channel(channel))
            channels.append(channel)
        elif action == "leave" and channel in channels:
            await pubsub.unsubscribe(transport.physical_channel(channel))
            channels.remove(channel)
        else:
            return
        logger.info(
            "websocket.membership_followed",
            user_id=user.id,
            action=action,
            channel=channel,
        )

    async def redis_listener():
        """Forward Redis messages to the WebSocket client."""
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    await websocket.send_text(message["data"])
                    await follow_membership(message["data"])
        except asyncio.CancelledError:
            pass

    async def client_listener():
        """Answer pings until the client goes away."""
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await websocket.send_text(
                        json.dumps({"type": "pong", "channels": channels})
                    )
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    try:
        await run_until_first_exits(
            {
                "redis": asyncio.create_task(redis_listener()),
                "client": asyncio.create_task(client_listener()),
            },
            user_id=user.id,
        )
    finally:
        try:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.warning(
                "websocket.unsubscribe_failed", user_id=user.id, error=str(e)
            )
        logger.info("websocket.disconnected", user_id=user.id)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
