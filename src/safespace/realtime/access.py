"""Channel authorization — which private channels a user may join.

Learn: This is the subscribe-side mirror of the recipient rules. A
broadcast on user.7 is only private if nobody but user 7 can listen
there, so the WebSocket asks this module before subscribing.

- user.<id>         only that user
- group.<id>        current members of that group
- admin monitoring  platform admins
- emergency alerts  platform admins and therapists
"""

from typing import Iterable

from safespace.db.models import User
from safespace.realtime.channels import (
    ADMIN_MONITORING,
    EMERGENCY_ALERTS,
    group_channel,
    parse_channel,
    user_channel,
)


def can_subscribe(user: User, channel: str, group_ids: Iterable[int]) -> bool:
    try:
        kind, entity_id = parse_channel(channel)
    except ValueError:
        return False
    if kind == "user":
        return entity_id == user.id
    if kind == "group":
        return entity_id in set(group_ids)
    if channel == ADMIN_MONITORING:
        return user.has_role("admin")
    if channel == EMERGENCY_ALERTS:
        return user.has_role("admin", "therapist")
    return False


def authorized_channels(user: User, group_ids: Iterable[int]) -> list[str]:
    """Every channel the user should be subscribed to, in a stable order."""
    channels = [user_channel(user.id)]
    channels.extend(group_channel(g) for g in sorted(set(group_ids)))
    if user.has_role("admin"):
        channels.append(ADMIN_MONITORING)
    if user.has_role("admin", "therapist"):
        channels.append(EMERGENCY_ALERTS)
    return channels
