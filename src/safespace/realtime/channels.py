"""Channel naming scheme — entity identity → private channel name.

Learn: Channel names are a pure function of entity ids. Renaming a user
or a group never moves their channel, and there is no lookup table to
keep in sync. Three kinds exist:

- user.<id>   single-recipient inbox
- group.<id>  membership-scoped room
- fixed operational channels for oversight (admin monitoring, emergencies)

The operational names come from settings, and settings validation keeps
them out of the user./group. namespaces so they can never collide.
"""

from typing import Iterable, Optional

from safespace.config import settings

USER_PREFIX = "user."
GROUP_PREFIX = "group."

ADMIN_MONITORING = settings.admin_monitoring_channel
EMERGENCY_ALERTS = settings.emergency_alerts_channel


def _entity_id(value: int) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid entity id: {value!r}")
    entity_id = int(value)
    if entity_id < 1:
        raise ValueError(f"Invalid entity id: {value!r}")
    return entity_id


def user_channel(user_id: int) -> str:
    return f"{USER_PREFIX}{_entity_id(user_id)}"


def group_channel(group_id: int) -> str:
    return f"{GROUP_PREFIX}{_entity_id(group_id)}"


def parse_channel(name: str) -> tuple[str, Optional[int]]:
    """Split a channel name into (kind, id).

    Returns ("user", 7), ("group", 3), or ("operational", None) for the
    reserved channels. Raises ValueError for anything else.
    """
    for kind, prefix in (("user", USER_PREFIX), ("group", GROUP_PREFIX)):
        if name.startswith(prefix):
            suffix = name[len(prefix):]
            if not suffix.isdigit():
                raise ValueError(f"Malformed channel name: {name!r}")
            return kind, _entity_id(int(suffix))
    if name in (ADMIN_MONITORING, EMERGENCY_ALERTS):
        return "operational", None
    raise ValueError(f"Unknown channel: {name!r}")


def unique_channels(channels: Iterable[str]) -> list[str]:
    """Deduplicate by channel name, keeping first-seen order."""
    return list(dict.fromkeys(channels))
