"""Broadcast events — who hears about a change, and what they see.

Learn: Each event variant answers three questions, always in this order:

1. broadcast_on()   → which channels (Recipient Resolver)
2. broadcast_with() → which payload (Payload Projector)
3. broadcast_as()   → which stable wire name clients bind to

Events are built from frozen snapshots right after the triggering write
commits. They do no I/O, so resolving and projecting the same event twice
yields identical channel lists and payloads. The one clock read happens
in the constructor: `timestamp` is "now" at dispatch, not at projection.

Every payload is shared by all channels of its event; no per-channel
shaping happens here.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from safespace.events.types import (
    CONNECTION_STATUS_CHANGED,
    GROUP_MEMBER_ADDED,
    GROUP_MEMBER_REMOVED,
    GROUP_MESSAGE_SENT,
    MESSAGE_SENT,
    NOTIFICATION_CREATED,
    PANIC_ALERT_STATUS_CHANGED,
    PANIC_ALERT_TRIGGERED,
    TEST_PING,
)
from safespace.realtime.channels import (
    ADMIN_MONITORING,
    EMERGENCY_ALERTS,
    group_channel,
    parse_channel,
    unique_channels,
    user_channel,
)
from safespace.realtime.snapshots import (
    ConnectionSnapshot,
    GroupRef,
    MessageSnapshot,
    NotificationSnapshot,
    PanicAlertSnapshot,
    UserRef,
)

ALERT_ACTIONS = ("acknowledged", "resolved")


class ResolutionError(Exception):
    """Raised when an entity the event needs was not loaded or is inconsistent."""


def iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 in UTC with a Z suffix. Naive datetimes are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="microseconds")
        .replace("+00:00", "Z")
    )


def _require(value, what: str):
    if value is None:
        raise ResolutionError(f"{what} is not loaded")
    return value


def _ref(user: Optional[UserRef]) -> Optional[dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name}


class BroadcastEvent(ABC):
    """Base for everything pushed to the broadcast transport."""

    # Safety-critical events escalate on delivery failure.
    critical: bool = False

    def __init__(self, *, now: Optional[datetime] = None):
        self.occurred_at = now or datetime.now(timezone.utc)

    @property
    def timestamp(self) -> str:
        return iso(self.occurred_at)

    @abstractmethod
    def broadcast_as(self) -> str:
        ...

    @abstractmethod
    def broadcast_on(self) -> list[str]:
        ...

    @abstractmethod
    def broadcast_with(self) -> dict[str, Any]:
        ...

    def log_context(self) -> dict[str, Any]:
        """Identifiers included in dispatcher log lines."""
        return {}


# ─── Messages ───────────────────────────────────────────


class MessageSent(BroadcastEvent):
    """A chat message was stored — direct or group.

    Direct messages stay private to the two participants. Group messages
    go to the group room and to admin monitoring for oversight.
    """

    def __init__(self, message: MessageSnapshot, *, now: Optional[datetime] = None):
        super().__init__(now=now)
        self.message = message

    def _check_shape(self) -> None:
        if not (self.message.is_direct or self.message.is_group):
            raise ResolutionError(
                f"Message {self.message.id} must have exactly one of "
                "recipient_id or group_id"
            )

    def broadcast_as(self) -> str:
        self._check_shape()
        return GROUP_MESSAGE_SENT if self.message.is_group else MESSAGE_SENT

    def broadcast_on(self) -> list[str]:
        self._check_shape()
        m = self.message
        if m.is_direct:
            return unique_channels(
                [user_channel(m.sender_id), user_channel(m.recipient_id)]
            )
        return [group_channel(m.group_id), ADMIN_MONITORING]

    def broadcast_with(self) -> dict[str, Any]:
        self._check_shape()
        m = self.message
        sender = _require(m.sender, f"Sender of message {m.id}")

        body: dict[str, Any] = {
            "id": m.id,
            "content": m.content,
            "message_type": m.message_type,
        }
        if m.is_direct:
            recipient = _require(m.recipient, f"Recipient of message {m.id}")
            body["sender"] = _ref(sender)
            body["recipient"] = _ref(recipient)
        else:
            group = _require(m.group, f"Group of message {m.id}")
            body["sender"] = {
                "id": sender.id,
                "name": sender.name,
                "roles": list(sender.roles),
            }
            body["group"] = {"id": group.id, "name": group.name}
        body["created_at"] = iso(m.created_at)
        body["is_read"] = m.is_read
        body["is_flagged"] = m.is_flagged
        return {"message": body}

    def log_context(self) -> dict[str, Any]:
        return {
            "message_id": self.message.id,
            "sender_id": self.message.sender_id,
            "recipient_id": self.message.recipient_id,
            "group_id": self.message.group_id,
            "preview": self.message.content[:50],
        }


# ─── Group membership ───────────────────────────────────


class _GroupMembershipEvent(BroadcastEvent):
    def __init__(
        self,
        group: GroupRef,
        user: UserRef,
        *,
        now: Optional[datetime] = None,
    ):
        super().__init__(now=now)
        self.group = group
        self.user = user

    def broadcast_on(self) -> list[str]:
        group = _require(self.group, "Group")
        user = _require(self.user, "Affected member")
        return unique_channels(
            [group_channel(group.id), user_channel(user.id), ADMIN_MONITORING]
        )

    def log_context(self) -> dict[str, Any]:
        return {
            "group_id": self.group.id if self.group else None,
            "user_id": self.user.id if self.user else None,
        }


class GroupMemberAdded(_GroupMembershipEvent):
    def __init__(
        self,
        group: GroupRef,
        user: UserRef,
        added_by: UserRef,
        role: str = "member",
        *,
        now: Optional[datetime] = None,
    ):
        super().__init__(group, user, now=now)
        self.added_by = added_by
        self.role = role

    def broadcast_as(self) -> str:
        return GROUP_MEMBER_ADDED

    def broadcast_with(self) -> dict[str, Any]:
        group = _require(self.group, "Group")
        return {
            "group": {"id": group.id, "name": group.name},
            "user": _ref(_require(self.user, "Added member")),
            "added_by": _ref(_require(self.added_by, "Adding user")),
            "role": self.role,
            "timestamp": self.timestamp,
        }


class GroupMemberRemoved(_GroupMembershipEvent):
    def __init__(
        self,
        group: GroupRef,
        user: UserRef,
        removed_by: Optional[UserRef] = None,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ):
        super().__init__(group, user, now=now)
        self.removed_by = removed_by
        self.reason = reason

    def broadcast_as(self) -> str:
        return GROUP_MEMBER_REMOVED

    def broadcast_with(self) -> dict[str, Any]:
        group = _require(self.group, "Group")
        return {
            "group": {"id": group.id, "name": group.name},
            "user": _ref(_require(self.user, "Removed member")),
            "removed_by": _ref(self.removed_by),
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


# ─── Therapist ↔ client connections ─────────────────────


class ConnectionStatusChanged(BroadcastEvent):
    """A connection moved between statuses.

    The caller passes the (old, new) pair from the single place the
    status is mutated; nothing is remembered between calls.
    """

    def __init__(
        self,
        connection: ConnectionSnapshot,
        old_status: Optional[str],
        new_status: str,
        changed_by: Optional[UserRef] = None,
        *,
        now: Optional[datetime] = None,
    ):
        if old_status == new_status:
            raise ValueError(f"Connection status unchanged: {new_status!r}")
        super().__init__(now=now)
        self.connection = connection
        self.old_status = old_status
        self.new_status = new_status
        self.changed_by = changed_by

    def broadcast_as(self) -> str:
        return CONNECTION_STATUS_CHANGED

    def broadcast_on(self) -> list[str]:
        c = self.connection
        return unique_channels(
            [user_channel(c.therapist_id), user_channel(c.client_id)]
        )

    def broadcast_with(self) -> dict[str, Any]:
        c = self.connection
        therapist = _require(c.therapist, f"Therapist of connection {c.id}")
        client = _require(c.client, f"Client of connection {c.id}")
        return {
            "connection": {
                "id": c.id,
                "therapist": _ref(therapist),
                "client": _ref(client),
                "client_type": c.client_type,
                "connection_type": c.connection_type,
                "status": c.status,
            },
            "old_status": self.old_status,
            "new_status": self.new_status,
            "changed_by": _ref(self.changed_by),
            "timestamp": self.timestamp,
        }

    def log_context(self) -> dict[str, Any]:
        return {
            "connection_id": self.connection.id,
            "old_status": self.old_status,
            "new_status": self.new_status,
        }


# ─── Panic alerts ───────────────────────────────────────


class _PanicAlertEvent(BroadcastEvent):
    critical = True

    def __init__(self, alert: PanicAlertSnapshot, *, now: Optional[datetime] = None):
        super().__init__(now=now)
        self.alert = alert

    def _notified_channels(self) -> list[str]:
        notifications = _require(
            self.alert.notifications,
            f"Notification list of panic alert {self.alert.id}",
        )
        return [user_channel(n.notified_user_id) for n in notifications]

    def _child(self) -> UserRef:
        return _require(self.alert.child, f"Child of panic alert {self.alert.id}")

    def log_context(self) -> dict[str, Any]:
        return {"panic_alert_id": self.alert.id, "child_id": self.alert.child_id}


class PanicAlertTriggered(_PanicAlertEvent):
    """A child pressed the panic button.

    Responders and emergency staff are notified. The child is left out
    of their own "triggered" event.
    """

    def broadcast_as(self) -> str:
        return PANIC_ALERT_TRIGGERED

    def broadcast_on(self) -> list[str]:
        child = user_channel(self.alert.child_id)
        return unique_channels(
            [EMERGENCY_ALERTS]
            + [ch for ch in self._notified_channels() if ch != child]
        )

    def broadcast_with(self) -> dict[str, Any]:
        a = self.alert
        child = self._child()
        return {
            "alert": {
                "id": a.id,
                "child": _ref(child),
                "triggered_at": iso(a.triggered_at),
                "status": a.status,
                "location_data": copy.deepcopy(a.location_data),
            },
            "message": (
                f"{child.name} has triggered a panic alert. "
                "Immediate attention required."
            ),
            "timestamp": self.timestamp,
        }


class PanicAlertStatusChanged(_PanicAlertEvent):
    """An alert was acknowledged or resolved.

    Unlike the trigger, the child does receive this one.
    """

    def __init__(
        self,
        alert: PanicAlertSnapshot,
        updated_by: UserRef,
        action: str,
        *,
        now: Optional[datetime] = None,
    ):
        if action not in ALERT_ACTIONS:
            raise ValueError(f"Unknown panic alert action: {action!r}")
        super().__init__(alert, now=now)
        self.updated_by = updated_by
        self.action = action

    def broadcast_as(self) -> str:
        return PANIC_ALERT_STATUS_CHANGED

    def broadcast_on(self) -> list[str]:
        return unique_channels(
            [EMERGENCY_ALERTS]
            + self._notified_channels()
            + [user_channel(self.alert.child_id)]
        )

    def broadcast_with(self) -> dict[str, Any]:
        a = self.alert
        actor = _require(self.updated_by, f"Actor on panic alert {a.id}")
        return {
            "alert": {
                "id": a.id,
                "child": _ref(self._child()),
                "triggered_at": iso(a.triggered_at),
                "status": a.status,
                "resolved_at": iso(a.resolved_at),
                "resolved_by": _ref(a.resolved_by),
                "notes": a.notes,
                "location_data": copy.deepcopy(a.location_data),
            },
            "updated_by": _ref(actor),
            "action": self.action,
            "message": f"{actor.name} {self.action} the emergency alert",
            "timestamp": self.timestamp,
        }

    def log_context(self) -> dict[str, Any]:
        return {**super().log_context(), "action": self.action}


# ─── In-app notifications ───────────────────────────────


class NotificationCreated(BroadcastEvent):
    """A notification row was stored for one user."""

    def __init__(
        self,
        notification: NotificationSnapshot,
        *,
        now: Optional[datetime] = None,
    ):
        super().__init__(now=now)
        self.notification = notification
        self.critical = notification.priority == "urgent"

    def broadcast_as(self) -> str:
        return NOTIFICATION_CREATED

    def broadcast_on(self) -> list[str]:
        return [user_channel(self.notification.user_id)]

    def broadcast_with(self) -> dict[str, Any]:
        n = self.notification
        return {
            "notification": {
                "id": n.id,
                "type": n.type,
                "title": n.title,
                "message": n.message,
                "data": copy.deepcopy(n.data),
                "action_url": n.action_url,
                "icon": n.icon,
                "priority": n.priority,
                "created_at": iso(n.created_at),
            },
        }

    def log_context(self) -> dict[str, Any]:
        return {
            "notification_id": self.notification.id,
            "user_id": self.notification.user_id,
            "type": self.notification.type,
        }


# ─── Diagnostics ────────────────────────────────────────


class DiagnosticPing(BroadcastEvent):
    """Operator-issued ping on one channel, for checking live delivery."""

    def __init__(
        self,
        channel: str,
        note: str = "ping",
        *,
        now: Optional[datetime] = None,
    ):
        parse_channel(channel)
        super().__init__(now=now)
        self.channel = channel
        self.note = note

    def broadcast_as(self) -> str:
        return TEST_PING

    def broadcast_on(self) -> list[str]:
        return [self.channel]

    def broadcast_with(self) -> dict[str, Any]:
        return {"message": self.note, "timestamp": self.timestamp}

    def log_context(self) -> dict[str, Any]:
        return {"channel": self.channel}
