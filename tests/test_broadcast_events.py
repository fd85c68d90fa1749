"""Broadcast event tests — recipients and payloads, no I/O.

Learn: Events are pure functions of their snapshots. These tests build
snapshots by hand, so every recipient rule and payload shape is checked
without a database or a transport.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from safespace.realtime.channels import ADMIN_MONITORING, EMERGENCY_ALERTS
from safespace.realtime.events import (
    ConnectionStatusChanged,
    DiagnosticPing,
    GroupMemberAdded,
    GroupMemberRemoved,
    MessageSent,
    NotificationCreated,
    PanicAlertStatusChanged,
    PanicAlertTriggered,
    ResolutionError,
    iso,
)
from safespace.realtime.snapshots import (
    AlertNotificationRef,
    ConnectionSnapshot,
    GroupRef,
    MessageSnapshot,
    NotificationSnapshot,
    PanicAlertSnapshot,
    UserRef,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

THERAPIST = UserRef(id=2, name="Dr. Okafor", roles=("therapist",))
CHILD = UserRef(id=5, name="Sam", roles=("child",))
GUARDIAN = UserRef(id=3, name="Rita", roles=("guardian",))
ADMIN = UserRef(id=1, name="Ada", roles=("admin",))
GROUP = GroupRef(id=9, name="Tuesday Circle")


def _direct(**overrides):
    fields = dict(
        id=40,
        content="How was school today?",
        sender_id=THERAPIST.id,
        sender=THERAPIST,
        recipient_id=CHILD.id,
        recipient=CHILD,
        created_at=T0,
    )
    fields.update(overrides)
    return MessageSnapshot(**fields)


def _group_message(**overrides):
    fields = dict(
        id=41,
        content="Welcome everyone",
        sender_id=THERAPIST.id,
        sender=THERAPIST,
        group_id=GROUP.id,
        group=GROUP,
        created_at=T0,
    )
    fields.update(overrides)
    return MessageSnapshot(**fields)


def _alert(notified=(2, 3), **overrides):
    fields = dict(
        id=12,
        child_id=CHILD.id,
        child=CHILD,
        triggered_at=T0,
        status="active",
        location_data={"lat": 51.5, "lng": -0.12},
        notifications=tuple(
            AlertNotificationRef(notified_user_id=u, notification_type="therapist")
            for u in notified
        ),
    )
    fields.update(overrides)
    return PanicAlertSnapshot(**fields)


# ═══════════════════════════════════════════════════════════
# Messages
# ═══════════════════════════════════════════════════════════


def test_direct_message_goes_to_both_participants_only():
    """Therapist T messages child C → {user.T, user.C}, no group key."""
    event = MessageSent(_direct())
    assert event.broadcast_as() == "message.sent"
    assert event.broadcast_on() == ["user.2", "user.5"]
    assert ADMIN_MONITORING not in event.broadcast_on()

    message = event.broadcast_with()["message"]
    assert "group" not in message
    assert message["sender"] == {"id": 2, "name": "Dr. Okafor"}
    assert message["recipient"] == {"id": 5, "name": "Sam"}
    assert message["created_at"] == "2026-03-01T12:00:00.000000Z"
    assert message["is_read"] is False
    assert message["is_flagged"] is False


def test_group_message_goes_to_room_and_monitoring():
    """User U posts in group G → {group.G, admin-monitoring}, sender roles set."""
    event = MessageSent(_group_message())
    assert event.broadcast_as() == "group-message.sent"
    assert event.broadcast_on() == ["group.9", ADMIN_MONITORING]
    assert not any(ch.startswith("user.") for ch in event.broadcast_on())

    message = event.broadcast_with()["message"]
    assert message["sender"]["roles"] == ["therapist"]
    assert message["group"] == {"id": 9, "name": "Tuesday Circle"}
    assert "recipient" not in message


def test_message_with_both_targets_is_rejected():
    event = MessageSent(_direct(group_id=GROUP.id, group=GROUP))
    with pytest.raises(ResolutionError):
        event.broadcast_on()


def test_message_with_no_target_is_rejected():
    event = MessageSent(_direct(recipient_id=None, recipient=None))
    with pytest.raises(ResolutionError):
        event.broadcast_on()


def test_message_with_unloaded_sender_fails_projection():
    event = MessageSent(_direct(sender=None))
    with pytest.raises(ResolutionError):
        event.broadcast_with()


def test_self_message_publishes_one_channel():
    event = MessageSent(_direct(recipient_id=THERAPIST.id, recipient=THERAPIST))
    assert event.broadcast_on() == ["user.2"]


# ═══════════════════════════════════════════════════════════
# Group membership
# ═══════════════════════════════════════════════════════════


def test_member_added_reaches_room_member_and_monitoring():
    event = GroupMemberAdded(GROUP, CHILD, THERAPIST, now=T0)
    assert event.broadcast_as() == "group-member.added"
    assert event.broadcast_on() == ["group.9", "user.5", ADMIN_MONITORING]
    assert event.broadcast_with() == {
        "group": {"id": 9, "name": "Tuesday Circle"},
        "user": {"id": 5, "name": "Sam"},
        "added_by": {"id": 2, "name": "Dr. Okafor"},
        "role": "member",
        "timestamp": "2026-03-01T12:00:00.000000Z",
    }


def test_member_removed_allows_missing_actor_and_reason():
    event = GroupMemberRemoved(GROUP, CHILD, now=T0)
    assert event.broadcast_as() == "group-member.removed"
    assert event.broadcast_on() == ["group.9", "user.5", ADMIN_MONITORING]
    payload = event.broadcast_with()
    assert payload["removed_by"] is None
    assert payload["reason"] is None


def test_membership_event_without_group_is_resolution_error():
    event = GroupMemberAdded(None, CHILD, THERAPIST)
    with pytest.raises(ResolutionError):
        event.broadcast_on()


# ═══════════════════════════════════════════════════════════
# Connections
# ═══════════════════════════════════════════════════════════


def _connection(status="suspended"):
    return ConnectionSnapshot(
        id=4,
        therapist_id=THERAPIST.id,
        therapist=THERAPIST,
        client_id=GUARDIAN.id,
        client=GUARDIAN,
        client_type="guardian",
        connection_type="admin_assigned",
        status=status,
    )


def test_connection_change_reaches_both_parties():
    event = ConnectionStatusChanged(_connection(), "active", "suspended", ADMIN, now=T0)
    assert event.broadcast_as() == "connection.status-changed"
    assert event.broadcast_on() == ["user.2", "user.3"]
    payload = event.broadcast_with()
    assert payload["old_status"] == "active"
    assert payload["new_status"] == "suspended"
    assert payload["changed_by"] == {"id": 1, "name": "Ada"}
    assert payload["connection"]["status"] == "suspended"


def test_connection_change_requires_a_real_change():
    with pytest.raises(ValueError):
        ConnectionStatusChanged(_connection("active"), "active", "active")


# ═══════════════════════════════════════════════════════════
# Panic alerts
# ═══════════════════════════════════════════════════════════


def test_triggered_alert_scenario():
    """Child C with recipients U1, U2 → {emergency-alerts, user.U1, user.U2}."""
    event = PanicAlertTriggered(_alert(notified=(2, 3)), now=T0)
    assert event.critical is True
    assert event.broadcast_as() == "panic-alert.triggered"
    assert event.broadcast_on() == [EMERGENCY_ALERTS, "user.2", "user.3"]

    payload = event.broadcast_with()
    assert payload["alert"]["child"]["id"] == CHILD.id
    assert payload["alert"]["status"] == "active"
    assert payload["alert"]["location_data"] == {"lat": 51.5, "lng": -0.12}
    assert payload["message"] == (
        "Sam has triggered a panic alert. Immediate attention required."
    )


def test_triggered_alert_never_reaches_the_child():
    event = PanicAlertTriggered(_alert(notified=(2, CHILD.id, 2)))
    assert event.broadcast_on() == [EMERGENCY_ALERTS, "user.2"]


def test_triggered_alert_with_nobody_notified_still_hits_emergency():
    event = PanicAlertTriggered(_alert(notified=()))
    assert event.broadcast_on() == [EMERGENCY_ALERTS]


def test_unloaded_notification_list_is_resolution_error():
    event = PanicAlertTriggered(_alert(notifications=None))
    with pytest.raises(ResolutionError):
        event.broadcast_on()


def test_resolved_alert_scenario():
    """Guardian resolves → {emergency-alerts, user.U1, user.C}, names the resolver."""
    alert = _alert(
        notified=(GUARDIAN.id,),
        status="resolved",
        resolved_at=T0 + timedelta(minutes=4),
        resolved_by=GUARDIAN,
        notes="Found at the library",
    )
    event = PanicAlertStatusChanged(alert, GUARDIAN, "resolved", now=T0)
    assert event.broadcast_as() == "panic-alert.status-changed"
    assert event.broadcast_on() == [EMERGENCY_ALERTS, "user.3", "user.5"]

    payload = event.broadcast_with()
    assert payload["action"] == "resolved"
    assert "Rita" in payload["message"]
    assert payload["message"] == "Rita resolved the emergency alert"
    assert payload["alert"]["resolved_by"] == {"id": 3, "name": "Rita"}
    assert payload["alert"]["resolved_at"] == "2026-03-01T12:04:00.000000Z"
    assert payload["alert"]["notes"] == "Found at the library"


def test_status_change_dedupes_child_in_notified_set():
    event = PanicAlertStatusChanged(_alert(notified=(CHILD.id, 2)), ADMIN, "acknowledged")
    channels = event.broadcast_on()
    assert channels == [EMERGENCY_ALERTS, "user.5", "user.2"]
    assert len(channels) == len(set(channels))


def test_status_change_rejects_unknown_action():
    with pytest.raises(ValueError):
        PanicAlertStatusChanged(_alert(), ADMIN, "escalated")


def test_payload_location_is_a_copy():
    event = PanicAlertTriggered(_alert())
    payload = event.broadcast_with()
    payload["alert"]["location_data"]["lat"] = 0
    assert event.broadcast_with()["alert"]["location_data"]["lat"] == 51.5


# ═══════════════════════════════════════════════════════════
# Purity and timestamps
# ═══════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "event",
    [
        MessageSent(_direct()),
        MessageSent(_group_message()),
        GroupMemberAdded(GROUP, CHILD, THERAPIST),
        PanicAlertTriggered(_alert()),
        PanicAlertStatusChanged(_alert(), ADMIN, "acknowledged"),
    ],
    ids=["direct", "group", "member-added", "triggered", "status-changed"],
)
def test_resolution_and_projection_are_idempotent(event):
    first = (event.broadcast_on(), json.dumps(event.broadcast_with(), sort_keys=True))
    second = (event.broadcast_on(), json.dumps(event.broadcast_with(), sort_keys=True))
    assert first == second


def test_alert_lifecycle_timestamps_parse_and_never_go_backwards():
    alert = _alert()
    events = [
        PanicAlertTriggered(alert),
        PanicAlertStatusChanged(alert, ADMIN, "acknowledged"),
        PanicAlertStatusChanged(alert, ADMIN, "resolved"),
    ]
    stamps = [
        datetime.fromisoformat(e.broadcast_with()["timestamp"].replace("Z", "+00:00"))
        for e in events
    ]
    assert all(s.tzinfo is not None for s in stamps)
    assert stamps == sorted(stamps)


def test_iso_treats_naive_datetimes_as_utc():
    assert iso(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05.000000Z"
    assert iso(None) is None


# ═══════════════════════════════════════════════════════════
# Notifications and diagnostics
# ═══════════════════════════════════════════════════════════


def _notification(priority):
    return NotificationSnapshot(
        id=77,
        user_id=GUARDIAN.id,
        type="panic_alert",
        title="URGENT",
        message="Sam needs help",
        data={"panic_alert_id": 12},
        priority=priority,
        created_at=T0,
    )


def test_notification_goes_to_owner_only():
    event = NotificationCreated(_notification("normal"))
    assert event.broadcast_as() == "notification.created"
    assert event.broadcast_on() == ["user.3"]
    assert event.broadcast_with()["notification"]["data"] == {"panic_alert_id": 12}
    assert event.critical is False


def test_urgent_notification_is_critical():
    assert NotificationCreated(_notification("urgent")).critical is True


def test_diagnostic_ping_validates_channel():
    event = DiagnosticPing("user.3", "hello", now=T0)
    assert event.broadcast_as() == "test.ping"
    assert event.broadcast_on() == ["user.3"]
    assert event.broadcast_with() == {
        "message": "hello",
        "timestamp": "2026-03-01T12:00:00.000000Z",
    }
    with pytest.raises(ValueError):
        DiagnosticPing("somewhere")
