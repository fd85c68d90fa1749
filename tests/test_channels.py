"""Channel naming and channel authorization tests."""

import pytest

from safespace.db.models import User
from safespace.realtime.access import authorized_channels, can_subscribe
from safespace.realtime.channels import (
    ADMIN_MONITORING,
    EMERGENCY_ALERTS,
    group_channel,
    parse_channel,
    unique_channels,
    user_channel,
)


# ═══════════════════════════════════════════════════════════
# Naming
# ═══════════════════════════════════════════════════════════


def test_entity_channels_are_derived_from_ids():
    assert user_channel(7) == "user.7"
    assert group_channel(3) == "group.3"


def test_operational_channel_defaults():
    assert ADMIN_MONITORING == "admin-monitoring"
    assert EMERGENCY_ALERTS == "emergency-alerts"


@pytest.mark.parametrize("bad", [0, -1, True])
def test_invalid_ids_rejected(bad):
    with pytest.raises(ValueError):
        user_channel(bad)


def test_parse_channel_kinds():
    assert parse_channel("user.12") == ("user", 12)
    assert parse_channel("group.4") == ("group", 4)
    assert parse_channel("emergency-alerts") == ("operational", None)


@pytest.mark.parametrize("bad", ["user.", "user.x", "group.-2", "presence.1", "users.1"])
def test_parse_channel_rejects_unknown(bad):
    with pytest.raises(ValueError):
        parse_channel(bad)


def test_unique_channels_keeps_first_seen_order():
    assert unique_channels(["user.2", "user.1", "user.2", "emergency-alerts"]) == [
        "user.2",
        "user.1",
        "emergency-alerts",
    ]


# ═══════════════════════════════════════════════════════════
# Authorization
# ═══════════════════════════════════════════════════════════


def _user(uid, *roles):
    return User(id=uid, name=f"u{uid}", email=f"u{uid}@example.org", roles=list(roles))


def test_child_hears_only_own_inbox_and_groups():
    child = _user(5, "child")
    assert authorized_channels(child, [9, 2, 9]) == ["user.5", "group.2", "group.9"]


def test_admin_gets_both_operational_channels():
    admin = _user(1, "admin")
    assert authorized_channels(admin, []) == [
        "user.1",
        ADMIN_MONITORING,
        EMERGENCY_ALERTS,
    ]


def test_therapist_gets_emergency_but_not_monitoring():
    therapist = _user(2, "therapist")
    channels = authorized_channels(therapist, [])
    assert EMERGENCY_ALERTS in channels
    assert ADMIN_MONITORING not in channels


def test_can_subscribe_rules():
    guardian = _user(3, "guardian")
    assert can_subscribe(guardian, "user.3", [])
    assert not can_subscribe(guardian, "user.4", [])
    assert can_subscribe(guardian, "group.8", [8])
    assert not can_subscribe(guardian, "group.8", [])
    assert not can_subscribe(guardian, EMERGENCY_ALERTS, [])
    assert not can_subscribe(guardian, "nonsense", [])
