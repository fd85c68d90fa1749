"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types in the system.

Two families live here:
- broadcast names — the stable wire identifiers clients bind to
- audit types — entries appended to the durable event store
"""

# ─── Broadcast names (wire contract) ─────────────────────

MESSAGE_SENT = "message.sent"
GROUP_MESSAGE_SENT = "group-message.sent"
GROUP_MEMBER_ADDED = "group-member.added"
GROUP_MEMBER_REMOVED = "group-member.removed"
CONNECTION_STATUS_CHANGED = "connection.status-changed"
PANIC_ALERT_TRIGGERED = "panic-alert.triggered"
PANIC_ALERT_STATUS_CHANGED = "panic-alert.status-changed"
NOTIFICATION_CREATED = "notification.created"
TEST_PING = "test.ping"

# ─── Audit log ───────────────────────────────────────────

AUDIT_MESSAGE_SENT = "message.sent"
AUDIT_GROUP_CREATED = "group.created"
AUDIT_GROUP_MEMBER_ADDED = "group.member_added"
AUDIT_GROUP_MEMBER_REMOVED = "group.member_removed"
AUDIT_CONNECTION_CREATED = "connection.created"
AUDIT_CONNECTION_STATUS_CHANGED = "connection.status_changed"
AUDIT_PANIC_ALERT_TRIGGERED = "panic_alert.triggered"
AUDIT_PANIC_ALERT_ACKNOWLEDGED = "panic_alert.acknowledged"
AUDIT_PANIC_ALERT_RESOLVED = "panic_alert.resolved"
AUDIT_BROADCAST_DELIVERY_FAILED = "broadcast.delivery_failed"
