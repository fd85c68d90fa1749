"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.

Key concepts:
- Integer primary keys: broadcast channel names are built from them
  (user.<id>, group.<id>), so ids must be stable for the entity's life
- Generic JSON columns (roles, location data, notification data) so the
  schema runs on PostgreSQL in production and SQLite in tests
- Python-side timestamp defaults so values are present right after flush,
  before any refresh, when events snapshot the rows
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


ROLES = ("admin", "therapist", "guardian", "child")


# ══════════════════════════════════════════════════════════════
# People
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A person on the platform.

    Learn: roles is a JSON list (a user can be e.g. both guardian and
    therapist). Children point at their guardian through guardian_id.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    roles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active"
    )  # active, inactive, suspended
    guardian_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    guardian: Mapped[Optional["User"]] = relationship(remote_side="User.id")

    def has_role(self, *roles: str) -> bool:
        return any(role in (self.roles or []) for role in roles)


# ══════════════════════════════════════════════════════════════
# Groups and messages
# ══════════════════════════════════════════════════════════════


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    members: Mapped[list["GroupMember"]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )


class GroupMember(Base):
    """Group membership with a per-group role (admin or member)."""

    __tablename__ = "group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    group: Mapped["Group"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship()


class Message(Base):
    """A chat message. Exactly one of recipient_id / group_id is set."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_group_created", "group_id", "created_at"),
        Index("ix_messages_pair", "sender_id", "recipient_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    recipient_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("groups.id"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="text"
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    flag_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    sender: Mapped["User"] = relationship(foreign_keys=[sender_id])
    recipient: Mapped[Optional["User"]] = relationship(foreign_keys=[recipient_id])
    group: Mapped[Optional["Group"]] = relationship()


# ══════════════════════════════════════════════════════════════
# Therapist ↔ client connections
# ══════════════════════════════════════════════════════════════


class TherapistClientConnection(Base):
    __tablename__ = "therapist_client_connections"
    __table_args__ = (
        Index("ix_connections_client_status", "client_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    therapist_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    client_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    client_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # guardian, child
    connection_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default="admin_assigned"
    )  # admin_assigned, guardian_requested, guardian_child_assignment
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active"
    )  # active, inactive, suspended, terminated
    assigned_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    terminated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    therapist: Mapped["User"] = relationship(foreign_keys=[therapist_id])
    client: Mapped["User"] = relationship(foreign_keys=[client_id])


# ══════════════════════════════════════════════════════════════
# Panic alerts
# ══════════════════════════════════════════════════════════════


class PanicAlert(Base):
    """An emergency raised by a child.

    Learn: status moves active → acknowledged → resolved (or straight
    from active to resolved). Never backwards.
    """

    __tablename__ = "panic_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    child_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    location_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    child: Mapped["User"] = relationship(foreign_keys=[child_id])
    resolved_by: Mapped[Optional["User"]] = relationship(foreign_keys=[resolved_by_id])
    notifications: Mapped[list["PanicAlertNotification"]] = relationship(
        back_populates="panic_alert",
        order_by="PanicAlertNotification.id",
        cascade="all, delete-orphan",
    )


class PanicAlertNotification(Base):
    """Who was told about an alert, and whether they looked."""

    __tablename__ = "panic_alert_notifications"
    __table_args__ = (
        UniqueConstraint(
            "panic_alert_id", "notified_user_id", name="uq_panic_alert_notified"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    panic_alert_id: Mapped[int] = mapped_column(
        ForeignKey("panic_alerts.id"), nullable=False
    )
    notified_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    notification_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # guardian, therapist, admin
    viewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    panic_alert: Mapped["PanicAlert"] = relationship(back_populates="notifications")


# ══════════════════════════════════════════════════════════════
# In-app notifications
# ══════════════════════════════════════════════════════════════


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    action_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    icon: Mapped[str] = mapped_column(String(30), nullable=False, default="bell")
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default="normal"
    )  # low, normal, high, urgent
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


# ══════════════════════════════════════════════════════════════
# Audit log
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Append-only audit event.

    Learn: Every state change appends one row here. The broadcaster also
    records safety-critical publishes that never reached Redis.
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_stream", "stream_id", "id"),
        Index("ix_events_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(60), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    meta: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
