"""Immutable entity snapshots handed to broadcast events.

Learn: Events never touch the database. The service that caused the
state change eagerly loads every relation the event needs, then freezes
the rows into these views (model_validate(orm_row) via from_attributes).

A relation that was not loaded is None here. Events treat a None they
need as a ResolutionError instead of guessing a smaller audience.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

_FROZEN = {"frozen": True, "from_attributes": True}


class UserRef(BaseModel):
    id: int
    name: str
    roles: tuple[str, ...] = ()

    model_config = _FROZEN


class GroupRef(BaseModel):
    id: int
    name: str

    model_config = _FROZEN


class MessageSnapshot(BaseModel):
    """A chat message — direct (recipient_id) or group (group_id)."""
    id: int
    content: str
    message_type: str = "text"
    sender_id: int
    sender: Optional[UserRef] = None
    recipient_id: Optional[int] = None
    recipient: Optional[UserRef] = None
    group_id: Optional[int] = None
    group: Optional[GroupRef] = None
    created_at: datetime
    is_read: bool = False
    is_flagged: bool = False

    model_config = _FROZEN

    @property
    def is_direct(self) -> bool:
        return self.recipient_id is not None and self.group_id is None

    @property
    def is_group(self) -> bool:
        return self.group_id is not None and self.recipient_id is None


class AlertNotificationRef(BaseModel):
    notified_user_id: int
    notification_type: str

    model_config = _FROZEN


class PanicAlertSnapshot(BaseModel):
    id: int
    child_id: int
    child: Optional[UserRef] = None
    triggered_at: datetime
    status: str
    location_data: Optional[dict[str, Any]] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UserRef] = None
    notes: Optional[str] = None
    # None = not loaded; () = loaded, nobody to notify
    notifications: Optional[tuple[AlertNotificationRef, ...]] = None

    model_config = _FROZEN


class ConnectionSnapshot(BaseModel):
    """A therapist ↔ client connection."""
    id: int
    therapist_id: int
    therapist: Optional[UserRef] = None
    client_id: int
    client: Optional[UserRef] = None
    client_type: str
    connection_type: str
    status: str

    model_config = _FROZEN


class NotificationSnapshot(BaseModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    action_url: Optional[str] = None
    icon: str = "bell"
    priority: str = "normal"
    created_at: datetime

    model_config = _FROZEN
