"""Panic alert service — emergency alerts raised by children.

Learn: Triggering an alert is one transaction — the alert, one
PanicAlertNotification row per emergency contact, and an urgent in-app
notification for each of them — followed by the broadcasts:

1. panic-alert.triggered   → emergency-alerts + every notified user
2. notification.created    → each notified user's inbox

Emergency contacts, deduplicated by user id (first reason wins):
- the child's guardian
- therapists with an active connection to the child
- all active admins

Status only moves forward: active → acknowledged → resolved, or active →
resolved. Status changes are broadcast to the same audience plus the
child, who needs to know help is on the way.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from safespace.db.models import (
    PanicAlert,
    PanicAlertNotification,
    TherapistClientConnection,
    User,
)
from safespace.events.store import EventStore, stream
from safespace.events.types import (
    AUDIT_PANIC_ALERT_ACKNOWLEDGED,
    AUDIT_PANIC_ALERT_RESOLVED,
    AUDIT_PANIC_ALERT_TRIGGERED,
)
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.events import (
    PanicAlertStatusChanged,
    PanicAlertTriggered,
    iso,
)
from safespace.realtime.snapshots import PanicAlertSnapshot, UserRef
from safespace.services.notification_service import (
    TYPE_PANIC_ALERT,
    TYPE_PANIC_ALERT_RESOLVED,
    NotificationService,
)
from safespace.services.user_service import UserService

logger = structlog.get_logger()

# Resolved alerts drop out of "recent" lists after this long.
RECENT_RESOLVED_WINDOW = timedelta(hours=2)


class PanicAlertNotFoundError(Exception):
    """Raised when a panic alert does not exist."""


class PanicAlertPermissionError(Exception):
    """Raised when a user may not view or manage an alert."""


class PanicAlertStateError(Exception):
    """Raised when an alert is not in a state that allows the action."""


def _alert_url(alert_id: int) -> str:
    return f"/panic-alerts/{alert_id}"


class PanicAlertService:
    def __init__(self, db: AsyncSession, broadcaster: Broadcaster):
        self.db = db
        self.events = EventStore(db)
        self.users = UserService(db)
        self.notifications = NotificationService(db, broadcaster)
        self.broadcaster = broadcaster

    # ─── Loading ────────────────────────────────────────

    async def get_alert(self, alert_id: int) -> PanicAlert:
        result = await self.db.execute(
            select(PanicAlert)
            .where(PanicAlert.id == alert_id)
            .options(
                selectinload(PanicAlert.child),
                selectinload(PanicAlert.resolved_by),
                selectinload(PanicAlert.notifications),
            )
            .execution_options(populate_existing=True)
        )
        alert = result.scalars().first()
        if not alert:
            raise PanicAlertNotFoundError(f"Panic alert {alert_id} not found")
        return alert

    async def _connected_child_ids(self, therapist_id: int) -> set[int]:
        result = await self.db.execute(
            select(TherapistClientConnection.client_id).where(
                TherapistClientConnection.therapist_id == therapist_id,
                TherapistClientConnection.status == "active",
            )
        )
        return set(result.scalars().all())

    async def emergency_contacts(self, child: User) -> list[tuple[User, str]]:
        """(user, notification_type) pairs, one per user."""
        contacts: list[tuple[User, str]] = []

        if child.guardian_id is not None:
            guardian = await self.db.get(User, child.guardian_id)
            if guardian and guardian.status == "active":
                contacts.append((guardian, "guardian"))

        therapists = await self.db.execute(
            select(User)
            .join(
                TherapistClientConnection,
                TherapistClientConnection.therapist_id == User.id,
            )
            .where(
                TherapistClientConnection.client_id == child.id,
                TherapistClientConnection.status == "active",
                User.status == "active",
            )
            .order_by(User.id)
        )
        contacts.extend((t, "therapist") for t in therapists.scalars().all())
        contacts.extend((a, "admin") for a in await self.users.active_admins())

        seen: set[int] = {child.id}
        unique = []
        for user, kind in contacts:
            if user.id not in seen:
                seen.add(user.id)
                unique.append((user, kind))
        return unique

    # ─── Trigger ────────────────────────────────────────

    async def trigger(
        self,
        child_id: int,
        location_data: Optional[dict[str, Any]] = None,
    ) -> tuple[PanicAlert, bool]:
        """Raise a new alert for a child. Returns (alert, broadcast result)."""
        child = await self.users.get(child_id)
        if not child.has_role("child"):
            raise PanicAlertPermissionError(
                f"User {child.id} cannot trigger panic alerts"
            )

        alert = PanicAlert(
            child_id=child.id,
            location_data=location_data,
            status="active",
        )
        self.db.add(alert)
        await self.db.flush()

        logger.critical(
            "panic_alert.triggered",
            panic_alert_id=alert.id,
            child_id=child.id,
            child_name=child.name,
            location_data=location_data,
        )

        contacts = await self.emergency_contacts(child)
        staged = []
        for user, kind in contacts:
            self.db.add(
                PanicAlertNotification(
                    panic_alert_id=alert.id,
                    notified_user_id=user.id,
                    notification_type=kind,
                )
            )
            staged.append(
                self.notifications.stage(
                    user.id,
                    TYPE_PANIC_ALERT,
                    "URGENT: Panic Alert Triggered",
                    f"{child.name} has triggered a panic alert. "
                    "Immediate attention required.",
                    data={
                        "panic_alert_id": alert.id,
                        "child_id": child.id,
                        "triggered_at": iso(alert.triggered_at),
                    },
                    action_url=_alert_url(alert.id),
                    priority="urgent",
                )
            )

        await self.events.append(
            stream_id=stream("panic_alert", alert.id),
            event_type=AUDIT_PANIC_ALERT_TRIGGERED,
            data={
                "child_id": child.id,
                "notified": [user.id for user, _ in contacts],
                "location_data": location_data,
            },
        )
        await self.db.commit()

        alert = await self.get_alert(alert.id)
        sent = await self.broadcaster.dispatch(
            PanicAlertTriggered(PanicAlertSnapshot.model_validate(alert))
        )
        await self.notifications.publish(staged)
        return alert, sent

    # ─── Acknowledge / resolve ──────────────────────────

    async def acknowledge(self, alert_id: int, user_id: int) -> tuple[PanicAlert, bool]:
        alert = await self.get_alert(alert_id)
        user = await self.users.get(user_id)
        await self._ensure_can_manage(user, alert)
        if alert.status != "active":
            raise PanicAlertStateError(
                f"Panic alert {alert.id} is {alert.status}, not active"
            )

        now = datetime.now(timezone.utc)
        alert.status = "acknowledged"
        for notification in alert.notifications:
            if notification.notified_user_id == user.id:
                notification.acknowledged_at = now

        await self.events.append(
            stream_id=stream("panic_alert", alert.id),
            event_type=AUDIT_PANIC_ALERT_ACKNOWLEDGED,
            data={"acknowledged_by": user.id},
        )
        await self.db.commit()
        logger.info(
            "panic_alert.acknowledged",
            panic_alert_id=alert.id,
            acknowledged_by=user.id,
        )

        return await self._broadcast_status(alert.id, user, "acknowledged")

    async def resolve(
        self,
        alert_id: int,
        user_id: int,
        notes: Optional[str] = None,
    ) -> tuple[PanicAlert, bool]:
        alert = await self.get_alert(alert_id)
        user = await self.users.get(user_id)
        await self._ensure_can_manage(user, alert)
        if alert.status not in ("active", "acknowledged"):
            raise PanicAlertStateError(f"Panic alert {alert.id} is already resolved")

        alert.status = "resolved"
        alert.resolved_at = datetime.now(timezone.utc)
        alert.resolved_by_id = user.id
        alert.notes = notes

        await self.events.append(
            stream_id=stream("panic_alert", alert.id),
            event_type=AUDIT_PANIC_ALERT_RESOLVED,
            data={"resolved_by": user.id, "notes": notes},
        )
        child_notice = self.notifications.stage(
            alert.child_id,
            TYPE_PANIC_ALERT_RESOLVED,
            "Panic Alert Resolved",
            f"Your panic alert has been resolved by {user.name}.",
            data={
                "panic_alert_id": alert.id,
                "resolved_by": user.id,
                "resolved_at": iso(alert.resolved_at),
            },
            action_url=_alert_url(alert.id),
        )
        await self.db.commit()
        logger.info(
            "panic_alert.resolved",
            panic_alert_id=alert.id,
            resolved_by=user.id,
        )

        result = await self._broadcast_status(alert.id, user, "resolved")
        await self.notifications.publish([child_notice])
        return result

    async def _broadcast_status(
        self,
        alert_id: int,
        actor: User,
        action: str,
    ) -> tuple[PanicAlert, bool]:
        alert = await self.get_alert(alert_id)
        sent = await self.broadcaster.dispatch(
            PanicAlertStatusChanged(
                PanicAlertSnapshot.model_validate(alert),
                UserRef.model_validate(actor),
                action,
            )
        )
        return alert, sent

    # ─── Visibility ─────────────────────────────────────

    async def can_view(self, user: User, alert: PanicAlert) -> bool:
        if user.has_role("admin"):
            return True
        if user.has_role("guardian") and alert.child.guardian_id == user.id:
            return True
        if user.has_role("therapist") and alert.child_id in await self._connected_child_ids(
            user.id
        ):
            return True
        return user.has_role("child") and alert.child_id == user.id

    async def can_manage(self, user: User, alert: PanicAlert) -> bool:
        # Children never acknowledge or resolve, not even their own alerts.
        if user.has_role("child"):
            return False
        return await self.can_view(user, alert)

    async def _ensure_can_manage(self, user: User, alert: PanicAlert) -> None:
        if not await self.can_manage(user, alert):
            raise PanicAlertPermissionError(
                f"User {user.id} may not manage panic alert {alert.id}"
            )

    async def get_for_user(self, alert_id: int, user_id: int) -> PanicAlert:
        """Fetch an alert the user may view and mark their notification viewed."""
        alert = await self.get_alert(alert_id)
        user = await self.users.get(user_id)
        if not await self.can_view(user, alert):
            raise PanicAlertPermissionError(
                f"User {user.id} may not view panic alert {alert.id}"
            )
        await self.mark_viewed(alert, user.id)
        return alert

    async def mark_viewed(self, alert: PanicAlert, user_id: int) -> None:
        for notification in alert.notifications:
            if notification.notified_user_id == user_id and notification.viewed_at is None:
                notification.viewed_at = datetime.now(timezone.utc)
                await self.db.commit()

    # ─── Listing ────────────────────────────────────────

    def _recent(self, query):
        cutoff = datetime.now(timezone.utc) - RECENT_RESOLVED_WINDOW
        return query.where(
            or_(PanicAlert.status != "resolved", PanicAlert.resolved_at > cutoff)
        )

    async def _visible_child_ids(self, user: User) -> set[int]:
        child_ids: set[int] = set()
        if user.has_role("therapist"):
            child_ids |= await self._connected_child_ids(user.id)
        if user.has_role("guardian"):
            result = await self.db.execute(
                select(User.id).where(User.guardian_id == user.id)
            )
            child_ids |= set(result.scalars().all())
        if user.has_role("child"):
            child_ids.add(user.id)
        return child_ids

    async def list_for_user(self, user_id: int) -> list[PanicAlert]:
        """Recent alerts the user is allowed to see, newest first."""
        user = await self.users.get(user_id)
        query = self._recent(
            select(PanicAlert)
            .options(
                selectinload(PanicAlert.child),
                selectinload(PanicAlert.resolved_by),
                selectinload(PanicAlert.notifications),
            )
            .order_by(PanicAlert.triggered_at.desc(), PanicAlert.id.desc())
        )

        if not user.has_role("admin"):
            child_ids = await self._visible_child_ids(user)
            if not child_ids:
                return []
            query = query.where(PanicAlert.child_id.in_(child_ids))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def unviewed_count(self, user_id: int) -> int:
        query = self._recent(
            select(func.count(PanicAlertNotification.id))
            .join(PanicAlert, PanicAlert.id == PanicAlertNotification.panic_alert_id)
            .where(
                PanicAlertNotification.notified_user_id == user_id,
                PanicAlertNotification.viewed_at.is_(None),
            )
        )
        result = await self.db.execute(query)
        return result.scalar_one()
