"""Connection service — therapist ↔ client relationships.

Learn: change_status() is the only place a connection's status is
written. It reads the old status, writes the new one, and hands both to
the ConnectionStatusChanged event directly. No "before" value is parked
anywhere between calls.

Both parties receive the change on their own user channels. Creating a
connection is announced the same way, as a change from no status to
"active".

Alongside the live event, in-app notifications are staged in the same
transaction and pushed after commit:
- created      → therapist and client (high priority)
- terminated   → every party except whoever ended it, plus the guardian
                 of a child client
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from safespace.db.models import TherapistClientConnection, User
from safespace.events.store import EventStore, stream
from safespace.events.types import (
    AUDIT_CONNECTION_CREATED,
    AUDIT_CONNECTION_STATUS_CHANGED,
)
from safespace.realtime.broadcaster import Broadcaster
from safespace.realtime.events import ConnectionStatusChanged
from safespace.realtime.snapshots import ConnectionSnapshot, UserRef
from safespace.services.notification_service import (
    TYPE_CONNECTION_ASSIGNED,
    TYPE_CONNECTION_TERMINATED,
    NotificationService,
)
from safespace.services.user_service import UserService

STATUSES = ("active", "inactive", "suspended", "terminated")
CLIENT_TYPES = ("guardian", "child")
CONNECTION_TYPES = (
    "admin_assigned",
    "guardian_requested",
    "guardian_child_assignment",
)


def _connection_url(user: User, connection_id: int) -> str:
    for role in ("therapist", "guardian", "child"):
        if user.has_role(role):
            return f"/{role}/connections/{connection_id}"
    return f"/connections/{connection_id}"


class ConnectionNotFoundError(Exception):
    """Raised when a connection does not exist."""


class ConnectionStateError(Exception):
    """Raised for invalid connection transitions or duplicates."""


class ConnectionPermissionError(Exception):
    """Raised when the acting user may not change a connection."""


class ConnectionService:
    def __init__(self, db: AsyncSession, broadcaster: Broadcaster):
        self.db = db
        self.events = EventStore(db)
        self.users = UserService(db)
        self.notifications = NotificationService(db, broadcaster)
        self.broadcaster = broadcaster

    async def get_connection(self, connection_id: int) -> TherapistClientConnection:
        result = await self.db.execute(
            select(TherapistClientConnection)
            .where(TherapistClientConnection.id == connection_id)
            .options(
                selectinload(TherapistClientConnection.therapist),
                selectinload(TherapistClientConnection.client),
            )
            .execution_options(populate_existing=True)
        )
        connection = result.scalars().first()
        if not connection:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return connection

    async def create_connection(
        self,
        *,
        therapist_id: int,
        client_id: int,
        client_type: str,
        connection_type: str = "admin_assigned",
        assigned_by_id: Optional[int] = None,
    ) -> tuple[TherapistClientConnection, bool]:
        if client_type not in CLIENT_TYPES:
            raise ValueError(f"Unknown client type: {client_type!r}")
        if connection_type not in CONNECTION_TYPES:
            raise ValueError(f"Unknown connection type: {connection_type!r}")

        therapist = await self.users.get(therapist_id)
        client = await self.users.get(client_id)
        assigned_by = await self.users.get_optional(assigned_by_id)
        if not therapist.has_role("therapist"):
            raise ConnectionStateError(f"User {therapist.id} is not a therapist")
        if not client.has_role(client_type):
            raise ConnectionStateError(f"User {client.id} is not a {client_type}")

        existing = await self.db.execute(
            select(TherapistClientConnection.id).where(
                TherapistClientConnection.therapist_id == therapist.id,
                TherapistClientConnection.client_id == client.id,
                TherapistClientConnection.status == "active",
            )
        )
        if existing.first() is not None:
            raise ConnectionStateError(
                f"Therapist {therapist.id} and client {client.id} are already connected"
            )

        connection = TherapistClientConnection(
            therapist_id=therapist.id,
            client_id=client.id,
            client_type=client_type,
            connection_type=connection_type,
            status="active",
            assigned_by=assigned_by.id if assigned_by else None,
        )
        self.db.add(connection)
        await self.db.flush()
        await self.events.append(
            stream_id=stream("connection", connection.id),
            event_type=AUDIT_CONNECTION_CREATED,
            data={
                "therapist_id": therapist.id,
                "client_id": client.id,
                "client_type": client_type,
                "connection_type": connection_type,
            },
        )
        staged = self._stage_assigned(
            connection.id, therapist, client, client_type, assigned_by
        )
        await self.db.commit()

        connection = await self.get_connection(connection.id)
        sent = await self._broadcast(connection, None, "active", assigned_by)
        await self.notifications.publish(staged)
        return connection, sent

    async def change_status(
        self,
        connection_id: int,
        new_status: str,
        *,
        changed_by_id: Optional[int] = None,
    ) -> tuple[TherapistClientConnection, Optional[bool]]:
        """Move a connection to new_status.

        Returns (connection, broadcast result). Setting the current status
        again is a no-op and broadcasts nothing (result None). Terminated
        connections are final.
        """
        if new_status not in STATUSES:
            raise ValueError(f"Unknown connection status: {new_status!r}")
        connection = await self.get_connection(connection_id)
        changed_by = await self.users.get_optional(changed_by_id)

        old_status = connection.status
        if old_status == new_status:
            return connection, None
        if old_status == "terminated":
            raise ConnectionStateError(
                f"Connection {connection.id} is terminated and cannot change"
            )

        connection.status = new_status
        if new_status == "terminated":
            connection.terminated_at = datetime.now(timezone.utc)
        await self.events.append(
            stream_id=stream("connection", connection.id),
            event_type=AUDIT_CONNECTION_STATUS_CHANGED,
            data={
                "old_status": old_status,
                "new_status": new_status,
                "changed_by": changed_by.id if changed_by else None,
            },
        )
        staged = []
        if new_status == "terminated":
            staged = await self._stage_terminated(connection, changed_by)
        await self.db.commit()

        sent = await self._broadcast(connection, old_status, new_status, changed_by)
        await self.notifications.publish(staged)
        return connection, sent

    async def terminate(
        self,
        connection_id: int,
        *,
        terminated_by_id: Optional[int] = None,
    ) -> tuple[TherapistClientConnection, Optional[bool]]:
        """End a connection. Either party or a platform admin may do this."""
        connection = await self.get_connection(connection_id)
        actor = await self.users.get_optional(terminated_by_id)
        if (
            actor
            and not actor.has_role("admin")
            and actor.id not in (connection.therapist_id, connection.client_id)
        ):
            raise ConnectionPermissionError(
                f"User {actor.id} may not terminate connection {connection.id}"
            )
        return await self.change_status(
            connection_id, "terminated", changed_by_id=terminated_by_id
        )

    # ─── Notifications ──────────────────────────────────

    def _stage_assigned(self, connection_id, therapist, client, client_type, assigned_by):
        assigned_by_name = assigned_by.name if assigned_by else None
        return [
            self.notifications.stage(
                therapist.id,
                TYPE_CONNECTION_ASSIGNED,
                "New Client Assignment",
                f"You have been assigned a new {client_type}: {client.name}",
                data={
                    "connection_id": connection_id,
                    "client_id": client.id,
                    "client_type": client_type,
                    "assigned_by": assigned_by_name,
                },
                action_url=_connection_url(therapist, connection_id),
                priority="high",
            ),
            self.notifications.stage(
                client.id,
                TYPE_CONNECTION_ASSIGNED,
                "Therapist Assignment",
                f"You have been assigned to therapist: {therapist.name}",
                data={
                    "connection_id": connection_id,
                    "therapist_id": therapist.id,
                    "assigned_by": assigned_by_name,
                },
                action_url=_connection_url(client, connection_id),
                priority="high",
            ),
        ]

    async def _stage_terminated(self, connection, terminated_by):
        therapist = connection.therapist
        client = connection.client
        actor_id = terminated_by.id if terminated_by else None
        actor_name = terminated_by.name if terminated_by else None
        staged = []

        if therapist.id != actor_id:
            staged.append(
                self.notifications.stage(
                    therapist.id,
                    TYPE_CONNECTION_TERMINATED,
                    "Connection Terminated",
                    f"Your therapeutic relationship with {connection.client_type} "
                    f"{client.name} has been terminated",
                    data={
                        "connection_id": connection.id,
                        "client_id": client.id,
                        "client_type": connection.client_type,
                        "terminated_by": actor_name,
                    },
                    action_url="/connections",
                )
            )
        if client.id != actor_id:
            staged.append(
                self.notifications.stage(
                    client.id,
                    TYPE_CONNECTION_TERMINATED,
                    "Connection Terminated",
                    f"Your therapeutic relationship with {therapist.name} "
                    "has been terminated",
                    data={
                        "connection_id": connection.id,
                        "therapist_id": therapist.id,
                        "terminated_by": actor_name,
                    },
                    action_url="/connections",
                )
            )
        if connection.client_type == "child" and client.guardian_id is not None:
            guardian = await self.db.get(User, client.guardian_id)
            if guardian and guardian.id != actor_id:
                staged.append(
                    self.notifications.stage(
                        guardian.id,
                        TYPE_CONNECTION_TERMINATED,
                        "Child Connection Terminated",
                        "The therapeutic relationship between your child "
                        f"{client.name} and therapist {therapist.name} "
                        "has been terminated",
                        data={
                            "connection_id": connection.id,
                            "child_id": client.id,
                            "therapist_id": therapist.id,
                            "terminated_by": actor_name,
                        },
                        action_url="/connections",
                    )
                )
        return staged

    async def _broadcast(self, connection, old_status, new_status, changed_by) -> bool:
        return await self.broadcaster.dispatch(
            ConnectionStatusChanged(
                ConnectionSnapshot.model_validate(connection),
                old_status,
                new_status,
                UserRef.model_validate(changed_by) if changed_by else None,
            )
        )

    async def list_for_user(self, user_id: int) -> list[TherapistClientConnection]:
        result = await self.db.execute(
            select(TherapistClientConnection)
            .where(
                (TherapistClientConnection.therapist_id == user_id)
                | (TherapistClientConnection.client_id == user_id)
            )
            .options(
                selectinload(TherapistClientConnection.therapist),
                selectinload(TherapistClientConnection.client),
            )
            .order_by(TherapistClientConnection.id)
        )
        return list(result.scalars().all())
