"""User service — lookup and creation of platform users.

Learn: Other services resolve actors (senders, resolvers, admins adding
members) through here so "user not found" is raised one way everywhere.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from safespace.db.models import ROLES, User


class UserNotFoundError(Exception):
    """Raised when a referenced user does not exist."""


class DuplicateEmailError(Exception):
    """Raised when creating a user with an email that is already taken."""


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def get_optional(self, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        return await self.get(user_id)

    async def create(
        self,
        *,
        name: str,
        email: str,
        roles: list[str],
        guardian_id: Optional[int] = None,
        status: str = "active",
    ) -> User:
        unknown = set(roles) - set(ROLES)
        if unknown:
            raise ValueError(f"Unknown roles: {sorted(unknown)}")
        if guardian_id is not None:
            await self.get(guardian_id)
        taken = await self.db.execute(select(User.id).where(User.email == email))
        if taken.first() is not None:
            raise DuplicateEmailError(f"Email {email} is already registered")

        user = User(
            name=name,
            email=email,
            roles=list(roles),
            guardian_id=guardian_id,
            status=status,
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def active_admins(self) -> list[User]:
        # roles is a JSON list; filtered in Python to stay portable across dialects
        result = await self.db.execute(
            select(User).where(User.status == "active").order_by(User.id)
        )
        return [u for u in result.scalars().all() if u.has_role("admin")]
