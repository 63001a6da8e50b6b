"""Repository for User entity."""

from collections.abc import Sequence
from typing import Any, cast
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.engine import CursorResult
from sqlmodel import select, update

from src.onboarding.models import User
from src.onboarding.models.base import utc_now
from src.onboarding.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    model = User

    async def get_by_email(self, email: str) -> User | None:
        """Get user by email address (case-insensitive; emails are stored lowercased)."""
        result = await self.session.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_by_contact_id(self, contact_id: str) -> User | None:
        """Get user by the CRM contact id it was correlated with."""
        result = await self.session.execute(
            select(User).where(User.gohighlevel_contact_id == contact_id)
        )
        return result.scalar_one_or_none()

    async def username_taken(self, username: str, exclude_user_id: UUID) -> bool:
        """Check whether another user already holds ``username``."""
        result = await self.session.execute(
            select(User.id).where(User.username == username, User.id != exclude_user_id)
        )
        return result.first() is not None

    async def usernames_with_prefix(self, prefix: str) -> set[str]:
        """Usernames starting with ``prefix``, for picking a free default."""
        column = User.username
        result = await self.session.execute(
            select(column).where(column.startswith(prefix))  # type: ignore[attr-defined]
        )
        return set(result.scalars().all())

    async def link_contact_id(self, user_id: UUID, contact_id: str) -> bool:
        """Set the CRM contact id on a user that has none. Returns False if no row matched."""
        stmt = (
            update(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .where(User.gohighlevel_contact_id.is_(None))  # type: ignore[union-attr]
            .values(gohighlevel_contact_id=contact_id, updated_at=utc_now())
        )
        result = await self.session.execute(stmt)
        return cast(CursorResult[Any], result).rowcount == 1

    async def transition_status(
        self, user_id: UUID, from_statuses: Sequence[str], to_status: str, **values: Any
    ) -> bool:
        """Conditionally move a user between statuses.

        The WHERE clause on the current status makes the transition safe
        against concurrent writers. Returns False if no row matched.
        """
        stmt = (
            update(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .where(User.status.in_(from_statuses))  # type: ignore[attr-defined]
            .values(status=to_status, updated_at=utc_now(), **values)
        )
        result = await self.session.execute(stmt)
        return cast(CursorResult[Any], result).rowcount == 1

    async def delete_by_id(self, user_id: UUID) -> int:
        """Delete a user row. Dependents must already be gone."""
        result = await self.session.execute(
            delete(User).where(User.id == user_id)  # type: ignore[arg-type]
        )
        return cast(CursorResult[Any], result).rowcount or 0
