"""Repository for UserInvitation entity."""

from collections.abc import Sequence
from typing import Any, cast
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.engine import CursorResult
from sqlmodel import select, update

from src.onboarding.models import OPEN_INVITATION_STATUSES, UserInvitation
from src.onboarding.repositories.base import BaseRepository


class InvitationRepository(BaseRepository[UserInvitation]):
    model = UserInvitation

    async def get_by_token_hash(self, token_hash: str) -> UserInvitation | None:
        """Get an invitation by token hash, whatever its status."""
        result = await self.session.execute(
            select(UserInvitation).where(UserInvitation.token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    async def get_open_for_user(self, user_id: UUID) -> UserInvitation | None:
        """Get the user's non-terminal invitation (pending, sent or failed), if any."""
        result = await self.session.execute(
            select(UserInvitation).where(
                UserInvitation.user_id == user_id,
                UserInvitation.status.in_(OPEN_INVITATION_STATUSES),  # type: ignore[attr-defined]
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: UUID) -> list[UserInvitation]:
        result = await self.session.execute(
            select(UserInvitation)
            .where(UserInvitation.user_id == user_id)
            .order_by(UserInvitation.created_at.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_paginated(
        self, status: str | None, cursor: str | None, limit: int
    ) -> tuple[list[UserInvitation], str | None, bool]:
        """List invitations newest first, optionally filtered by stored status."""
        query = select(UserInvitation)
        if status:
            query = query.where(UserInvitation.status == status)
        return await self.paginate(query, cursor, limit, UserInvitation.created_at)

    async def transition_status(
        self,
        invitation_id: UUID,
        from_statuses: Sequence[str],
        to_status: str,
        **values: Any,
    ) -> bool:
        """Conditionally update an invitation's status.

        Returns False when the stored status was not one of ``from_statuses``,
        which is how a second concurrent acceptance loses.
        """
        stmt = (
            update(UserInvitation)
            .where(UserInvitation.id == invitation_id)  # type: ignore[arg-type]
            .where(UserInvitation.status.in_(from_statuses))  # type: ignore[attr-defined]
            .values(status=to_status, **values)
        )
        result = await self.session.execute(stmt)
        return cast(CursorResult[Any], result).rowcount == 1

    async def delete_for_user(self, user_id: UUID) -> int:
        result = await self.session.execute(
            delete(UserInvitation).where(UserInvitation.user_id == user_id)  # type: ignore[arg-type]
        )
        return cast(CursorResult[Any], result).rowcount or 0
