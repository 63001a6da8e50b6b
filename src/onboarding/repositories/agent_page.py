"""Repository for AgentPage entity."""

from typing import Any, cast
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.engine import CursorResult
from sqlmodel import select

from src.onboarding.models import AgentPage
from src.onboarding.repositories.base import BaseRepository


class AgentPageRepository(BaseRepository[AgentPage]):
    model = AgentPage

    async def get_by_user(self, user_id: UUID) -> AgentPage | None:
        result = await self.session.execute(select(AgentPage).where(AgentPage.user_id == user_id))
        return result.scalar_one_or_none()

    async def slugs_with_prefix(self, base_slug: str) -> set[str]:
        """Return existing slugs equal to ``base_slug`` or ``base_slug-<n>``."""
        result = await self.session.execute(
            select(AgentPage.slug).where(
                AgentPage.slug.startswith(base_slug)  # type: ignore[attr-defined]
            )
        )
        return set(result.scalars().all())

    async def delete_for_user(self, user_id: UUID) -> int:
        result = await self.session.execute(
            delete(AgentPage).where(AgentPage.user_id == user_id)  # type: ignore[arg-type]
        )
        return cast(CursorResult[Any], result).rowcount or 0
