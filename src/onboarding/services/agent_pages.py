"""Agent page provisioning for active users."""

import re

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.onboarding.core.exceptions import Conflict, Unavailable
from src.onboarding.core.logging import get_logger
from src.onboarding.models import AgentPage, User
from src.onboarding.repositories import AgentPageRepository

logger = get_logger(__name__)

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(*parts: str | None) -> str:
    text = "-".join(p for p in parts if p)
    return _NON_SLUG_CHARS.sub("-", text.lower()).strip("-")


def next_free_slug(base: str, taken: set[str]) -> str:
    """``base`` if free, otherwise the first free ``base-2``, ``base-3``, ..."""
    if base not in taken:
        return base
    counter = 2
    while f"{base}-{counter}" in taken:
        counter += 1
    return f"{base}-{counter}"


class AgentPageService:
    def __init__(self, agent_page_repo: AgentPageRepository, session: AsyncSession):
        self.agent_page_repo = agent_page_repo
        self.session = session

    async def ensure_for_user(self, user: User) -> tuple[AgentPage, bool]:
        """Return the user's agent page, creating it if missing.

        Returns:
            Tuple of (page, created)
        """
        existing = await self.agent_page_repo.get_by_user(user.id)
        if existing:
            return existing, False

        base = slugify(user.first_name, user.last_name) or slugify(user.username) or "agent"
        slug = next_free_slug(base, await self.agent_page_repo.slugs_with_prefix(base))
        page = AgentPage(user_id=user.id, slug=slug, display_name=user.full_name)
        try:
            self.agent_page_repo.add(page)
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            # Another handler created it concurrently
            existing = await self.agent_page_repo.get_by_user(user.id)
            if existing:
                return existing, False
            raise Conflict("Agent page slug is already taken") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise Unavailable("Could not create agent page") from e

        logger.info("Agent page created", user_id=str(user.id), slug=slug)
        return page, True
