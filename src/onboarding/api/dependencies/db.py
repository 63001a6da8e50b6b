"""Database session dependencies."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.onboarding.core.db import get_session
from src.onboarding.services.onboarding_service import SessionScope


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """Get the request's business-transaction session."""
    async with get_session() as session:
        yield session


def get_session_scope() -> SessionScope:
    """Factory for sessions that outlive or stand apart from the request session.

    Used for audit and webhook logging (isolated commits) and for background tasks.
    """
    return get_session


DBSession = Annotated[AsyncSession, Depends(get_db_session)]
SessionScopeDep = Annotated[SessionScope, Depends(get_session_scope)]
