"""Test helper functions for common data creation patterns."""

import json
from typing import Any

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel, select

from src.onboarding.models import User, UserInvitation
from tests.factories import UserFactory, UserInvitationFactory


async def create_invited_user(
    session: AsyncSession,
    **user_kwargs: Any,
) -> tuple[User, UserInvitation, str]:
    """Create an invited user with an open invitation.

    Args:
        session: Database session
        **user_kwargs: Additional args passed to UserFactory

    Returns:
        Tuple of (user, invitation, plaintext token)
    """
    invitation_kwargs = user_kwargs.pop("invitation", {})
    user = UserFactory.build(**user_kwargs)
    session.add(user)
    await session.flush()

    invitation, token = UserInvitationFactory.with_token(
        user_id=user.id, email=user.email, **invitation_kwargs
    )
    session.add(invitation)
    await session.commit()
    return user, invitation, token


async def create_active_user(session: AsyncSession, **user_kwargs: Any) -> User:
    user = UserFactory.active(**user_kwargs)
    session.add(user)
    await session.commit()
    return user


async def count_rows(session: AsyncSession, model: type[SQLModel], **filters: Any) -> int:
    query = select(func.count()).select_from(model)
    for name, value in filters.items():
        query = query.where(getattr(model, name) == value)
    result = await session.execute(query)
    return result.scalar_one()


def webhook_body(**fields: Any) -> bytes:
    """Serialize a webhook payload exactly as it will be signed and sent."""
    return json.dumps(fields).encode()
