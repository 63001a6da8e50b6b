"""Repository for WebhookEvent entity."""

from sqlmodel import select

from src.onboarding.models import WebhookEvent
from src.onboarding.repositories.base import BaseRepository


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    model = WebhookEvent

    async def list_for_email(self, email: str, limit: int = 20) -> list[WebhookEvent]:
        result = await self.session.execute(
            select(WebhookEvent)
            .where(WebhookEvent.email == email.strip().lower())
            .order_by(WebhookEvent.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
