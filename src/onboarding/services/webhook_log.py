"""Delivery log for inbound CRM webhooks."""

import contextlib
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.onboarding.core.logging import get_logger
from src.onboarding.models import WebhookEvent
from src.onboarding.repositories import WebhookEventRepository

logger = get_logger(__name__)


class WebhookLogService:
    """Records every delivery, accepted or rejected. Fire-and-forget, isolated session."""

    def __init__(self, webhook_repo: WebhookEventRepository, session: AsyncSession):
        self.webhook_repo = webhook_repo
        self.session = session

    async def record(
        self,
        provider: str,
        outcome: str,
        *,
        event_type: str | None = None,
        contact_id: str | None = None,
        email: str | None = None,
        action: str | None = None,
        signature_valid: bool | None = None,
        payload: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> WebhookEvent | None:
        try:
            event = WebhookEvent(
                provider=provider,
                outcome=outcome,
                event_type=event_type,
                contact_id=contact_id,
                email=email.strip().lower() if email else None,
                action=action,
                signature_valid=signature_valid,
                payload=payload,
                error=error[:1000] if error else None,
            )
            self.webhook_repo.add(event)
            await self.session.commit()
            return event
        except Exception as e:
            logger.warning("Failed to record webhook event", provider=provider, error=str(e))
            with contextlib.suppress(Exception):
                await self.session.rollback()
            return None

    async def recent_for_email(self, email: str, limit: int = 20) -> list[WebhookEvent]:
        return await self.webhook_repo.list_for_email(email, limit)
