"""Webhook response schema."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WebhookResponse(BaseModel):
    """Acknowledgement for a processed delivery, including no-ops."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    action: str
    outcome: str
    user_id: UUID | None = None
    invitation_id: UUID | None = None
    email_status: dict[str, Any] | None = None
    details: dict[str, Any] = Field(default_factory=dict)
