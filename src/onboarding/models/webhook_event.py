"""Inbound webhook delivery log."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from src.onboarding.models.base import JSONVariant, utc_now


class WebhookEvent(SQLModel, table=True):
    """One CRM webhook delivery and what the ingestor did with it.

    Kept for debugging misconfigured CRM workflows without log access.
    """

    __tablename__ = "webhook_events"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    provider: str = Field(max_length=50)
    event_type: str | None = Field(default=None, max_length=100)
    contact_id: str | None = Field(default=None, max_length=100, index=True)
    email: str | None = Field(default=None, max_length=255, index=True)
    action: str | None = Field(default=None, max_length=50)  # onboard, suspend, ignored
    outcome: str = Field(max_length=50)  # created, already_active, rejected, ...
    signature_valid: bool | None = Field(default=None)
    payload: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONVariant, nullable=True),
    )
    error: str | None = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utc_now, index=True)
