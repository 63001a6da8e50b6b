"""Agent page model - public profile page provisioned for active agents."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from src.onboarding.models.base import utc_now


class AgentPage(SQLModel, table=True):
    __tablename__ = "agent_pages"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", unique=True, index=True)
    slug: str = Field(max_length=120, unique=True, index=True)
    display_name: str = Field(max_length=200)
    is_published: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
