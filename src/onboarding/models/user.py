"""User account model."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from src.onboarding.models.base import utc_now
from src.onboarding.models.enums import UserRole, UserStatus


class User(SQLModel, table=True):
    """One real person's account. Email is stored lowercased and is globally unique."""

    __tablename__ = "users"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True)
    first_name: str = Field(max_length=100)
    last_name: str = Field(max_length=100)
    full_name: str = Field(max_length=200)
    username: str = Field(max_length=100, unique=True, index=True)
    role: str = Field(default=UserRole.USER.value, max_length=20)
    status: str = Field(default=UserStatus.INVITED.value, max_length=20, index=True)
    # Populated lazily on first successful CRM write or webhook correlation
    gohighlevel_contact_id: str | None = Field(default=None, max_length=100, unique=True)
    password_hash: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    profile_picture_url: str | None = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    activated_at: datetime | None = Field(default=None)
