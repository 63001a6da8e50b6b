"""User request/response schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

from src.onboarding.schemas.invitation import InvitationRead
from src.onboarding.schemas.status import CleanupStatusRead, CrmStatusRead, EmailStatusRead


class UserCreateRequest(BaseModel):
    """Admin invite body.

    Names may be given as ``first_name`` + ``last_name`` (both required
    together), or as a single ``full_name`` / ``name`` that is split on the
    first space.
    """

    email: EmailStr
    first_name: str | None = Field(
        None, max_length=100, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: str | None = Field(
        None, max_length=100, validation_alias=AliasChoices("last_name", "lastName")
    )
    full_name: str | None = Field(
        None, max_length=200, validation_alias=AliasChoices("full_name", "fullName")
    )
    name: str | None = Field(None, max_length=200)
    phone: str | None = Field(None, max_length=50)
    role: Literal["admin", "user"] = "user"

    @model_validator(mode="after")
    def require_name(self) -> "UserCreateRequest":
        if bool((self.first_name or "").strip()) != bool((self.last_name or "").strip()):
            raise ValueError("first_name and last_name must be provided together")
        if not self.resolved_names()[0]:
            raise ValueError("Provide first_name and last_name, full_name, or name")
        return self

    def resolved_names(self) -> tuple[str, str, str]:
        """(first, last, full) with surrounding whitespace removed."""
        first = (self.first_name or "").strip()
        last = (self.last_name or "").strip()
        if first:
            full = (self.full_name or self.name or f"{first} {last}").strip()
            return first, last, full
        full = (self.full_name or self.name or "").strip()
        first, _, last = full.partition(" ")
        return first, last.strip(), full


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: str
    last_name: str
    full_name: str
    username: str
    role: str
    status: str
    gohighlevel_contact_id: str | None = None
    created_at: datetime
    activated_at: datetime | None = None


class UserInviteResponse(UserRead):
    """Account created. ``emailStatus`` and ``crmStatus`` may report failures."""

    invitation: InvitationRead
    email_status: EmailStatusRead = Field(serialization_alias="emailStatus")
    crm_status: CrmStatusRead = Field(serialization_alias="crmStatus")


class UserDetailResponse(UserRead):
    invitations: list[InvitationRead]


class DeletionCleanupRead(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    profile_image: CleanupStatusRead
    crm_contact: CrmStatusRead


class UserDeleteResponse(BaseModel):
    """Deletion is committed; cleanup reports external resources that may be left behind."""

    id: UUID
    email: str
    deleted: bool = True
    cleanup: DeletionCleanupRead
