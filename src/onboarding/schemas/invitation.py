"""Invitation schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from src.onboarding.models import UserInvitation
from src.onboarding.schemas.status import EmailStatusRead


class InvitationRead(BaseModel):
    """Invitation as seen by admins. ``status`` is the effective status (may be ``expired``)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    email: str
    status: str
    source: str
    expires_at: datetime
    email_message_id: str | None = None
    email_provider: str | None = None
    email_attempts: int = 0
    email_error: str | None = None
    email_sent_at: datetime | None = None
    created_at: datetime
    accepted_at: datetime | None = None
    cancelled_at: datetime | None = None

    @classmethod
    def from_invitation(cls, invitation: UserInvitation) -> "InvitationRead":
        read = cls.model_validate(invitation)
        read.status = invitation.effective_status().value
        return read


class InvitationValidationResponse(BaseModel):
    """An acceptable token. Unknown, expired or used tokens are answered with an error."""

    valid: bool = True
    email: str
    status: str
    expires_at: datetime


class AcceptInvitationRequest(BaseModel):
    token: str = Field(min_length=1, max_length=200)
    username: str = Field(min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(min_length=8, max_length=128)
    full_name: str | None = Field(
        None, max_length=200, validation_alias=AliasChoices("full_name", "fullName")
    )


class AcceptedAccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    username: str
    full_name: str
    role: str
    status: str
    activated_at: datetime | None = None


class AcceptInvitationResponse(BaseModel):
    message: str = "Account activated"
    user: AcceptedAccountRead


class InvitationActionResponse(BaseModel):
    """Result of cancel/resend. ``emailStatus`` is only present for resends."""

    invitation: InvitationRead
    email_status: EmailStatusRead | None = Field(
        default=None, serialization_alias="emailStatus"
    )
