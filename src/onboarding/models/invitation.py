"""Invitation model."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from src.onboarding.models.base import utc_now
from src.onboarding.models.enums import (
    OPEN_INVITATION_STATUSES,
    InvitationSource,
    InvitationStatus,
)

_OPEN_STATUS_CLAUSE = text(
    "status IN (" + ", ".join(f"'{status}'" for status in OPEN_INVITATION_STATUSES) + ")"
)


class UserInvitation(SQLModel, table=True):
    """A time-bounded, single-use offer to activate a User.

    Only the SHA256 of the token is stored; the plaintext exists in the email link alone.
    """

    __tablename__ = "user_invitations"
    __table_args__ = (
        # At most one non-terminal invitation per user
        Index(
            "uq_user_invitations_open_per_user",
            "user_id",
            unique=True,
            postgresql_where=_OPEN_STATUS_CLAUSE,
            sqlite_where=_OPEN_STATUS_CLAUSE,
        ),
        Index("ix_user_invitations_status_expires", "status", "expires_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    email: str = Field(max_length=255, index=True)
    token_hash: str = Field(max_length=64, unique=True)
    status: str = Field(default=InvitationStatus.PENDING.value, max_length=20)
    source: str = Field(default=InvitationSource.ADMIN.value, max_length=20)
    invited_by: str | None = Field(default=None, max_length=100)
    expires_at: datetime

    # Email delivery bookkeeping
    email_message_id: str | None = Field(default=None, max_length=255)
    email_provider: str | None = Field(default=None, max_length=50)
    email_attempts: int = Field(default=0)
    email_error: str | None = Field(default=None, max_length=1000)
    email_sent_at: datetime | None = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    accepted_at: datetime | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) > self.expires_at

    def effective_status(self, now: datetime | None = None) -> InvitationStatus:
        """Stored status, or ``expired`` for a non-terminal invitation past its deadline."""
        if self.status in OPEN_INVITATION_STATUSES and self.is_expired(now):
            return InvitationStatus.EXPIRED
        return InvitationStatus(self.status)
