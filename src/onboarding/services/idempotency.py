"""Idempotency key resolution.

Before any mutation, an incoming trigger is mapped to a stable key and to the
state of the account it refers to. Re-delivered webhooks and repeated admin
calls then land on the same user instead of creating a second one.
"""

from dataclasses import dataclass
from enum import Enum

from src.onboarding.core.exceptions import Invalid
from src.onboarding.models import User, UserInvitation, UserStatus
from src.onboarding.repositories import InvitationRepository, UserRepository


class ResolutionState(str, Enum):
    ABSENT = "absent"
    INVITED = "invited"
    ACTIVE = "active"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class Resolution:
    key: str
    state: ResolutionState
    user: User | None = None
    open_invitation: UserInvitation | None = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def idempotency_key(email: str | None = None, contact_id: str | None = None) -> str:
    """Derive the dedup key for a trigger: lowercased email, else CRM contact id.

    Raises:
        Invalid: If neither identifier is present
    """
    if email and email.strip():
        return f"email:{normalize_email(email)}"
    if contact_id and contact_id.strip():
        return f"crm:{contact_id.strip()}"
    raise Invalid("An email or CRM contact id is required")


class IdempotencyResolver:
    """Looks up the account a trigger refers to, by email first, then CRM contact id."""

    def __init__(self, user_repo: UserRepository, invitation_repo: InvitationRepository):
        self.user_repo = user_repo
        self.invitation_repo = invitation_repo

    async def resolve(self, email: str | None = None, contact_id: str | None = None) -> Resolution:
        key = idempotency_key(email, contact_id)

        user = None
        if email:
            user = await self.user_repo.get_by_email(email)
        if user is None and contact_id:
            user = await self.user_repo.get_by_contact_id(contact_id)
        if user is None:
            return Resolution(key=key, state=ResolutionState.ABSENT)

        open_invitation = None
        if user.status == UserStatus.INVITED.value:
            open_invitation = await self.invitation_repo.get_open_for_user(user.id)
        return Resolution(
            key=key,
            state=ResolutionState(user.status),
            user=user,
            open_invitation=open_invitation,
        )
