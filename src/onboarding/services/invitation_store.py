"""Invitation store - sole writer of users and user_invitations.

Every status change is a conditional UPDATE on the expected current status,
and uniqueness (email, token, one open invitation per user) is enforced by
database constraints. Concurrent writers therefore lose with Conflict or
AlreadyUsed instead of creating duplicates; no application-level locks are held
across the slow email and CRM calls.
"""

import contextlib
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.onboarding.core.config import get_settings
from src.onboarding.core.exceptions import (
    AlreadyUsed,
    Conflict,
    Expired,
    Invalid,
    NotFound,
    Unavailable,
)
from src.onboarding.core.logging import get_logger, mask_email
from src.onboarding.core.notifications.email import EmailResult
from src.onboarding.core.security import generate_invitation_token, hash_token
from src.onboarding.models import (
    OPEN_INVITATION_STATUSES,
    InvitationSource,
    InvitationStatus,
    User,
    UserInvitation,
    UserRole,
    UserStatus,
)
from src.onboarding.models.base import utc_now
from src.onboarding.repositories import (
    AgentPageRepository,
    InvitationRepository,
    UserRepository,
)

logger = get_logger(__name__)

ACCEPTABLE_STATUSES = (InvitationStatus.PENDING.value, InvitationStatus.SENT.value)
RESENDABLE_STATUSES = (InvitationStatus.PENDING.value, InvitationStatus.FAILED.value)
# Inserts that lose a default-username race are retried with the next free name
USERNAME_INSERT_ATTEMPTS = 3


@dataclass
class IssuedInvitation:
    """A freshly issued (or re-issued) invitation with its plaintext token.

    The token is never persisted; this is the only place it exists besides the email link.
    """

    user: User
    invitation: UserInvitation
    token: str


def username_from_email(email: str) -> str:
    """Default username: the email's local part with non-alphanumerics removed."""
    local = email.split("@", 1)[0].lower()
    return "".join(ch for ch in local if ch.isalnum()) or "user"


def next_free_username(base: str, taken: set[str]) -> str:
    """``base`` if free, otherwise the first free ``base2``, ``base3``, ..."""
    if base not in taken:
        return base
    counter = 2
    while f"{base}{counter}" in taken:
        counter += 1
    return f"{base}{counter}"


class InvitationStore:
    """Creates users with invitations and drives both through their state machines."""

    def __init__(
        self,
        user_repo: UserRepository,
        invitation_repo: InvitationRepository,
        agent_page_repo: AgentPageRepository,
        session: AsyncSession,
    ):
        self.user_repo = user_repo
        self.invitation_repo = invitation_repo
        self.agent_page_repo = agent_page_repo
        self.session = session

    # --- Creation ---

    async def create_user_with_invitation(
        self,
        email: str,
        first_name: str,
        last_name: str,
        role: UserRole = UserRole.USER,
        *,
        full_name: str | None = None,
        phone: str | None = None,
        contact_id: str | None = None,
        expires_in: timedelta | None = None,
        source: InvitationSource = InvitationSource.ADMIN,
        invited_by: str | None = None,
    ) -> IssuedInvitation:
        """Create an invited user and their pending invitation.

        Both rows are written in one transaction. If the invitation insert
        fails after the user insert, the user is removed before the error
        propagates, so callers see either both rows or neither.

        Raises:
            Conflict: If the email (or CRM contact id) already belongs to a user
            Unavailable: If the database write fails
        """
        settings = get_settings()
        email = email.strip().lower()
        if await self.user_repo.get_by_email(email):
            raise Conflict("A user with this email already exists")

        now = utc_now()
        base_username = username_from_email(email)
        for _ in range(USERNAME_INSERT_ATTEMPTS):
            taken = await self.user_repo.usernames_with_prefix(base_username)
            user = User(
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                full_name=(full_name or f"{first_name} {last_name}").strip(),
                username=next_free_username(base_username, taken),
                role=role.value,
                status=UserStatus.INVITED.value,
                phone=phone,
                gohighlevel_contact_id=contact_id,
                created_at=now,
                updated_at=now,
            )
            try:
                self.user_repo.add(user)
                await self.session.flush()
            except IntegrityError as e:
                await self.session.rollback()
                if await self._identity_taken(email, contact_id):
                    raise Conflict("A user with this email or CRM contact already exists") from e
                logger.info("Default username claimed concurrently", username=user.username)
                continue
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error("User insert failed", email=mask_email(email), error=str(e))
                raise Unavailable("Could not create user") from e
            break
        else:
            raise Conflict("Could not allocate a unique username")

        token = generate_invitation_token()
        invitation = UserInvitation(
            user_id=user.id,
            email=email,
            token_hash=hash_token(token),
            status=InvitationStatus.PENDING.value,
            source=source.value,
            invited_by=invited_by,
            expires_at=now + (expires_in or timedelta(hours=settings.invite_expire_hours)),
            created_at=now,
        )
        try:
            self.invitation_repo.add(invitation)
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._remove_orphaned_user(user.id, email)
            if isinstance(e, IntegrityError):
                raise Conflict("Invitation could not be issued") from e
            logger.error("Invitation insert failed", email=mask_email(email), error=str(e))
            raise Unavailable("Could not create invitation") from e

        logger.info(
            "User invited",
            user_id=str(user.id),
            invitation_id=str(invitation.id),
            source=source.value,
            expires_at=invitation.expires_at.isoformat(),
        )
        return IssuedInvitation(user=user, invitation=invitation, token=token)

    async def _identity_taken(self, email: str, contact_id: str | None) -> bool:
        if await self.user_repo.get_by_email(email):
            return True
        return bool(contact_id and await self.user_repo.get_by_contact_id(contact_id))

    async def _remove_orphaned_user(self, user_id: UUID, email: str) -> None:
        """Compensate a failed invitation insert by removing the user row.

        Best-effort: a failure here is logged and not retried. Re-running the
        invite surfaces the leftover row as a Conflict.
        """
        try:
            # Discards the uncommitted insert; the delete covers a row that was already committed
            await self.session.rollback()
            removed = await self.user_repo.delete_by_id(user_id)
            await self.session.commit()
            logger.warning(
                "Removed user after invitation insert failure",
                user_id=str(user_id),
                committed_row_removed=bool(removed),
            )
        except SQLAlchemyError as e:
            logger.error(
                "Compensating user delete failed",
                user_id=str(user_id),
                email=mask_email(email),
                error=str(e),
            )
            with contextlib.suppress(SQLAlchemyError):
                await self.session.rollback()

    # --- Email bookkeeping ---

    async def mark_email_outcome(self, token: str, outcome: EmailResult) -> UserInvitation:
        """Persist an email dispatch outcome on the invitation.

        Success moves the invitation to ``sent``; failure marks it ``failed``
        with the last error. Attempts accumulate across sends. Accepted or
        cancelled invitations are left untouched.

        Raises:
            NotFound: If the token matches no invitation
            Unavailable: If the update cannot be written
        """
        invitation = await self.invitation_repo.get_by_token_hash(hash_token(token))
        if invitation is None:
            raise NotFound("Invitation not found")

        if invitation.status not in OPEN_INVITATION_STATUSES:
            logger.info(
                "Email outcome ignored for closed invitation",
                invitation_id=str(invitation.id),
                status=invitation.status,
            )
            return invitation

        values: dict[str, object] = {
            "email_attempts": invitation.email_attempts + outcome.attempts,
            "email_provider": outcome.service_provider,
        }
        if outcome.success:
            target = InvitationStatus.SENT.value
            values.update(
                email_message_id=outcome.message_id,
                email_error=None,
                email_sent_at=utc_now(),
            )
        else:
            target = InvitationStatus.FAILED.value
            values["email_error"] = (outcome.error or "Unknown email error")[:1000]

        try:
            await self.invitation_repo.transition_status(
                invitation.id, OPEN_INVITATION_STATUSES, target, **values
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise Unavailable("Could not record email outcome") from e

        await self.session.refresh(invitation)
        return invitation

    # --- Acceptance ---

    async def accept(
        self,
        token: str,
        username: str,
        password_hash: str,
        full_name: str | None = None,
    ) -> User:
        """Redeem an invitation token and activate its user.

        Invitation goes to ``accepted`` first, then the user to ``active``,
        within one transaction. Each write is conditional on the expected
        status, so a second call with the same token fails with AlreadyUsed.

        Raises:
            NotFound: Unknown token
            Expired: ``now > expires_at``, whatever the stored status
            AlreadyUsed: Invitation already accepted
            Invalid: Invitation cancelled or failed, or user not awaiting activation
            Conflict: Username held by another user
        """
        invitation = await self.validate_token(token)

        user = await self.user_repo.get_by_id(invitation.user_id)
        if user is None:
            raise NotFound("Invitation user not found")
        if user.status != UserStatus.INVITED.value:
            raise Invalid("User account is not awaiting activation")
        if await self.user_repo.username_taken(username, exclude_user_id=user.id):
            raise Conflict("Username is already taken")

        now = utc_now()
        user_values: dict[str, object] = {
            "username": username,
            "password_hash": password_hash,
            "activated_at": now,
        }
        if full_name:
            first, _, last = full_name.strip().partition(" ")
            user_values.update(full_name=full_name.strip(), first_name=first, last_name=last)

        try:
            accepted = await self.invitation_repo.transition_status(
                invitation.id,
                ACCEPTABLE_STATUSES,
                InvitationStatus.ACCEPTED.value,
                accepted_at=now,
            )
            if not accepted:
                await self.session.rollback()
                raise AlreadyUsed("Invitation has already been used")
            activated = await self.user_repo.transition_status(
                user.id, (UserStatus.INVITED.value,), UserStatus.ACTIVE.value, **user_values
            )
            if not activated:
                await self.session.rollback()
                raise Invalid("User account is not awaiting activation")
            await self.session.commit()
        except IntegrityError as e:
            # Unique username index; a concurrent acceptance claimed it after the check above
            await self.session.rollback()
            raise Conflict("Username is already taken") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise Unavailable("Could not activate account") from e

        await self.session.refresh(user)
        logger.info("Invitation accepted", user_id=str(user.id), invitation_id=str(invitation.id))
        return user

    async def validate_token(self, token: str) -> UserInvitation:
        """Return the invitation behind ``token`` if it can still be accepted.

        Applies the same checks, in the same order, as ``accept`` without writing.
        """
        invitation = await self.invitation_repo.get_by_token_hash(hash_token(token))
        if invitation is None:
            raise NotFound("Invalid invitation token")
        if invitation.is_expired():
            raise Expired("Invitation has expired")
        if invitation.status == InvitationStatus.ACCEPTED.value:
            raise AlreadyUsed("Invitation has already been used")
        if invitation.status not in ACCEPTABLE_STATUSES:
            raise Invalid(f"Invitation is {invitation.status}")
        return invitation

    # --- Admin transitions ---

    async def cancel(self, invitation_id: UUID) -> UserInvitation:
        """Cancel an open invitation (pending, sent or failed)."""
        invitation = await self.get_invitation(invitation_id)
        if invitation.is_expired() and invitation.status in OPEN_INVITATION_STATUSES:
            raise Expired("Invitation has already expired")
        if invitation.status not in OPEN_INVITATION_STATUSES:
            raise Invalid(f"Cannot cancel an invitation that is {invitation.status}")

        try:
            cancelled = await self.invitation_repo.transition_status(
                invitation.id,
                OPEN_INVITATION_STATUSES,
                InvitationStatus.CANCELLED.value,
                cancelled_at=utc_now(),
            )
            if not cancelled:
                await self.session.rollback()
                raise Invalid("Invitation changed state, reload and retry")
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise Unavailable("Could not cancel invitation") from e

        await self.session.refresh(invitation)
        logger.info("Invitation cancelled", invitation_id=str(invitation.id))
        return invitation

    async def reissue_for_resend(self, invitation_id: UUID) -> IssuedInvitation:
        """Rotate the token of a pending or failed invitation ahead of a resend.

        The expiry is kept. The previous link stops working because only the
        hash of the new token is stored.

        Raises:
            NotFound: Unknown invitation
            Invalid: Invitation not pending or failed
            Expired: Invitation past its deadline
        """
        invitation = await self.get_invitation(invitation_id)
        if invitation.status not in RESENDABLE_STATUSES:
            raise Invalid(f"Cannot resend an invitation that is {invitation.status}")
        if invitation.is_expired():
            raise Expired("Invitation has expired, issue a new one")

        user = await self.user_repo.get_by_id(invitation.user_id)
        if user is None:
            raise NotFound("Invitation user not found")

        token = generate_invitation_token()
        try:
            rotated = await self.invitation_repo.transition_status(
                invitation.id,
                (invitation.status,),
                invitation.status,
                token_hash=hash_token(token),
            )
            if not rotated:
                await self.session.rollback()
                raise Invalid("Invitation changed state, reload and retry")
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise Unavailable("Could not reissue invitation") from e

        await self.session.refresh(invitation)
        return IssuedInvitation(user=user, invitation=invitation, token=token)

    async def suspend_user(self, user_id: UUID) -> bool:
        """Move an active user to suspended. Returns False if the user was not active."""
        try:
            suspended = await self.user_repo.transition_status(
                user_id, (UserStatus.ACTIVE.value,), UserStatus.SUSPENDED.value
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise Unavailable("Could not suspend user") from e
        if suspended:
            logger.info("User suspended", user_id=str(user_id))
        return suspended

    async def link_contact(self, user: User, contact_id: str) -> bool:
        """Record the CRM contact id on a user that has none yet.

        Never overwrites a different existing id. Returns True if the link was written.

        Raises:
            Conflict: The contact id already belongs to another user
            Unavailable: The update cannot be written
        """
        if user.gohighlevel_contact_id == contact_id:
            return False
        if user.gohighlevel_contact_id:
            logger.warning(
                "User already linked to a different CRM contact",
                user_id=str(user.id),
                existing_contact_id=user.gohighlevel_contact_id,
                contact_id=contact_id,
            )
            return False
        owner = await self.user_repo.get_by_contact_id(contact_id)
        if owner is not None and owner.id != user.id:
            logger.warning(
                "CRM contact already linked to another user",
                user_id=str(user.id),
                owner_id=str(owner.id),
                contact_id=contact_id,
            )
            raise Conflict("CRM contact is already linked to another user")

        try:
            linked = await self.user_repo.link_contact_id(user.id, contact_id)
            await self.session.commit()
        except IntegrityError as e:
            # Another user claimed the contact id after the check above
            await self._rollback_and_reload()
            raise Conflict("CRM contact is already linked to another user") from e
        except SQLAlchemyError as e:
            await self._rollback_and_reload()
            raise Unavailable("Could not link CRM contact") from e
        await self.session.refresh(user)
        return linked

    async def _rollback_and_reload(self) -> None:
        """Roll back, then reload every instance the session holds (rollback expires them)."""
        await self.session.rollback()
        for instance in list(self.session.identity_map.values()):
            await self.session.refresh(instance)

    async def delete_user(self, user_id: UUID) -> User:
        """Delete a user and its dependents in foreign-key order, in one transaction.

        Returns the deleted user's last state so callers can clean up external resources.
        """
        user = await self.get_user(user_id)
        try:
            invitations = await self.invitation_repo.delete_for_user(user.id)
            pages = await self.agent_page_repo.delete_for_user(user.id)
            await self.user_repo.delete_by_id(user.id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise Unavailable("Could not delete user") from e

        logger.info(
            "User deleted",
            user_id=str(user.id),
            invitations_deleted=invitations,
            agent_pages_deleted=pages,
        )
        return user

    # --- Reads ---

    async def get_user(self, user_id: UUID) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    async def get_invitation(self, invitation_id: UUID) -> UserInvitation:
        invitation = await self.invitation_repo.get_by_id(invitation_id)
        if invitation is None:
            raise NotFound("Invitation not found")
        return invitation

    async def list_user_invitations(self, user_id: UUID) -> list[UserInvitation]:
        return await self.invitation_repo.list_for_user(user_id)

    async def list_invitations(
        self, status: str | None = None, cursor: str | None = None, limit: int = 50
    ) -> tuple[list[UserInvitation], str | None, bool]:
        return await self.invitation_repo.list_paginated(status, cursor, limit)
