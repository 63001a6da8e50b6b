"""Onboarding orchestration - admin invites, CRM webhooks, acceptance, deletion.

Database writes through the invitation store must succeed or the operation
fails. Email and CRM calls return result objects; their failures are recorded
(on the invitation, in the audit log) and never abort the surrounding flow.
"""

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.onboarding.core.background import BackgroundRunner
from src.onboarding.core.config import Settings
from src.onboarding.core.exceptions import Conflict, Invalid, OnboardingError
from src.onboarding.core.logging import bind_webhook_context, get_logger, mask_email
from src.onboarding.core.metrics import WEBHOOK_EVENTS
from src.onboarding.core.notifications.email import EmailDispatcher, EmailResult
from src.onboarding.core.security import hash_password
from src.onboarding.crm.sync import CrmSync, CrmSyncResult
from src.onboarding.models import (
    AuditAction,
    AuditStatus,
    InvitationSource,
    User,
    UserInvitation,
    UserRole,
)
from src.onboarding.repositories import (
    AgentPageRepository,
    AuditLogRepository,
    InvitationRepository,
    UserRepository,
)
from src.onboarding.services.agent_pages import AgentPageService
from src.onboarding.services.audit_service import AuditService
from src.onboarding.services.idempotency import IdempotencyResolver, ResolutionState
from src.onboarding.services.invitation_store import InvitationStore, IssuedInvitation
from src.onboarding.services.profile_images import CleanupResult, ProfileImageStore
from src.onboarding.webhooks.extraction import ContactPayload
from src.onboarding.webhooks.ingestor import WebhookAction, WebhookDelivery

logger = get_logger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass
class InviteOutcome:
    user: User
    invitation: UserInvitation
    email: EmailResult
    crm: CrmSyncResult


@dataclass
class WebhookOutcome:
    """What a webhook delivery did. Always answered with 200."""

    action: WebhookAction
    outcome: str
    user_id: UUID | None = None
    invitation_id: UUID | None = None
    email: EmailResult | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeletionOutcome:
    user: User
    profile_image: CleanupResult
    crm: CrmSyncResult


class OnboardingService:
    """Coordinates the invitation store with email, CRM and audit side effects."""

    def __init__(
        self,
        store: InvitationStore,
        resolver: IdempotencyResolver,
        agent_pages: AgentPageService,
        email: EmailDispatcher,
        crm: CrmSync,
        audit: AuditService,
        profile_images: ProfileImageStore,
        runner: BackgroundRunner,
        settings: Settings,
        session_scope: SessionScope,
    ):
        self.store = store
        self.resolver = resolver
        self.agent_pages = agent_pages
        self.email = email
        self.crm = crm
        self.audit = audit
        self.profile_images = profile_images
        self.runner = runner
        self.settings = settings
        self.session_scope = session_scope

    # =========================================================================
    # Admin-initiated invite
    # =========================================================================

    async def invite_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        role: UserRole = UserRole.USER,
        *,
        full_name: str | None = None,
        phone: str | None = None,
        invited_by: str | None = None,
    ) -> InviteOutcome:
        """Create an invited user, send the activation email, sync the CRM contact.

        Raises:
            Conflict: Email already belongs to a user (including a concurrent insert)
            Unavailable: The user/invitation write failed
        """
        resolution = await self.resolver.resolve(email=email)
        if resolution.state is not ResolutionState.ABSENT:
            raise Conflict("A user with this email already exists")

        issued = await self.store.create_user_with_invitation(
            email,
            first_name,
            last_name,
            role,
            full_name=full_name,
            phone=phone,
            source=InvitationSource.ADMIN,
            invited_by=invited_by,
        )
        await self._audit_invite(issued)

        email_result, invitation = await self._dispatch_email(issued)

        # CRM is awaited here so the caller sees its status; a failure only degrades the response
        crm_result = await self.crm.sync_invitation_sent(issued.user, invitation)
        crm_result = await self._link_synced_contact(self.store, issued.user, crm_result)
        await self._record_crm_result(crm_result, issued.user)

        return InviteOutcome(
            user=issued.user, invitation=invitation, email=email_result, crm=crm_result
        )

    # =========================================================================
    # CRM webhooks
    # =========================================================================

    async def handle_webhook(self, delivery: WebhookDelivery) -> WebhookOutcome:
        bind_webhook_context(delivery.provider, delivery.contact.event_type)

        if delivery.action is WebhookAction.ONBOARD:
            outcome = await self.handle_onboard_webhook(delivery.contact, delivery.provider)
        elif delivery.action is WebhookAction.SUSPEND:
            outcome = await self.handle_suspend_webhook(delivery.contact)
        else:
            outcome = WebhookOutcome(
                action=WebhookAction.IGNORE,
                outcome="ignored",
                details={"tags": delivery.contact.tags},
            )

        WEBHOOK_EVENTS.labels(
            provider=delivery.provider, action=outcome.action.value, outcome=outcome.outcome
        ).inc()
        await self.audit.log_success(
            AuditAction.WEBHOOK_RECEIVED,
            "user" if outcome.user_id else "webhook",
            outcome.user_id or delivery.contact.contact_id,
            details={
                "provider": delivery.provider,
                "action": outcome.action.value,
                "outcome": outcome.outcome,
                "contactId": delivery.contact.contact_id,
                "tag": delivery.matched_tag,
                "eventType": delivery.contact.event_type,
                "signatureVerified": delivery.signature_verified,
            },
        )
        return outcome

    async def handle_onboard_webhook(
        self, contact: ContactPayload, provider: str = "gohighlevel"
    ) -> WebhookOutcome:
        """Onboard the contact behind a tag-added webhook.

        Absent users are invited; invited users are left alone (their
        invitation is already out); active users get their agent page
        ensured. Re-deliveries therefore never create a second account or
        send a second email.
        """
        action = WebhookAction.ONBOARD
        resolution = await self.resolver.resolve(contact.email, contact.contact_id)
        user = resolution.user

        if resolution.state is ResolutionState.ABSENT:
            email, first_name, last_name = contact.email, contact.first_name, contact.last_name
            if not (email and first_name and last_name):
                missing = contact.missing_required()
                raise Invalid(f"Missing required contact fields: {', '.join(missing)}")
            try:
                issued = await self.store.create_user_with_invitation(
                    email,
                    first_name,
                    last_name,
                    phone=contact.phone,
                    contact_id=contact.contact_id,
                    expires_in=timedelta(days=self.settings.webhook_invite_expire_days),
                    source=InvitationSource.WEBHOOK,
                    invited_by=f"webhook:{provider}",
                )
            except Conflict:
                # A concurrent delivery or admin invite inserted first
                logger.info(
                    "Webhook lost creation race, treating as duplicate",
                    email=mask_email(email),
                    contact_id=contact.contact_id,
                )
                return WebhookOutcome(action=action, outcome="duplicate")

            await self._audit_invite(issued)
            email_result, invitation = await self._dispatch_email(issued)
            if contact.contact_id:
                contact_id = contact.contact_id
                self.runner.submit(
                    "crm_webhook_note",
                    lambda: self.crm.note_webhook_onboarding(
                        contact_id, invitation, email_result.success
                    ),
                )
            return WebhookOutcome(
                action=action,
                outcome="created",
                user_id=issued.user.id,
                invitation_id=invitation.id,
                email=email_result,
            )

        if user is None:
            return WebhookOutcome(action=action, outcome="user_not_found")
        if contact.contact_id:
            await self._link_contact_quietly(user, contact.contact_id)

        if resolution.state is ResolutionState.INVITED:
            return WebhookOutcome(
                action=action,
                outcome="already_invited",
                user_id=user.id,
                invitation_id=resolution.open_invitation.id if resolution.open_invitation else None,
            )

        if resolution.state is ResolutionState.SUSPENDED:
            logger.info("Onboard webhook for suspended user ignored", user_id=str(user.id))
            return WebhookOutcome(action=action, outcome="suspended", user_id=user.id)

        created = False
        try:
            page, created = await self.agent_pages.ensure_for_user(user)
        except Conflict as e:
            logger.warning("Agent page could not be created", user_id=str(user.id), error=e.detail)
        else:
            if created:
                await self.audit.log_success(
                    AuditAction.AGENT_PAGE_CREATE,
                    "agent_page",
                    page.id,
                    details={"userId": str(user.id), "slug": page.slug},
                )
        return WebhookOutcome(
            action=action,
            outcome="already_active",
            user_id=user.id,
            details={"agentPageCreated": created},
        )

    async def handle_suspend_webhook(self, contact: ContactPayload) -> WebhookOutcome:
        """Suspend the active user a suspension tag points at. Anything else is a no-op."""
        action = WebhookAction.SUSPEND
        resolution = await self.resolver.resolve(contact.email, contact.contact_id)
        user = resolution.user
        if user is None:
            return WebhookOutcome(action=action, outcome="user_not_found")
        if resolution.state is ResolutionState.SUSPENDED:
            return WebhookOutcome(action=action, outcome="already_suspended", user_id=user.id)
        if resolution.state is ResolutionState.INVITED:
            # invited -> suspended is not a legal transition
            return WebhookOutcome(action=action, outcome="not_active", user_id=user.id)

        if not await self.store.suspend_user(user.id):
            return WebhookOutcome(action=action, outcome="not_active", user_id=user.id)
        await self.audit.log_success(
            AuditAction.USER_SUSPEND,
            "user",
            user.id,
            details={"contactId": contact.contact_id, "tag": contact.trigger_tag},
        )
        return WebhookOutcome(action=action, outcome="suspended", user_id=user.id)

    # =========================================================================
    # Acceptance
    # =========================================================================

    async def accept_invitation(
        self,
        token: str,
        username: str,
        password: str,
        full_name: str | None = None,
    ) -> User:
        """Redeem a token, activate the account and provision the agent page.

        Raises:
            NotFound, Expired, AlreadyUsed, Invalid, Conflict: from the store
        """
        if len(password) < self.settings.password_min_length:
            raise Invalid(
                f"Password must be at least {self.settings.password_min_length} characters"
            )
        password_hash = await asyncio.to_thread(hash_password, password)

        user = await self.store.accept(token, username, password_hash, full_name=full_name)
        await self.audit.log_success(
            AuditAction.INVITATION_ACCEPTED,
            "user",
            user.id,
            details={"username": user.username},
            actor=user.username,
        )

        try:
            page, created = await self.agent_pages.ensure_for_user(user)
        except OnboardingError as e:
            # The account is active either way; a missing page is recreated on the next webhook
            logger.warning("Agent page provisioning failed", user_id=str(user.id), error=e.detail)
        else:
            if created:
                await self.audit.log_success(
                    AuditAction.AGENT_PAGE_CREATE,
                    "agent_page",
                    page.id,
                    details={"userId": str(user.id), "slug": page.slug},
                    actor=user.username,
                )

        self.runner.submit("crm_invitation_accepted", lambda: self._sync_accepted(user))
        return user

    async def validate_invitation(self, token: str) -> UserInvitation:
        """Check a token before the accept form asks for a password."""
        return await self.store.validate_token(token)

    async def _sync_accepted(self, user: User) -> CrmSyncResult:
        result = await self.crm.sync_invitation_accepted(user)
        if result.skipped:
            return result
        async with self.session_scope() as session:
            store = _store_for(session)
            current = await store.user_repo.get_by_id(user.id)
            if current is not None:
                result = await self._link_synced_contact(store, current, result)
            audit = AuditService(AuditLogRepository(session), session)
            await self._record_crm_result(result, user, audit)
        return result

    # =========================================================================
    # Admin invitation management
    # =========================================================================

    async def cancel_invitation(self, invitation_id: UUID) -> UserInvitation:
        invitation = await self.store.cancel(invitation_id)
        await self.audit.log_success(
            AuditAction.INVITATION_CANCEL,
            "invitation",
            invitation.id,
            details={"userId": str(invitation.user_id)},
        )
        return invitation

    async def resend_invitation(self, invitation_id: UUID) -> tuple[UserInvitation, EmailResult]:
        """Rotate the token and send a fresh activation email."""
        issued = await self.store.reissue_for_resend(invitation_id)
        email_result, invitation = await self._dispatch_email(issued)
        await self.audit.log_success(
            AuditAction.INVITATION_RESEND,
            "invitation",
            invitation.id,
            details={"userId": str(invitation.user_id), "emailStatus": email_result.to_status()},
        )
        return invitation, email_result

    async def get_user_with_invitations(
        self, user_id: UUID
    ) -> tuple[User, list[UserInvitation]]:
        user = await self.store.get_user(user_id)
        return user, await self.store.list_user_invitations(user.id)

    async def get_invitation(self, invitation_id: UUID) -> UserInvitation:
        return await self.store.get_invitation(invitation_id)

    async def list_invitations(
        self, status: str | None = None, cursor: str | None = None, limit: int = 50
    ) -> tuple[list[UserInvitation], str | None, bool]:
        return await self.store.list_invitations(status, cursor, limit)

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_user(self, user_id: UUID) -> DeletionOutcome:
        """Delete the user and its dependents, then clean up external resources.

        External cleanup runs after the commit; its failures are reported in
        the outcome and never undo the deletion.
        """
        user = await self.store.delete_user(user_id)
        await self.audit.log_success(
            AuditAction.USER_DELETE,
            "user",
            user.id,
            details={"email": user.email, "contactId": user.gohighlevel_contact_id},
        )

        if user.gohighlevel_contact_id:
            crm_cleanup = self.crm.delete_contact(user.gohighlevel_contact_id)
        else:
            crm_cleanup = _skipped("delete_contact")
        image_result, crm_result = await asyncio.gather(
            self.profile_images.delete_for_user(user), crm_cleanup
        )

        if not image_result.skipped or image_result.error:
            await self._audit_outcome(
                AuditAction.CLEANUP_PROFILE_IMAGE,
                user.id,
                image_result.success,
                image_result.error,
                image_result.to_status(),
            )
        if not crm_result.skipped:
            await self._audit_outcome(
                AuditAction.CLEANUP_CRM_CONTACT,
                user.id,
                crm_result.success,
                crm_result.error,
                crm_result.to_status(),
            )
        return DeletionOutcome(user=user, profile_image=image_result, crm=crm_result)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _dispatch_email(
        self, issued: IssuedInvitation
    ) -> tuple[EmailResult, UserInvitation]:
        """Send the activation email and persist its outcome on the invitation."""
        user, invitation = issued.user, issued.invitation
        result = await self.email.send(
            user.email,
            {
                "name": user.first_name or user.full_name,
                "activation_url": f"{self.settings.app_url}/activate?token={issued.token}",
                "expires_at": invitation.expires_at.strftime("%B %d, %Y at %H:%M UTC"),
            },
        )
        try:
            invitation = await self.store.mark_email_outcome(issued.token, result)
        except OnboardingError as e:
            # The email went out (or not) regardless; the invitation keeps its prior status
            logger.error(
                "Could not record email outcome",
                invitation_id=str(invitation.id),
                email_sent=result.success,
                error=e.detail,
            )
        await self._audit_outcome(
            AuditAction.INVITATION_EMAIL,
            invitation.id,
            result.success,
            result.error,
            result.to_status(),
            resource_type="invitation",
        )
        return result, invitation

    async def _audit_invite(self, issued: IssuedInvitation) -> None:
        await self.audit.log_success(
            AuditAction.USER_INVITE,
            "user",
            issued.user.id,
            details={
                "email": issued.user.email,
                "role": issued.user.role,
                "invitationId": str(issued.invitation.id),
                "source": issued.invitation.source,
                "expiresAt": issued.invitation.expires_at.isoformat(),
            },
        )

    async def _record_crm_result(
        self, result: CrmSyncResult, user: User, audit: AuditService | None = None
    ) -> None:
        if result.skipped:
            return
        await (audit or self.audit).log_action(
            AuditAction.CRM_SYNC,
            "user",
            user.id,
            details=result.to_status(),
            status=_status(result.success),
            error_message=result.error,
        )

    async def _audit_outcome(
        self,
        action: AuditAction,
        resource_id: UUID,
        success: bool,
        error: str | None,
        details: dict[str, Any],
        resource_type: str = "user",
    ) -> None:
        await self.audit.log_action(
            action,
            resource_type,
            resource_id,
            details=details,
            status=_status(success),
            error_message=error,
        )

    async def _link_synced_contact(
        self, store: InvitationStore, user: User, result: CrmSyncResult
    ) -> CrmSyncResult:
        """Link the contact a sync returned; a refused link turns the result into a failure."""
        if not (result.success and result.contact_id):
            return result
        try:
            await store.link_contact(user, result.contact_id)
        except OnboardingError as e:
            logger.warning("Could not link CRM contact", user_id=str(user.id), error=e.detail)
            return replace(result, success=False, error=f"Contact not linked: {e.detail}")
        return result

    async def _link_contact_quietly(self, user: User, contact_id: str) -> None:
        try:
            if await self.store.link_contact(user, contact_id):
                await self.audit.log_success(
                    AuditAction.USER_CONTACT_LINK,
                    "user",
                    user.id,
                    details={"contactId": contact_id},
                )
        except OnboardingError as e:
            logger.warning("Could not link CRM contact", user_id=str(user.id), error=e.detail)


def _store_for(session: AsyncSession) -> InvitationStore:
    return InvitationStore(
        UserRepository(session),
        InvitationRepository(session),
        AgentPageRepository(session),
        session,
    )


async def _skipped(action: str) -> CrmSyncResult:
    return CrmSyncResult(success=True, action=action, skipped=True)


def _status(success: bool) -> AuditStatus:
    return AuditStatus.SUCCESS if success else AuditStatus.FAILURE
