"""Best-effort CRM synchronization.

CRM sync is enrichment, never a correctness requirement: every method here
returns a ``CrmSyncResult`` and nothing escapes as an exception. The caller
decides what to persist (e.g. linking the contact id on the user).
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from src.onboarding.core.logging import get_logger
from src.onboarding.crm.client import GoHighLevelClient
from src.onboarding.crm.models import CrmContact
from src.onboarding.models import User, UserInvitation

logger = get_logger(__name__)

PORTAL_USER_TAG = "saa-portal-user"
INVITATION_SENT_TAG = "invitation-sent"
INVITATION_ACCEPTED_TAGS = ["invitation-accepted", "account-active"]


@dataclass
class CrmSyncResult:
    success: bool
    action: str
    contact_id: str | None = None
    error: str | None = None
    skipped: bool = False

    def to_status(self) -> dict[str, Any]:
        """The ``crmStatus`` object returned to callers."""
        return {
            "synced": self.success and not self.skipped,
            "contactId": self.contact_id,
            "action": self.action,
            "error": self.error,
            "skipped": self.skipped,
        }


class CrmSync:
    """Lifecycle sync operations over an optional CRM client."""

    def __init__(self, client: GoHighLevelClient | None):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def _guard(
        self,
        action: str,
        operation: Callable[[GoHighLevelClient], Awaitable[str | None]],
        contact_id: str | None = None,
    ) -> CrmSyncResult:
        if self.client is None:
            return CrmSyncResult(success=True, action=action, contact_id=contact_id, skipped=True)
        try:
            resolved_id = await operation(self.client)
        except Exception as e:
            logger.warning("CRM sync failed", action=action, contact_id=contact_id, error=str(e))
            return CrmSyncResult(
                success=False,
                action=action,
                contact_id=contact_id,
                error=str(e) or type(e).__name__,
            )
        logger.info("CRM sync succeeded", action=action, contact_id=resolved_id)
        return CrmSyncResult(success=True, action=action, contact_id=resolved_id)

    async def _resolve_contact(self, client: GoHighLevelClient, user: User) -> CrmContact:
        """Upsert the user's contact, reusing a known or looked-up id."""
        contact_id = user.gohighlevel_contact_id
        if not contact_id:
            existing = await client.lookup(user.email)
            contact_id = existing.id if existing else None
        return await client.upsert(
            CrmContact(
                id=contact_id,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                phone=user.phone,
                custom_fields={
                    "portal_user_id": str(user.id),
                    "portal_status": user.status,
                },
            )
        )

    async def sync_invitation_sent(
        self, user: User, invitation: UserInvitation
    ) -> CrmSyncResult:
        async def _sync(client: GoHighLevelClient) -> str | None:
            contact = await self._resolve_contact(client, user)
            if contact.id:
                await client.add_tags(contact.id, [PORTAL_USER_TAG, INVITATION_SENT_TAG])
                await client.add_note(
                    contact.id,
                    f"Portal invitation issued (status: {invitation.status}, "
                    f"expires {invitation.expires_at.isoformat()}Z).",
                )
            return contact.id

        return await self._guard("invitation_sent", _sync, user.gohighlevel_contact_id)

    async def sync_invitation_accepted(self, user: User) -> CrmSyncResult:
        async def _sync(client: GoHighLevelClient) -> str | None:
            contact = await self._resolve_contact(client, user)
            if contact.id:
                await client.add_tags(contact.id, [PORTAL_USER_TAG, *INVITATION_ACCEPTED_TAGS])
                await client.remove_tags(contact.id, [INVITATION_SENT_TAG])
            return contact.id

        return await self._guard("invitation_accepted", _sync, user.gohighlevel_contact_id)

    async def add_note(self, contact_id: str, text: str) -> CrmSyncResult:
        async def _note(client: GoHighLevelClient) -> str | None:
            await client.add_note(contact_id, text)
            return contact_id

        return await self._guard("add_note", _note, contact_id)

    async def note_webhook_onboarding(
        self, contact_id: str, invitation: UserInvitation, email_sent: bool
    ) -> CrmSyncResult:
        """Leave a note on the contact that triggered a webhook invitation."""
        if email_sent:
            text = (
                "Portal invitation sent "
                f"(expires {invitation.expires_at.isoformat()}Z)."
            )
        else:
            text = "Portal account created; invitation email could not be delivered."
        return await self.add_note(contact_id, text)

    async def delete_contact(self, contact_id: str) -> CrmSyncResult:
        async def _delete(client: GoHighLevelClient) -> str | None:
            await client.delete_contact(contact_id)
            return contact_id

        return await self._guard("delete_contact", _delete, contact_id)
