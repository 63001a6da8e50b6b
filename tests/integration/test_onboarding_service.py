"""Integration tests for the onboarding orchestrator (webhooks, invites, acceptance, deletion)."""

from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlmodel import select

from src.onboarding.core.config import get_settings
from src.onboarding.core.exceptions import Conflict, Invalid
from src.onboarding.core.notifications.email import EmailDispatcher, ProviderConfig
from src.onboarding.crm import CrmSync, GoHighLevelClient
from src.onboarding.models import (
    AgentPage,
    AuditLog,
    InvitationStatus,
    User,
    UserInvitation,
    UserStatus,
)
from src.onboarding.models.base import utc_now
from src.onboarding.repositories import (
    AgentPageRepository,
    InvitationRepository,
    UserRepository,
)
from src.onboarding.services import InvitationStore
from src.onboarding.services.agent_pages import AgentPageService
from src.onboarding.services.idempotency import IdempotencyResolver, Resolution, ResolutionState
from src.onboarding.services.onboarding_service import OnboardingService
from src.onboarding.services.profile_images import ProfileImageStore
from src.onboarding.webhooks import ContactPayload, WebhookAction, WebhookDelivery
from tests.conftest import RecordingTransport
from tests.factories import UserFactory
from tests.helpers import count_rows, create_active_user, create_invited_user

pytestmark = pytest.mark.integration


def contact(**overrides) -> ContactPayload:
    values = {
        "contact_id": "ghl-100",
        "email": "jane@example.com",
        "first_name": "Jane",
        "last_name": "Doe",
        "trigger_tag": "active-downline",
    }
    return ContactPayload(**{**values, **overrides})


@pytest.fixture
def build_service(db_session, session_scope, audit_service, runner, email_dispatcher, crm_sync):
    """Return a factory so tests can swap the email dispatcher or CRM."""

    def _build(email: EmailDispatcher | None = None, crm: CrmSync | None = None):
        user_repo = UserRepository(db_session)
        invitation_repo = InvitationRepository(db_session)
        agent_page_repo = AgentPageRepository(db_session)
        return OnboardingService(
            store=InvitationStore(user_repo, invitation_repo, agent_page_repo, db_session),
            resolver=IdempotencyResolver(user_repo, invitation_repo),
            agent_pages=AgentPageService(agent_page_repo, db_session),
            email=email or email_dispatcher,
            crm=crm or crm_sync,
            audit=audit_service,
            profile_images=ProfileImageStore(None),
            runner=runner,
            settings=get_settings(),
            session_scope=session_scope,
        )

    return _build


@pytest.fixture
def service(build_service) -> OnboardingService:
    return build_service()


async def audit_actions(session_scope) -> list[str]:
    async with session_scope() as session:
        result = await session.execute(select(AuditLog).order_by(AuditLog.created_at))
        return [entry.action for entry in result.scalars().all()]


class TestOnboardWebhook:
    async def test_absent_contact_is_invited(self, service, db_session, email_transport):
        outcome = await service.handle_onboard_webhook(contact())

        assert outcome.outcome == "created"
        assert outcome.email is not None and outcome.email.success
        assert len(email_transport.sent) == 1

        user = await db_session.get(User, outcome.user_id)
        assert user.status == UserStatus.INVITED.value
        assert user.gohighlevel_contact_id == "ghl-100"
        invitation = await db_session.get(UserInvitation, outcome.invitation_id)
        assert invitation.status == InvitationStatus.SENT.value
        assert invitation.source == "webhook"
        assert invitation.invited_by == "webhook:gohighlevel"
        assert invitation.expires_at > utc_now() + timedelta(days=6)

    async def test_activation_link_points_at_portal(self, service, email_transport):
        await service.handle_onboard_webhook(contact())

        _, params = email_transport.sent[0]
        assert f"{get_settings().app_url}/activate?token=" in params["text"]

    async def test_redelivery_does_not_duplicate(self, service, db_session, email_transport):
        first = await service.handle_onboard_webhook(contact())
        second = await service.handle_onboard_webhook(contact())

        assert second.outcome == "already_invited"
        assert second.user_id == first.user_id
        assert second.invitation_id == first.invitation_id
        assert len(email_transport.sent) == 1
        assert await count_rows(db_session, User) == 1

    async def test_redelivery_by_contact_id_only(self, service, email_transport):
        first = await service.handle_onboard_webhook(contact())

        second = await service.handle_onboard_webhook(contact(email="changed@example.com"))

        assert second.outcome == "already_invited"
        assert second.user_id == first.user_id
        assert len(email_transport.sent) == 1

    async def test_missing_fields_for_new_user(self, service, db_session):
        with pytest.raises(Invalid, match="lastName"):
            await service.handle_onboard_webhook(contact(last_name=None))
        assert await count_rows(db_session, User) == 0

    async def test_lost_creation_race_is_duplicate(self, service, db_session, email_transport):
        await create_active_user(db_session, email="jane@example.com")
        # Resolution ran before the competing insert committed
        service.resolver.resolve = AsyncMock(
            return_value=Resolution(key="email:jane@example.com", state=ResolutionState.ABSENT)
        )

        outcome = await service.handle_onboard_webhook(contact(contact_id=None))

        assert outcome.outcome == "duplicate"
        assert email_transport.sent == []
        assert await count_rows(db_session, User) == 1

    async def test_email_failure_still_creates_account(self, build_service, db_session):
        failing = EmailDispatcher(
            [ProviderConfig("resend", "re_key", "noreply@example.com")],
            app_name="Test Portal",
            max_attempts=2,
            retry_delay=0,
            transport=RecordingTransport(failures=99),
            sleep=AsyncMock(),
        )
        service = build_service(email=failing)

        outcome = await service.handle_onboard_webhook(contact())

        assert outcome.outcome == "created"
        assert outcome.email.success is False
        invitation = await db_session.get(UserInvitation, outcome.invitation_id)
        assert invitation.status == InvitationStatus.FAILED.value
        assert invitation.email_attempts == 2

    async def test_invited_user_gets_contact_linked(self, service, db_session, session_scope):
        user, _, _ = await create_invited_user(db_session, email="jane@example.com")

        outcome = await service.handle_onboard_webhook(contact(contact_id="ghl-555"))

        assert outcome.outcome == "already_invited"
        await db_session.refresh(user)
        assert user.gohighlevel_contact_id == "ghl-555"
        assert "user.contact_link" in await audit_actions(session_scope)

    async def test_active_user_gets_agent_page_once(self, service, db_session):
        user = await create_active_user(
            db_session, email="jane@example.com", first_name="Jane", last_name="Doe"
        )

        first = await service.handle_onboard_webhook(contact())
        second = await service.handle_onboard_webhook(contact())

        assert first.outcome == "already_active"
        assert first.details == {"agentPageCreated": True}
        assert second.details == {"agentPageCreated": False}
        page = (
            await db_session.execute(select(AgentPage).where(AgentPage.user_id == user.id))
        ).scalar_one()
        assert page.slug == "jane-doe"

    async def test_suspended_user_not_reactivated(self, service, db_session, email_transport):
        db_session.add(UserFactory.suspended(email="jane@example.com"))
        await db_session.commit()

        outcome = await service.handle_onboard_webhook(contact())

        assert outcome.outcome == "suspended"
        assert email_transport.sent == []


class TestSuspendWebhook:
    async def test_active_user_suspended(self, service, db_session, session_scope):
        user = await create_active_user(db_session, gohighlevel_contact_id="ghl-100")

        outcome = await service.handle_suspend_webhook(
            ContactPayload(contact_id="ghl-100", trigger_tag="account-suspended")
        )

        assert outcome.outcome == "suspended"
        await db_session.refresh(user)
        assert user.status == UserStatus.SUSPENDED.value
        assert "user.suspend" in await audit_actions(session_scope)

    async def test_already_suspended(self, service, db_session):
        db_session.add(UserFactory.suspended(email="jane@example.com"))
        await db_session.commit()

        outcome = await service.handle_suspend_webhook(contact())

        assert outcome.outcome == "already_suspended"

    async def test_invited_user_is_not_suspended(self, service, db_session):
        user, _, _ = await create_invited_user(db_session, email="jane@example.com")

        outcome = await service.handle_suspend_webhook(contact())

        assert outcome.outcome == "not_active"
        await db_session.refresh(user)
        assert user.status == UserStatus.INVITED.value

    async def test_unknown_contact(self, service):
        outcome = await service.handle_suspend_webhook(contact())

        assert outcome.outcome == "user_not_found"


class TestHandleWebhook:
    async def test_ignored_delivery_is_audited(self, service, session_scope):
        delivery = WebhookDelivery(
            provider="gohighlevel",
            action=WebhookAction.IGNORE,
            contact=contact(trigger_tag="newsletter"),
            payload={},
            signature_verified=False,
        )

        outcome = await service.handle_webhook(delivery)

        assert outcome.outcome == "ignored"
        assert await audit_actions(session_scope) == ["webhook.received"]


class TestInviteUser:
    async def test_reports_email_and_crm_status(self, service, session_scope):
        outcome = await service.invite_user("Jane@Example.com", "Jane", "Doe")

        assert outcome.user.email == "jane@example.com"
        assert outcome.invitation.status == InvitationStatus.SENT.value
        assert outcome.email.success
        assert outcome.crm.skipped
        actions = await audit_actions(session_scope)
        assert actions[:2] == ["user.invite", "invitation.email"]

    async def test_existing_email_is_conflict(self, service, db_session, email_transport):
        await create_invited_user(db_session, email="jane@example.com")

        with pytest.raises(Conflict):
            await service.invite_user("jane@example.com", "Jane", "Doe")
        assert email_transport.sent == []

    async def test_crm_contact_linked(self, build_service, db_session):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/contacts/search/duplicate":
                return httpx.Response(404)
            if request.url.path == "/contacts/" and request.method == "POST":
                return httpx.Response(201, json={"contact": {"id": "ghl-new"}})
            return httpx.Response(200, json={})

        client = GoHighLevelClient(
            "key",
            "loc-1",
            base_url="https://crm.test",
            transport=httpx.MockTransport(handler),
            sleep=AsyncMock(),
        )
        service = build_service(crm=CrmSync(client))

        outcome = await service.invite_user("jane@example.com", "Jane", "Doe")

        assert outcome.crm.success and outcome.crm.contact_id == "ghl-new"
        user = await db_session.get(User, outcome.user.id)
        assert user.gohighlevel_contact_id == "ghl-new"
        await client.aclose()

    async def test_crm_always_failing_does_not_block_invite(
        self, build_service, db_session, session_scope, email_transport
    ):
        client = GoHighLevelClient(
            "key",
            "loc-1",
            base_url="https://crm.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
            sleep=AsyncMock(),
        )
        service = build_service(crm=CrmSync(client))

        outcome = await service.invite_user("jane@example.com", "Jane", "Doe")

        assert outcome.user.status == "invited"
        assert outcome.invitation.status == InvitationStatus.SENT.value
        assert outcome.email.success
        assert outcome.crm.success is False
        assert outcome.crm.to_status()["synced"] is False
        assert outcome.crm.error.startswith("CRM returned 500")
        assert len(email_transport.sent) == 1
        async with session_scope() as session:
            result = await session.execute(select(AuditLog).where(AuditLog.action == "crm.sync"))
            [entry] = result.scalars().all()
        assert entry.status == "failure"
        assert entry.error_message.startswith("CRM returned 500")
        await client.aclose()


class TestAcceptInvitation:
    async def test_short_password_rejected(self, service, db_session):
        _, _, token = await create_invited_user(db_session)

        with pytest.raises(Invalid, match="at least"):
            await service.accept_invitation(token, "jdoe", "short")

    async def test_activates_and_provisions_page(self, service, db_session, runner):
        user, _, token = await create_invited_user(
            db_session, first_name="Jane", last_name="Doe"
        )

        activated = await service.accept_invitation(token, "jdoe", "long-enough-password")
        await runner.drain(1.0)

        assert activated.status == UserStatus.ACTIVE.value
        assert activated.password_hash.startswith("$argon2id$")
        assert await count_rows(db_session, AgentPage, user_id=user.id) == 1


class TestDeleteUser:
    async def test_crm_cleanup_failure_is_reported(self, build_service, db_session, session_scope):
        client = GoHighLevelClient(
            "key",
            "loc-1",
            base_url="https://crm.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
            sleep=AsyncMock(),
        )
        service = build_service(crm=CrmSync(client))
        user = await create_active_user(db_session, gohighlevel_contact_id="ghl-100")

        outcome = await service.delete_user(user.id)

        assert outcome.crm.success is False
        assert outcome.profile_image.skipped
        async with session_scope() as session:
            assert await count_rows(session, User) == 0
        actions = await audit_actions(session_scope)
        assert "user.delete" in actions
        assert "cleanup.crm_contact" in actions
        await client.aclose()
