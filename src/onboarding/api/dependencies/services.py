"""Service factory dependencies."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends

from src.onboarding.api.dependencies.db import DBSession, SessionScopeDep
from src.onboarding.core.background import BackgroundRunner, get_background_runner
from src.onboarding.core.config import get_settings
from src.onboarding.core.notifications.email import EmailDispatcher, get_email_dispatcher
from src.onboarding.crm import CrmSync, get_crm_client
from src.onboarding.repositories import (
    AgentPageRepository,
    AuditLogRepository,
    InvitationRepository,
    UserRepository,
    WebhookEventRepository,
)
from src.onboarding.services.agent_pages import AgentPageService
from src.onboarding.services.audit_service import AuditService
from src.onboarding.services.idempotency import IdempotencyResolver
from src.onboarding.services.invitation_store import InvitationStore
from src.onboarding.services.onboarding_service import OnboardingService
from src.onboarding.services.profile_images import ProfileImageStore
from src.onboarding.services.webhook_log import WebhookLogService
from src.onboarding.webhooks.ingestor import WebhookIngestor


async def get_audit_service(session_scope: SessionScopeDep) -> AsyncGenerator[AuditService]:
    """Get audit service with its own isolated session.

    Audit entries commit independently, so they survive a rolled-back business transaction.
    """
    async with session_scope() as session:
        yield AuditService(AuditLogRepository(session), session)


async def get_webhook_log_service(
    session_scope: SessionScopeDep,
) -> AsyncGenerator[WebhookLogService]:
    """Get the webhook delivery log with its own isolated session."""
    async with session_scope() as session:
        yield WebhookLogService(WebhookEventRepository(session), session)


def get_crm_sync() -> CrmSync:
    return CrmSync(get_crm_client())


def get_profile_image_store() -> ProfileImageStore:
    return ProfileImageStore.from_settings(get_settings())


def get_webhook_ingestor() -> WebhookIngestor:
    return WebhookIngestor.from_settings(get_settings())


AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]


def get_onboarding_service(
    session: DBSession,
    session_scope: SessionScopeDep,
    audit: AuditServiceDep,
    email: Annotated[EmailDispatcher, Depends(get_email_dispatcher)],
    crm: Annotated[CrmSync, Depends(get_crm_sync)],
    profile_images: Annotated[ProfileImageStore, Depends(get_profile_image_store)],
    runner: Annotated[BackgroundRunner, Depends(get_background_runner)],
) -> OnboardingService:
    """Get the onboarding orchestrator over the request session."""
    user_repo = UserRepository(session)
    invitation_repo = InvitationRepository(session)
    agent_page_repo = AgentPageRepository(session)
    return OnboardingService(
        store=InvitationStore(user_repo, invitation_repo, agent_page_repo, session),
        resolver=IdempotencyResolver(user_repo, invitation_repo),
        agent_pages=AgentPageService(agent_page_repo, session),
        email=email,
        crm=crm,
        audit=audit,
        profile_images=profile_images,
        runner=runner,
        settings=get_settings(),
        session_scope=session_scope,
    )


OnboardingServiceDep = Annotated[OnboardingService, Depends(get_onboarding_service)]
WebhookLogServiceDep = Annotated[WebhookLogService, Depends(get_webhook_log_service)]
WebhookIngestorDep = Annotated[WebhookIngestor, Depends(get_webhook_ingestor)]
