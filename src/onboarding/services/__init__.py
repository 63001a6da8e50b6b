from src.onboarding.services.agent_pages import AgentPageService
from src.onboarding.services.audit_service import AuditService
from src.onboarding.services.idempotency import IdempotencyResolver
from src.onboarding.services.invitation_store import InvitationStore
from src.onboarding.services.onboarding_service import OnboardingService
from src.onboarding.services.profile_images import ProfileImageStore
from src.onboarding.services.webhook_log import WebhookLogService

__all__ = [
    "AgentPageService",
    "AuditService",
    "IdempotencyResolver",
    "InvitationStore",
    "OnboardingService",
    "ProfileImageStore",
    "WebhookLogService",
]
