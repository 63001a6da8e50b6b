"""Repository layer - data access abstraction."""

from src.onboarding.repositories.agent_page import AgentPageRepository
from src.onboarding.repositories.audit import AuditLogRepository
from src.onboarding.repositories.base import BaseRepository
from src.onboarding.repositories.invitation import InvitationRepository
from src.onboarding.repositories.user import UserRepository
from src.onboarding.repositories.webhook_event import WebhookEventRepository

__all__ = [
    "AgentPageRepository",
    "AuditLogRepository",
    "BaseRepository",
    "InvitationRepository",
    "UserRepository",
    "WebhookEventRepository",
]
