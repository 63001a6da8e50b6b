"""Model exports.

Import from here: `from src.onboarding.models import User, UserInvitation`
"""

from src.onboarding.models.agent_page import AgentPage
from src.onboarding.models.audit import AuditAction, AuditLog, AuditStatus
from src.onboarding.models.enums import (
    OPEN_INVITATION_STATUSES,
    InvitationSource,
    InvitationStatus,
    UserRole,
    UserStatus,
)
from src.onboarding.models.invitation import UserInvitation
from src.onboarding.models.user import User
from src.onboarding.models.webhook_event import WebhookEvent

__all__ = [
    # Enums
    "OPEN_INVITATION_STATUSES",
    "InvitationSource",
    "InvitationStatus",
    "UserRole",
    "UserStatus",
    # Tables
    "AgentPage",
    "AuditAction",
    "AuditLog",
    "AuditStatus",
    "User",
    "UserInvitation",
    "WebhookEvent",
]
