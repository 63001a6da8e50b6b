from src.onboarding.schemas.audit import AuditLogListResponse, AuditLogRead
from src.onboarding.schemas.invitation import (
    AcceptedAccountRead,
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    InvitationActionResponse,
    InvitationRead,
    InvitationValidationResponse,
)
from src.onboarding.schemas.pagination import PaginatedResponse
from src.onboarding.schemas.status import CleanupStatusRead, CrmStatusRead, EmailStatusRead
from src.onboarding.schemas.user import (
    DeletionCleanupRead,
    UserCreateRequest,
    UserDeleteResponse,
    UserDetailResponse,
    UserInviteResponse,
    UserRead,
)
from src.onboarding.schemas.webhook import WebhookResponse

__all__ = [
    # Audit
    "AuditLogListResponse",
    "AuditLogRead",
    # Invitations
    "AcceptInvitationRequest",
    "AcceptInvitationResponse",
    "AcceptedAccountRead",
    "InvitationActionResponse",
    "InvitationRead",
    "InvitationValidationResponse",
    # Pagination
    "PaginatedResponse",
    # Users
    "DeletionCleanupRead",
    "UserCreateRequest",
    "UserDeleteResponse",
    "UserDetailResponse",
    "UserInviteResponse",
    "UserRead",
    # Side-effect status
    "CleanupStatusRead",
    "CrmStatusRead",
    "EmailStatusRead",
    # Webhooks
    "WebhookResponse",
]
