"""FastAPI dependency injection definitions.

Re-exports all dependencies so routers import from one place.
"""

# Auth
from src.onboarding.api.dependencies.auth import AdminUser, require_admin

# Database
from src.onboarding.api.dependencies.db import (
    DBSession,
    SessionScopeDep,
    get_db_session,
    get_session_scope,
)

# Rate limiting
from src.onboarding.api.dependencies.rate_limit import RateLimit, enforce_rate_limit

# Services
from src.onboarding.api.dependencies.services import (
    AuditServiceDep,
    OnboardingServiceDep,
    WebhookIngestorDep,
    WebhookLogServiceDep,
    get_audit_service,
    get_crm_sync,
    get_onboarding_service,
    get_profile_image_store,
    get_webhook_ingestor,
    get_webhook_log_service,
)

__all__ = [
    # Database
    "DBSession",
    "SessionScopeDep",
    "get_db_session",
    "get_session_scope",
    # Auth
    "AdminUser",
    "require_admin",
    # Rate limiting
    "RateLimit",
    "enforce_rate_limit",
    # Services
    "AuditServiceDep",
    "OnboardingServiceDep",
    "WebhookIngestorDep",
    "WebhookLogServiceDep",
    "get_audit_service",
    "get_crm_sync",
    "get_onboarding_service",
    "get_profile_image_store",
    "get_webhook_ingestor",
    "get_webhook_log_service",
]
