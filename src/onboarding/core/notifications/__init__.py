"""Notification utilities - email.

Re-exports the invitation email dispatcher.
"""

from src.onboarding.core.notifications.email import (
    EmailDispatcher,
    EmailResult,
    ProviderConfig,
    get_email_dispatcher,
)

__all__ = [
    "EmailDispatcher",
    "EmailResult",
    "ProviderConfig",
    "get_email_dispatcher",
]
