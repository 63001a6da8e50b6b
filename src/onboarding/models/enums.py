"""Shared enums for models."""

from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class UserStatus(str, Enum):
    """Account lifecycle: invited -> active -> suspended."""

    INVITED = "invited"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class InvitationStatus(str, Enum):
    """Invitation lifecycle.

    ``expired`` is never written by the application; it is computed at read
    time from ``expires_at``.
    """

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


OPEN_INVITATION_STATUSES = (
    InvitationStatus.PENDING.value,
    InvitationStatus.SENT.value,
    InvitationStatus.FAILED.value,
)


class InvitationSource(str, Enum):
    ADMIN = "admin"
    WEBHOOK = "webhook"
