"""Audit log model - append-only record of state transitions and external-call outcomes."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Column, Index
from sqlmodel import Field, SQLModel

from src.onboarding.models.base import JSONVariant, utc_now


class AuditAction(str, Enum):
    """Audit action types for type-safe logging."""

    # Users
    USER_INVITE = "user.invite"
    USER_DELETE = "user.delete"
    USER_SUSPEND = "user.suspend"
    USER_CONTACT_LINK = "user.contact_link"

    # Invitations
    INVITATION_EMAIL = "invitation.email"
    INVITATION_ACCEPTED = "invitation.accepted"
    INVITATION_CANCEL = "invitation.cancel"
    INVITATION_RESEND = "invitation.resend"

    # External systems
    CRM_SYNC = "crm.sync"
    WEBHOOK_RECEIVED = "webhook.received"
    AGENT_PAGE_CREATE = "agent_page.create"
    CLEANUP_PROFILE_IMAGE = "cleanup.profile_image"
    CLEANUP_CRM_CONTACT = "cleanup.crm_contact"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class AuditLog(SQLModel, table=True):
    """Immutable audit fact, keyed by actor and resource.

    Rows are never updated or deleted; they back post-hoc reconciliation when
    the CRM and the database disagree.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_resource", "resource_type", "resource_id", "created_at"),
        Index("ix_audit_logs_action_created", "action", "created_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)

    actor: str = Field(max_length=100)  # admin username, "webhook:gohighlevel", "invitee"
    action: str = Field(max_length=50)  # AuditAction value
    resource_type: str = Field(max_length=50)  # "user", "invitation", "crm_contact"
    resource_id: str | None = Field(default=None, max_length=100)

    details: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONVariant, nullable=True),
    )

    # Request metadata
    ip_address: str | None = Field(max_length=45, default=None)  # IPv4/IPv6
    user_agent: str | None = Field(max_length=500, default=None)
    request_id: str | None = Field(max_length=64, default=None)  # Correlation ID

    status: str = Field(default=AuditStatus.SUCCESS.value, max_length=20)
    error_message: str | None = Field(max_length=1000, default=None)

    created_at: datetime = Field(default_factory=utc_now, index=True)
