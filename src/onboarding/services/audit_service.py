"""Audit logging service - records state transitions and external-call outcomes."""

import contextlib
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.onboarding.core.audit_context import get_audit_context
from src.onboarding.core.logging import get_logger
from src.onboarding.models import AuditAction, AuditLog, AuditStatus
from src.onboarding.repositories import AuditLogRepository

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


class AuditService:
    """Service for recording audit logs.

    Fire-and-forget design: logging failures never block business operations.
    It must be given its own session so its commits and rollbacks stay
    isolated from the business transaction.
    """

    def __init__(self, audit_repo: AuditLogRepository, session: AsyncSession):
        self.audit_repo = audit_repo
        self.session = session

    async def log_action(
        self,
        action: AuditAction | str,
        resource_type: str,
        resource_id: UUID | str | None = None,
        details: dict[str, Any] | None = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        error_message: str | None = None,
        actor: str | None = None,
    ) -> AuditLog | None:
        """Record an audit log entry.

        Request metadata (IP, user agent, request_id, actor) comes from the
        audit context when the call happens inside a request.

        Returns:
            The created AuditLog, or None if logging failed
        """
        action_value = action.value if isinstance(action, AuditAction) else action
        try:
            ctx = get_audit_context()
            audit_log = AuditLog(
                actor=actor or (ctx.actor if ctx and ctx.actor else SYSTEM_ACTOR),
                action=action_value,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                details=details,
                ip_address=ctx.ip_address if ctx else None,
                user_agent=ctx.user_agent if ctx else None,
                request_id=ctx.request_id if ctx else None,
                status=status.value,
                error_message=error_message[:1000] if error_message else None,
            )

            self.audit_repo.add(audit_log)
            await self.session.commit()

            logger.debug(
                "Audit log recorded",
                action=action_value,
                resource_type=resource_type,
                resource_id=audit_log.resource_id,
            )
            return audit_log

        except Exception as e:
            logger.warning(
                "Failed to record audit log",
                action=action_value,
                resource_type=resource_type,
                error=str(e),
            )
            # Isolated session: rolling back here cannot touch business writes
            with contextlib.suppress(Exception):
                await self.session.rollback()
            return None

    async def log_success(
        self,
        action: AuditAction | str,
        resource_type: str,
        resource_id: UUID | str | None = None,
        details: dict[str, Any] | None = None,
        actor: str | None = None,
    ) -> AuditLog | None:
        return await self.log_action(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            status=AuditStatus.SUCCESS,
            actor=actor,
        )

    async def log_failure(
        self,
        action: AuditAction | str,
        resource_type: str,
        error_message: str,
        resource_id: UUID | str | None = None,
        details: dict[str, Any] | None = None,
        actor: str | None = None,
    ) -> AuditLog | None:
        return await self.log_action(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            status=AuditStatus.FAILURE,
            error_message=error_message,
            actor=actor,
        )

    async def list_resource_history(
        self,
        resource_type: str | None,
        resource_id: str | None,
        cursor: str | None = None,
        limit: int = 50,
        action: str | None = None,
    ) -> tuple[list[AuditLog], str | None, bool]:
        """List audit logs for a resource, newest first."""
        return await self.audit_repo.list_by_resource(
            resource_type=resource_type,
            resource_id=resource_id,
            cursor=cursor,
            limit=limit,
            action=action,
        )
