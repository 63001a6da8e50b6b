"""Repository for AuditLog entity.

Append-only: there are deliberately no update or delete helpers here.
"""

from sqlmodel import select

from src.onboarding.models import AuditLog
from src.onboarding.repositories.base import BaseRepository


class AuditLogRepository(BaseRepository[AuditLog]):
    model = AuditLog

    async def list_by_resource(
        self,
        resource_type: str | None,
        resource_id: str | None,
        cursor: str | None = None,
        limit: int = 50,
        action: str | None = None,
    ) -> tuple[list[AuditLog], str | None, bool]:
        """List audit logs for a resource with cursor pagination.

        Args:
            resource_type: Optional resource type filter (e.g. "user", "invitation")
            resource_id: Optional resource id filter
            cursor: Pagination cursor
            limit: Maximum items to return
            action: Optional action filter

        Returns:
            Tuple of (logs, next_cursor, has_more)
        """
        query = select(AuditLog)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)
        if action:
            query = query.where(AuditLog.action == action)
        return await self.paginate(query, cursor, limit, AuditLog.created_at)
