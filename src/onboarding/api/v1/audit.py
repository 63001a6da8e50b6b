"""Audit log endpoints - admin only."""

from typing import Annotated

from fastapi import APIRouter, Query

from src.onboarding.api.dependencies import AdminUser, AuditServiceDep
from src.onboarding.schemas import AuditLogListResponse, AuditLogRead

router = APIRouter(prefix="/audit", tags=["audit"])

CursorQuery = Annotated[str | None, Query(description="Pagination cursor")]
LimitQuery = Annotated[int, Query(ge=1, le=100, description="Items per page")]
ResourceTypeQuery = Annotated[
    str | None, Query(description="Resource type, e.g. user, invitation")
]
ResourceIdQuery = Annotated[str | None, Query(description="Resource id")]
ActionQuery = Annotated[str | None, Query(description="Filter by action, e.g. crm.sync")]


@router.get(
    "",
    response_model=AuditLogListResponse,
    responses={
        200: {
            "description": "Audit entries, newest first",
            "content": {
                "application/json": {
                    "example": {
                        "items": [
                            {
                                "id": "550e8400-e29b-41d4-a716-446655440000",
                                "actor": "webhook:gohighlevel",
                                "action": "invitation.email",
                                "resource_type": "invitation",
                                "resource_id": "550e8400-e29b-41d4-a716-446655440001",
                                "details": {"sent": False, "attempts": 3},
                                "ip_address": "203.0.113.7",
                                "user_agent": "GoHighLevel-Webhook",
                                "request_id": "abc-123",
                                "status": "failure",
                                "error_message": "Email send timed out after 10s",
                                "created_at": "2025-01-01T00:00:00",
                            }
                        ],
                        "next_cursor": "abc123",
                        "has_more": True,
                    }
                }
            },
        },
        401: {"description": "Missing credentials"},
        403: {"description": "Invalid credentials"},
    },
)
async def list_audit_logs(
    _: AdminUser,
    audit_service: AuditServiceDep,
    resource_type: ResourceTypeQuery = None,
    resource_id: ResourceIdQuery = None,
    action: ActionQuery = None,
    cursor: CursorQuery = None,
    limit: LimitQuery = 50,
) -> AuditLogListResponse:
    """Audit history, for reconciling the database with the CRM and email provider."""
    logs, next_cursor, has_more = await audit_service.list_resource_history(
        resource_type=resource_type,
        resource_id=resource_id,
        cursor=cursor,
        limit=limit,
        action=action,
    )
    return AuditLogListResponse(
        items=[AuditLogRead.model_validate(log) for log in logs],
        next_cursor=next_cursor,
        has_more=has_more,
    )
