"""Invitation endpoints - public acceptance and admin management."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from src.onboarding.api.dependencies import AdminUser, OnboardingServiceDep, RateLimit
from src.onboarding.models import InvitationStatus
from src.onboarding.schemas import (
    AcceptedAccountRead,
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    EmailStatusRead,
    InvitationActionResponse,
    InvitationRead,
    InvitationValidationResponse,
    PaginatedResponse,
)

router = APIRouter(prefix="/invitations", tags=["invitations"])

CursorQuery = Annotated[str | None, Query(description="Pagination cursor")]
LimitQuery = Annotated[int, Query(ge=1, le=100, description="Items per page")]
StatusQuery = Annotated[InvitationStatus | None, Query(description="Filter by stored status")]
TokenQuery = Annotated[str, Query(min_length=1, max_length=200, description="Invitation token")]


@router.post(
    "/accept",
    response_model=AcceptInvitationResponse,
    dependencies=[RateLimit],
    summary="Accept invitation",
    responses={
        400: {"description": "Invitation expired, already used, or not acceptable"},
        404: {"description": "Unknown token"},
        409: {"description": "Username already taken"},
        429: {"description": "Rate limited, see retryAfter"},
    },
)
async def accept_invitation(
    request: AcceptInvitationRequest,
    service: OnboardingServiceDep,
) -> AcceptInvitationResponse:
    """Redeem an invitation token: set username and password, activate the account."""
    user = await service.accept_invitation(
        request.token,
        request.username,
        request.password,
        full_name=request.full_name,
    )
    return AcceptInvitationResponse(user=AcceptedAccountRead.model_validate(user))


@router.get(
    "/validate",
    response_model=InvitationValidationResponse,
    dependencies=[RateLimit],
    summary="Validate invitation token",
    responses={
        400: {"description": "Invitation expired, already used, or not acceptable"},
        404: {"description": "Unknown token"},
        429: {"description": "Rate limited, see retryAfter"},
    },
)
async def validate_invitation(
    token: TokenQuery,
    service: OnboardingServiceDep,
) -> InvitationValidationResponse:
    """Check a token without consuming it, so the accept form can fail early."""
    invitation = await service.validate_invitation(token)
    return InvitationValidationResponse(
        email=invitation.email,
        status=invitation.effective_status().value,
        expires_at=invitation.expires_at,
    )


@router.get(
    "",
    response_model=PaginatedResponse[InvitationRead],
    summary="List invitations",
)
async def list_invitations(
    _: AdminUser,
    service: OnboardingServiceDep,
    status: StatusQuery = None,
    cursor: CursorQuery = None,
    limit: LimitQuery = 50,
) -> PaginatedResponse[InvitationRead]:
    """List invitations newest first, optionally filtered by stored status."""
    invitations, next_cursor, has_more = await service.list_invitations(
        status.value if status else None, cursor, limit
    )
    return PaginatedResponse[InvitationRead](
        items=[InvitationRead.from_invitation(inv) for inv in invitations],
        next_cursor=next_cursor,
        has_more=has_more,
    )


@router.get("/{invitation_id}", response_model=InvitationRead, summary="Get invitation")
async def get_invitation(
    invitation_id: UUID,
    _: AdminUser,
    service: OnboardingServiceDep,
) -> InvitationRead:
    invitation = await service.get_invitation(invitation_id)
    return InvitationRead.from_invitation(invitation)


@router.post(
    "/{invitation_id}/cancel",
    response_model=InvitationActionResponse,
    summary="Cancel invitation",
)
async def cancel_invitation(
    invitation_id: UUID,
    _: AdminUser,
    service: OnboardingServiceDep,
) -> InvitationActionResponse:
    """Cancel a pending, sent or failed invitation."""
    invitation = await service.cancel_invitation(invitation_id)
    return InvitationActionResponse(invitation=InvitationRead.from_invitation(invitation))


@router.post(
    "/{invitation_id}/resend",
    response_model=InvitationActionResponse,
    summary="Resend invitation",
)
async def resend_invitation(
    invitation_id: UUID,
    _: AdminUser,
    service: OnboardingServiceDep,
) -> InvitationActionResponse:
    """Resend a pending or failed invitation with a new token (the old link stops working)."""
    invitation, email_result = await service.resend_invitation(invitation_id)
    return InvitationActionResponse(
        invitation=InvitationRead.from_invitation(invitation),
        email_status=EmailStatusRead.model_validate(email_result.to_status()),
    )
