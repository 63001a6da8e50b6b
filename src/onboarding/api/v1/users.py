"""Admin user endpoints - invite, inspect, delete."""

from uuid import UUID

from fastapi import APIRouter, status

from src.onboarding.api.dependencies import AdminUser, OnboardingServiceDep, RateLimit
from src.onboarding.models import UserRole
from src.onboarding.schemas import (
    CleanupStatusRead,
    CrmStatusRead,
    DeletionCleanupRead,
    EmailStatusRead,
    InvitationRead,
    UserCreateRequest,
    UserDeleteResponse,
    UserDetailResponse,
    UserInviteResponse,
    UserRead,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "",
    response_model=UserInviteResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[RateLimit],
    summary="Invite user",
    responses={
        401: {"description": "Missing credentials"},
        403: {"description": "Invalid credentials"},
        409: {"description": "A user with this email already exists"},
        429: {"description": "Rate limited, see retryAfter"},
        500: {"description": "Database write failed"},
    },
)
async def invite_user(
    request: UserCreateRequest,
    admin: AdminUser,
    service: OnboardingServiceDep,
) -> UserInviteResponse:
    """Create an invited user and send the activation email.

    The account is created even if the email or CRM sync fails; their
    outcomes are reported separately in ``emailStatus`` and ``crmStatus``.
    """
    first_name, last_name, full_name = request.resolved_names()
    outcome = await service.invite_user(
        request.email,
        first_name,
        last_name,
        UserRole(request.role),
        full_name=full_name,
        phone=request.phone,
        invited_by=f"admin:{admin}",
    )
    return UserInviteResponse(
        **UserRead.model_validate(outcome.user).model_dump(),
        invitation=InvitationRead.from_invitation(outcome.invitation),
        email_status=EmailStatusRead.model_validate(outcome.email.to_status()),
        crm_status=CrmStatusRead.model_validate(outcome.crm.to_status()),
    )


@router.get("/{user_id}", response_model=UserDetailResponse, summary="Get user")
async def get_user(
    user_id: UUID,
    _: AdminUser,
    service: OnboardingServiceDep,
) -> UserDetailResponse:
    """Get a user with all of its invitations (effective status)."""
    user, invitations = await service.get_user_with_invitations(user_id)
    return UserDetailResponse(
        **UserRead.model_validate(user).model_dump(),
        invitations=[InvitationRead.from_invitation(inv) for inv in invitations],
    )


@router.delete("/{user_id}", response_model=UserDeleteResponse, summary="Delete user")
async def delete_user(
    user_id: UUID,
    _: AdminUser,
    service: OnboardingServiceDep,
) -> UserDeleteResponse:
    """Delete a user, its invitations and agent page.

    Profile image and CRM contact cleanup run after the deletion is
    committed; failures there are reported, not rolled back.
    """
    outcome = await service.delete_user(user_id)
    return UserDeleteResponse(
        id=outcome.user.id,
        email=outcome.user.email,
        cleanup=DeletionCleanupRead(
            profile_image=CleanupStatusRead(**outcome.profile_image.to_status()),
            crm_contact=CrmStatusRead.model_validate(outcome.crm.to_status()),
        ),
    )
