from fastapi import APIRouter

from src.onboarding.api.v1 import audit, invitations, users, webhooks

api_router = APIRouter()
api_router.include_router(users.router)
api_router.include_router(invitations.router)
api_router.include_router(webhooks.router)
api_router.include_router(audit.router)
