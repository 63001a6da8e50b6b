"""Inbound CRM webhooks.

Processed deliveries, no-ops included, answer 200 so the CRM does not retry.
Only signature failures (401), malformed payloads (400) and unknown
providers (404) are rejected.
"""

from fastapi import APIRouter, Request

from src.onboarding.api.dependencies import (
    OnboardingServiceDep,
    WebhookIngestorDep,
    WebhookLogServiceDep,
)
from src.onboarding.core.audit_context import set_audit_actor
from src.onboarding.core.exceptions import OnboardingError, Unauthorized
from src.onboarding.core.logging import get_logger
from src.onboarding.schemas import WebhookResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/{provider}",
    response_model=WebhookResponse,
    summary="CRM webhook",
    responses={
        400: {"description": "Malformed payload or missing contact fields"},
        401: {"description": "Missing or invalid signature"},
        404: {"description": "Unknown provider"},
    },
)
async def receive_webhook(
    provider: str,
    request: Request,
    ingestor: WebhookIngestorDep,
    service: OnboardingServiceDep,
    webhook_log: WebhookLogServiceDep,
) -> WebhookResponse:
    # Signatures cover the exact bytes received
    raw_body = await request.body()
    try:
        delivery = ingestor.ingest(provider, raw_body, request.headers)
    except OnboardingError as e:
        await webhook_log.record(
            provider,
            "rejected",
            signature_valid=False if isinstance(e, Unauthorized) else None,
            payload=e.extra or None,
            error=e.detail,
        )
        raise

    set_audit_actor(f"webhook:{delivery.provider}")
    contact = delivery.contact
    try:
        outcome = await service.handle_webhook(delivery)
    except OnboardingError as e:
        await webhook_log.record(
            delivery.provider,
            "failed",
            event_type=contact.event_type,
            contact_id=contact.contact_id,
            email=contact.email,
            action=delivery.action.value,
            signature_valid=delivery.signature_verified,
            payload=delivery.payload,
            error=e.detail,
        )
        raise

    await webhook_log.record(
        delivery.provider,
        outcome.outcome,
        event_type=contact.event_type,
        contact_id=contact.contact_id,
        email=contact.email,
        action=outcome.action.value,
        signature_valid=delivery.signature_verified,
        payload=delivery.payload,
    )
    logger.info(
        "Webhook processed",
        provider=delivery.provider,
        action=outcome.action.value,
        outcome=outcome.outcome,
        user_id=str(outcome.user_id) if outcome.user_id else None,
    )
    return WebhookResponse(
        action=outcome.action.value,
        outcome=outcome.outcome,
        user_id=outcome.user_id,
        invitation_id=outcome.invitation_id,
        email_status=outcome.email.to_status() if outcome.email else None,
        details=outcome.details,
    )
