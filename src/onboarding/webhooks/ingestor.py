"""Webhook ingestion: authenticate, parse, extract, route.

The ingestor only decides what a delivery means; the onboarding service
performs the resulting state changes.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.onboarding.core.config import Settings
from src.onboarding.core.exceptions import Invalid, NotFound
from src.onboarding.core.logging import get_logger
from src.onboarding.webhooks.extraction import ContactPayload, extract_contact, received_keys
from src.onboarding.webhooks.verification import SignatureVerifier

logger = get_logger(__name__)

PROVIDER_ALIASES = {"gohighlevel": "gohighlevel", "ghl": "gohighlevel"}


class WebhookAction(str, Enum):
    ONBOARD = "onboard"
    SUSPEND = "suspend"
    IGNORE = "ignore"


@dataclass
class WebhookDelivery:
    provider: str
    action: WebhookAction
    contact: ContactPayload
    payload: dict[str, Any]
    signature_verified: bool
    matched_tag: str | None = None


def resolve_provider(provider: str) -> str:
    """Canonical provider name.

    Raises:
        NotFound: For providers without a webhook integration
    """
    canonical = PROVIDER_ALIASES.get(provider.lower())
    if canonical is None:
        raise NotFound(f"Unknown webhook provider '{provider}'")
    return canonical


def parse_payload(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as e:
        raise Invalid("Malformed JSON payload") from e
    if not isinstance(payload, dict):
        raise Invalid("Webhook payload must be a JSON object")
    return payload


class WebhookIngestor:
    """Turns a raw delivery into a routed ``WebhookDelivery``.

    Tag matching is exact and case-sensitive. The tag a delivery names
    explicitly (``tag``) decides the route; otherwise the contact's tag list
    is scanned, suspension taking precedence over onboarding.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        onboard_tags: list[str],
        suspend_tags: list[str],
        untagged_action: WebhookAction = WebhookAction.ONBOARD,
    ):
        self.verifier = verifier
        self.onboard_tags = frozenset(onboard_tags)
        self.suspend_tags = frozenset(suspend_tags)
        self.untagged_action = untagged_action

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookIngestor":
        return cls(
            SignatureVerifier(settings.crm_webhook_public_key, production=settings.is_production),
            onboard_tags=settings.crm_onboard_tags,
            suspend_tags=settings.crm_suspend_tags,
            untagged_action=(
                WebhookAction(settings.crm_untagged_webhook_action)
                if settings.crm_untagged_webhook_action
                else WebhookAction.IGNORE
            ),
        )

    def route(self, contact: ContactPayload) -> tuple[WebhookAction, str | None]:
        """Pick the handler for a contact's tags. Returns (action, matched tag)."""
        if contact.trigger_tag:
            candidates = [contact.trigger_tag]
        elif contact.tags:
            candidates = contact.tags
        else:
            return self.untagged_action, None

        for tag in candidates:
            if tag in self.suspend_tags:
                return WebhookAction.SUSPEND, tag
        for tag in candidates:
            if tag in self.onboard_tags:
                return WebhookAction.ONBOARD, tag
        return WebhookAction.IGNORE, None

    def ingest(
        self, provider: str, raw_body: bytes, headers: Mapping[str, str]
    ) -> WebhookDelivery:
        """Verify and normalize one delivery.

        Raises:
            NotFound: Unknown provider
            Unauthorized: Signature failure
            Invalid: Malformed payload, or required contact fields missing for the route
        """
        provider = resolve_provider(provider)
        verified = self.verifier.verify(raw_body, SignatureVerifier.signature_from(headers))
        payload = parse_payload(raw_body)
        contact = extract_contact(payload)
        action, matched_tag = self.route(contact)

        if action is WebhookAction.ONBOARD:
            missing = contact.missing_required()
            if missing:
                raise Invalid(
                    f"Missing required contact fields: {', '.join(missing)}",
                    extra={"missingFields": missing, **received_keys(payload)},
                )
        elif action is WebhookAction.SUSPEND and not (contact.email or contact.contact_id):
            raise Invalid(
                "Suspension requires a contact email or id",
                extra={"missingFields": ["email", "contactId"], **received_keys(payload)},
            )

        logger.info(
            "Webhook routed",
            provider=provider,
            action=action.value,
            tag=matched_tag,
            event_type=contact.event_type,
            contact_id=contact.contact_id,
        )
        return WebhookDelivery(
            provider=provider,
            action=action,
            contact=contact,
            payload=payload,
            signature_verified=verified,
            matched_tag=matched_tag,
        )
