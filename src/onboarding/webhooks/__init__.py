"""CRM webhook ingestion - signature verification, field extraction, routing."""

from src.onboarding.webhooks.extraction import ContactPayload, extract_contact, received_keys
from src.onboarding.webhooks.ingestor import (
    WebhookAction,
    WebhookDelivery,
    WebhookIngestor,
    parse_payload,
    resolve_provider,
)
from src.onboarding.webhooks.verification import SignatureVerifier

__all__ = [
    "ContactPayload",
    "SignatureVerifier",
    "WebhookAction",
    "WebhookDelivery",
    "WebhookIngestor",
    "extract_contact",
    "parse_payload",
    "received_keys",
    "resolve_provider",
]
