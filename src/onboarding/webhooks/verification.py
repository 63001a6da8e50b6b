"""Webhook signature verification (RSA-SHA256 over the raw request body)."""

import base64
import binascii
from collections.abc import Mapping

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from src.onboarding.core.exceptions import Unauthorized
from src.onboarding.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADERS = ("x-ghl-signature", "x-signature")


def load_public_key(pem: str) -> rsa.RSAPublicKey:
    """Load an RSA public key, accepting PEMs whose newlines were escaped in env vars.

    Raises:
        ValueError: If the key is not a PEM-encoded RSA public key
    """
    normalized = pem.strip().replace("\\n", "\n")
    try:
        key = serialization.load_pem_public_key(normalized.encode())
    except UnsupportedAlgorithm as e:
        raise ValueError("Unsupported public key algorithm") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Webhook public key must be an RSA key")
    return key


class SignatureVerifier:
    """Checks the provider signature header against the exact bytes received.

    Without a configured key, deliveries are accepted outside production and
    rejected in production.
    """

    def __init__(self, public_key_pem: str | None, production: bool):
        self.production = production
        self._key: rsa.RSAPublicKey | None = None
        self._misconfigured = False
        if public_key_pem:
            try:
                self._key = load_public_key(public_key_pem)
            except ValueError as e:
                logger.error("Invalid CRM webhook public key", error=str(e))
                self._misconfigured = True

    @staticmethod
    def signature_from(headers: Mapping[str, str]) -> str | None:
        for name in SIGNATURE_HEADERS:
            value = headers.get(name)
            if value:
                return value
        return None

    def verify(self, raw_body: bytes, signature: str | None) -> bool:
        """Verify ``signature`` over ``raw_body``.

        Returns:
            True if the signature was checked, False if checking was skipped
            (no key configured, non-production).

        Raises:
            Unauthorized: Missing or invalid signature, or no usable key in production
        """
        if self._misconfigured:
            raise Unauthorized("Webhook verification is misconfigured")
        if self._key is None:
            if self.production:
                logger.error("CRM webhook public key not configured in production")
                raise Unauthorized("Webhook verification is not configured")
            logger.warning("CRM webhook public key not configured - skipping verification")
            return False

        if not signature:
            raise Unauthorized("Missing webhook signature")
        try:
            decoded = base64.b64decode(signature.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise Unauthorized("Malformed webhook signature") from e
        try:
            self._key.verify(decoded, raw_body, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature as e:
            raise Unauthorized("Invalid webhook signature") from e
        return True
