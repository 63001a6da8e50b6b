"""Cryptographic utilities - invitation tokens, password hashing, credential checks."""

import secrets
from hashlib import sha256

import argon2

from src.onboarding.core.config import get_settings

INVITATION_TOKEN_BYTES = 32


def generate_invitation_token() -> str:
    """Generate an opaque single-use invitation token (32 random bytes, url-safe)."""
    return secrets.token_urlsafe(INVITATION_TOKEN_BYTES)


def hash_token(token: str) -> str:
    """Hash a token using SHA256 for secure storage."""
    return sha256(token.encode()).hexdigest()


def _create_password_hasher() -> argon2.PasswordHasher:
    """Create password hasher with settings from config."""
    settings = get_settings()
    return argon2.PasswordHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )


_password_hasher: argon2.PasswordHasher | None = None


def _hasher() -> argon2.PasswordHasher:
    global _password_hasher
    if _password_hasher is None:
        _password_hasher = _create_password_hasher()
    return _password_hasher


def hash_password(password: str) -> str:
    """Hash password using Argon2id."""
    return _hasher().hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Verify password against hash. Returns False on any error."""
    try:
        return _hasher().verify(hashed, password)
    except (argon2.exceptions.VerifyMismatchError, argon2.exceptions.InvalidHashError):
        return False


def credentials_match(supplied: str, expected: str) -> bool:
    """Constant-time comparison of a supplied credential against the configured one."""
    return secrets.compare_digest(supplied.encode(), expected.encode())
