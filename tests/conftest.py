"""Root test fixtures shared across all test types.

This conftest contains fixtures that can be used by both unit and integration tests.
Database and HTTP client fixtures are in tests/integration/conftest.py.
"""

import os

# Environment must be in place before any application import reads settings
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_USERNAME", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "admin-secret")
# Cheap hashing keeps acceptance tests fast
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")

# ruff: noqa: E402 - Imports must be after env var setup
import base64
import re
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from fakeredis import aioredis as fakeredis_aio
from redis.asyncio import Redis

from src.onboarding.core import rate_limit
from src.onboarding.core import redis as redis_core
from src.onboarding.core.background import reset_background_runner
from src.onboarding.core.config import get_settings
from src.onboarding.core.health import reset_health_cache
from src.onboarding.core.notifications.email import EmailDispatcher, ProviderConfig
from src.onboarding.core.shutdown import request_tracker

# Clear settings cache to ensure test environment variables are picked up
get_settings.cache_clear()

ACTIVATION_TOKEN = re.compile(r"token=([A-Za-z0-9_-]+)")


@pytest.fixture(autouse=True)
def _reset_process_state() -> None:
    """Drop module-level singletons that hold event-loop bound objects."""
    rate_limit.reset_rate_limiter()
    reset_background_runner()
    reset_health_cache()
    request_tracker.reset()
    yield
    rate_limit.reset_rate_limiter()
    reset_background_runner()
    reset_health_cache()
    request_tracker.reset()


# --- Redis Test Fixtures (shared) ---


@pytest.fixture
async def fake_redis() -> AsyncGenerator[Redis]:
    """Provides a fakeredis client for testing.

    Returns an in-memory Redis implementation that behaves like
    a real Redis server but doesn't require external dependencies.
    """
    client = fakeredis_aio.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def mock_redis(fake_redis: Redis, monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[Redis]:
    """Patches get_redis() to return the fakeredis client."""
    redis_core.reset_redis_state()

    async def _get_fake_redis() -> Redis:
        return fake_redis

    monkeypatch.setattr("src.onboarding.core.redis.get_redis", _get_fake_redis)
    monkeypatch.setattr("src.onboarding.core.rate_limit.get_redis", _get_fake_redis)
    yield fake_redis
    redis_core.reset_redis_state()


@pytest.fixture
async def mock_redis_unavailable(monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[None]:
    """Patches get_redis() to return None (simulates Redis unavailable)."""
    redis_core.reset_redis_state()

    async def _get_none() -> None:
        return None

    monkeypatch.setattr("src.onboarding.core.redis.get_redis", _get_none)
    monkeypatch.setattr("src.onboarding.core.rate_limit.get_redis", _get_none)
    yield
    redis_core.reset_redis_state()


# --- Email Fixtures ---


class RecordingTransport:
    """Stands in for the Resend call: records every send, optionally failing the first N."""

    def __init__(self, failures: int = 0, error: str = "provider rejected the message"):
        self.failures = failures
        self.error = error
        self.sent: list[tuple[ProviderConfig, dict[str, Any]]] = []
        self.calls = 0

    def __call__(self, provider: ProviderConfig, params: dict[str, Any]) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(self.error)
        self.sent.append((provider, params))
        return f"msg-{self.calls}"

    @property
    def last_token(self) -> str:
        """Activation token from the most recently delivered email."""
        _, params = self.sent[-1]
        match = ACTIVATION_TOKEN.search(params["text"])
        assert match, "activation link missing from email body"
        return match.group(1)


@pytest.fixture
def email_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def email_dispatcher(email_transport: RecordingTransport) -> EmailDispatcher:
    """Dispatcher with a configured provider, a recording transport and no real sleeping."""
    return EmailDispatcher(
        [ProviderConfig("resend", "re_test_key", "noreply@example.com")],
        app_name="Test Portal",
        max_attempts=3,
        retry_delay=0.0,
        timeout=5.0,
        transport=email_transport,
        sleep=AsyncMock(),
    )


# --- Webhook Signing Fixtures ---


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    return (
        rsa_private_key.public_key()
        .public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )


@pytest.fixture(scope="session")
def sign(rsa_private_key: rsa.RSAPrivateKey):
    """Return a function producing the base64 RSA-SHA256 signature of a body."""

    def _sign(body: bytes) -> str:
        signature = rsa_private_key.sign(body, padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode()

    return _sign
