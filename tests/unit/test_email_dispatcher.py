"""Tests for invitation email dispatch (retries, fallback, development mode)."""

import time
from unittest.mock import AsyncMock, call

import pytest

from src.onboarding.core.config import get_settings
from src.onboarding.core.notifications.email import (
    DEVELOPMENT_PROVIDER,
    EmailDispatcher,
    EmailResult,
    ProviderConfig,
)
from tests.conftest import RecordingTransport

pytestmark = pytest.mark.unit

PRIMARY = ProviderConfig("resend", "re_primary", "noreply@example.com")
FALLBACK = ProviderConfig("resend-fallback", "re_fallback", "backup@example.com")

TEMPLATE_VARS = {
    "name": "Jane",
    "activation_url": "https://portal.test/activate?token=abc123",
    "expires_at": "January 01, 2030 at 12:00 UTC",
}


def make_dispatcher(
    transport, providers=None, max_attempts: int = 3, timeout: float = 5.0
) -> tuple[EmailDispatcher, AsyncMock]:
    sleep = AsyncMock()
    dispatcher = EmailDispatcher(
        providers if providers is not None else [PRIMARY],
        app_name="Test Portal",
        max_attempts=max_attempts,
        retry_delay=1.0,
        timeout=timeout,
        transport=transport,
        sleep=sleep,
    )
    return dispatcher, sleep


class TestEmailResult:
    def test_serialized_shape(self) -> None:
        result = EmailResult(success=True, message_id="m-1", attempts=1, timestamp="t")

        assert set(result.model_dump(by_alias=True)) == {
            "success",
            "messageId",
            "error",
            "attempts",
            "timestamp",
            "serviceProvider",
        }

    def test_status_shape(self) -> None:
        result = EmailResult(success=False, error="boom", attempts=3, timestamp="t")

        assert result.to_status() == {
            "sent": False,
            "messageId": None,
            "error": "boom",
            "attempts": 3,
            "timestamp": "t",
            "serviceProvider": None,
        }


class TestDevelopmentMode:
    async def test_no_provider_reports_dev_success(self) -> None:
        transport = RecordingTransport()
        dispatcher, _ = make_dispatcher(transport, providers=[])

        result = await dispatcher.send("jane@example.com", TEMPLATE_VARS)

        assert result.success
        assert result.attempts == 1
        assert result.service_provider == DEVELOPMENT_PROVIDER
        assert result.message_id is not None and result.message_id.startswith("dev-")
        assert transport.calls == 0


class TestSend:
    async def test_first_attempt_succeeds(self) -> None:
        transport = RecordingTransport()
        dispatcher, sleep = make_dispatcher(transport)

        result = await dispatcher.send("jane@example.com", TEMPLATE_VARS)

        assert result.success
        assert result.message_id == "msg-1"
        assert result.attempts == 1
        assert result.service_provider == "resend"
        sleep.assert_not_awaited()

    async def test_retries_with_linear_backoff(self) -> None:
        transport = RecordingTransport(failures=2)
        dispatcher, sleep = make_dispatcher(transport)

        result = await dispatcher.send("jane@example.com", TEMPLATE_VARS)

        assert result.success
        assert result.attempts == 3
        assert sleep.await_args_list == [call(1.0), call(2.0)]

    async def test_fallback_provider_after_primary_exhausted(self) -> None:
        transport = RecordingTransport(failures=2)
        dispatcher, _ = make_dispatcher(transport, providers=[PRIMARY, FALLBACK], max_attempts=2)

        result = await dispatcher.send("jane@example.com", TEMPLATE_VARS)

        assert result.success
        assert result.attempts == 3
        assert result.service_provider == "resend-fallback"
        provider, params = transport.sent[0]
        assert provider is FALLBACK
        assert params["from"] == "backup@example.com"

    async def test_all_attempts_fail(self) -> None:
        transport = RecordingTransport(failures=99, error="domain not verified")
        dispatcher, _ = make_dispatcher(transport, providers=[PRIMARY, FALLBACK], max_attempts=2)

        result = await dispatcher.send("jane@example.com", TEMPLATE_VARS)

        assert result.success is False
        assert result.attempts == 4
        assert result.error == "domain not verified"
        assert result.service_provider == "resend-fallback"

    async def test_timeout_is_not_retried(self) -> None:
        delivered: list[str] = []

        def slow_transport(provider, params) -> str:
            time.sleep(0.3)
            delivered.append(provider.name)
            return "late"

        dispatcher, sleep = make_dispatcher(
            slow_transport, providers=[PRIMARY, FALLBACK], max_attempts=2, timeout=0.05
        )

        result = await dispatcher.send("jane.com", TEMPLATE_VARS)

        assert result.success is False
        assert result.attempts == 1
        assert result.service_provider == "resend"
        assert "delivery status unknown" in (result.error or "")
        sleep.assert_not_awaited()
        # The abandoned call still finishes in its worker thread, exactly once
        time.sleep(0.4)
        assert delivered == ["resend"]


class TestTemplates:
    async def test_params(self) -> None:
        transport = RecordingTransport()
        dispatcher, _ = make_dispatcher(transport)

        await dispatcher.send("jane@example.com", TEMPLATE_VARS)

        _, params = transport.sent[0]
        assert params["to"] == ["jane@example.com"]
        assert params["subject"] == "Activate your Test Portal account"
        assert TEMPLATE_VARS["activation_url"] in params["text"]
        assert "January 01, 2030" in params["html"]

    async def test_html_escapes_template_vars(self) -> None:
        transport = RecordingTransport()
        dispatcher, _ = make_dispatcher(transport)

        await dispatcher.send(
            "jane@example.com", {**TEMPLATE_VARS, "name": "<script>alert(1)</script>"}
        )

        html = transport.sent[0][1]["html"]
        assert "<script>" not in html
        assert "&lt;script&gt;" in html


class TestFromSettings:
    def test_no_key_means_development_mode(self) -> None:
        dispatcher = EmailDispatcher.from_settings(get_settings())

        assert dispatcher.providers == []

    def test_primary_and_fallback(self) -> None:
        settings = get_settings().model_copy(
            update={
                "resend_api_key": "re_1",
                "resend_fallback_api_key": "re_2",
                "email_from": "a@example.com",
            }
        )

        dispatcher = EmailDispatcher.from_settings(settings)

        assert [p.name for p in dispatcher.providers] == ["resend", "resend-fallback"]
        # Fallback sender defaults to the primary sender
        assert dispatcher.providers[1].sender == "a@example.com"
