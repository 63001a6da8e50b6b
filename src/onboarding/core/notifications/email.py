"""Invitation email dispatch using the Resend API.

``EmailDispatcher.send`` never raises: every outcome, including exhausted
retries, comes back as an ``EmailResult`` that callers persist on the invitation.
"""

import asyncio
import html
import threading
from collections.abc import Awaitable, Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
from typing import Any

import resend
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.onboarding.core.config import Settings, get_settings
from src.onboarding.core.logging import get_logger, mask_email
from src.onboarding.core.metrics import record_external_call

logger = get_logger(__name__)

# Thread pool for the blocking Resend SDK, so sends can be bounded by a timeout
_email_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="email_sender")
# resend reads its API key from module state; switching keys must not interleave with a send
_resend_key_lock = threading.Lock()

DEVELOPMENT_PROVIDER = "development"

_BODY_STYLE = (
    "font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; "
    "line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;"
)
_BUTTON_STYLE = (
    "background-color: #2563eb; color: white; padding: 12px 24px; "
    "text-decoration: none; border-radius: 6px; display: inline-block; font-weight: 500;"
)
_LINK_STYLE = "color: #2563eb; word-break: break-all;"
_MUTED_STYLE = "color: #666; font-size: 14px;"


def _utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


class EmailResult(BaseModel):
    """Outcome of one dispatch, serialized as ``{success, messageId, error, attempts,
    timestamp, serviceProvider}``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    message_id: str | None = None
    error: str | None = None
    attempts: int = 0
    timestamp: str
    service_provider: str | None = None

    def to_status(self) -> dict[str, Any]:
        """The ``emailStatus`` object returned to admin callers."""
        return {
            "sent": self.success,
            "messageId": self.message_id,
            "error": self.error,
            "attempts": self.attempts,
            "timestamp": self.timestamp,
            "serviceProvider": self.service_provider,
        }


@dataclass(frozen=True)
class ProviderConfig:
    """One Resend account/sender pair. Tried in order: primary, then fallback."""

    name: str
    api_key: str
    sender: str


# (provider, params) -> provider message id. Runs in a worker thread.
Transport = Callable[[ProviderConfig, dict[str, Any]], str]


def resend_transport(provider: ProviderConfig, params: dict[str, Any]) -> str:
    with _resend_key_lock:
        resend.api_key = provider.api_key
        response = resend.Emails.send(params)  # type: ignore[arg-type]
    message_id = response.get("id") if isinstance(response, Mapping) else None
    if not message_id:
        raise RuntimeError("Resend response did not include a message id")
    return str(message_id)


class EmailDispatcher:
    """Sends invitation emails with bounded, per-provider retries."""

    def __init__(
        self,
        providers: list[ProviderConfig],
        *,
        app_name: str,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
        transport: Transport = resend_transport,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        log_links: bool = False,
    ):
        self.providers = providers
        self.app_name = app_name
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._log_links = log_links

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailDispatcher":
        providers = []
        if settings.resend_api_key:
            providers.append(ProviderConfig("resend", settings.resend_api_key, settings.email_from))
        if settings.resend_fallback_api_key:
            providers.append(
                ProviderConfig(
                    "resend-fallback",
                    settings.resend_fallback_api_key,
                    settings.email_fallback_from or settings.email_from,
                )
            )
        return cls(
            providers,
            app_name=settings.app_name,
            max_attempts=settings.email_max_attempts,
            retry_delay=settings.email_retry_delay_seconds,
            timeout=settings.email_send_timeout_seconds,
            log_links=settings.app_env == "development",
        )

    async def send(self, to: str, template_vars: Mapping[str, str]) -> EmailResult:
        """Send the invitation email to ``to``.

        Template vars: ``name``, ``activation_url``, ``expires_at`` (display text).
        Attempts are counted across all providers; the last error is reported
        when every attempt fails. A timed-out send may still be delivered by the
        provider, so it ends the dispatch without further attempts.
        """
        if not self.providers:
            # Dev mode: log instead of sending
            logger.warning(
                "RESEND_API_KEY not set - invitation email not sent",
                to=mask_email(to),
                activation_url=template_vars.get("activation_url") if self._log_links else None,
            )
            return EmailResult(
                success=True,
                message_id=f"dev-{int(datetime.now(UTC).timestamp() * 1000)}",
                attempts=1,
                timestamp=_utc_timestamp(),
                service_provider=DEVELOPMENT_PROVIDER,
            )

        attempts = 0
        last_error = "No email provider attempted"
        last_provider = self.providers[0].name
        for provider in self.providers:
            params = self._build_params(provider, to, template_vars)
            for attempt in range(1, self.max_attempts + 1):
                attempts += 1
                last_provider = provider.name
                try:
                    message_id = await self._deliver(provider, params)
                except TimeoutError:
                    record_external_call("email", "send", False)
                    logger.error(
                        "Invitation email timed out, delivery status unknown",
                        to=mask_email(to),
                        provider=provider.name,
                        attempts=attempts,
                    )
                    return EmailResult(
                        success=False,
                        error=(
                            f"Email send timed out after {self.timeout}s; "
                            "delivery status unknown, not retried"
                        ),
                        attempts=attempts,
                        timestamp=_utc_timestamp(),
                        service_provider=provider.name,
                    )
                except Exception as e:
                    last_error = str(e) or type(e).__name__
                else:
                    record_external_call("email", "send", True)
                    logger.info(
                        "Invitation email sent",
                        to=mask_email(to),
                        provider=provider.name,
                        attempts=attempts,
                        message_id=message_id,
                    )
                    return EmailResult(
                        success=True,
                        message_id=message_id,
                        attempts=attempts,
                        timestamp=_utc_timestamp(),
                        service_provider=provider.name,
                    )

                record_external_call("email", "send", False)
                logger.warning(
                    "Invitation email attempt failed",
                    to=mask_email(to),
                    provider=provider.name,
                    attempt=attempt,
                    error=last_error,
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.retry_delay * attempt)

        logger.error(
            "Invitation email failed on all providers",
            to=mask_email(to),
            attempts=attempts,
            error=last_error,
        )
        return EmailResult(
            success=False,
            error=last_error,
            attempts=attempts,
            timestamp=_utc_timestamp(),
            service_provider=last_provider,
        )

    async def _deliver(self, provider: ProviderConfig, params: dict[str, Any]) -> str:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(_email_executor, partial(self._transport, provider, params)),
            timeout=self.timeout,
        )

    def _build_params(
        self, provider: ProviderConfig, to: str, template_vars: Mapping[str, str]
    ) -> dict[str, Any]:
        name = template_vars.get("name") or "there"
        activation_url = template_vars["activation_url"]
        expires_at = template_vars.get("expires_at")
        return {
            "from": provider.sender,
            "to": [to],
            "subject": f"Activate your {self.app_name} account",
            "html": _get_invitation_email_html(self.app_name, name, activation_url, expires_at),
            "text": _get_invitation_email_text(self.app_name, name, activation_url, expires_at),
        }


def _get_invitation_email_html(
    app_name: str, name: str, activation_url: str, expires_at: str | None
) -> str:
    """Generate HTML content for the invitation email."""
    safe_name = html.escape(name)
    safe_app_name = html.escape(app_name)
    safe_url = html.escape(activation_url, quote=True)
    expiry = (
        f"This link expires on {html.escape(expires_at)}."
        if expires_at
        else "This link expires soon."
    )
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="{_BODY_STYLE}">
    <h1 style="color: #2563eb; margin-bottom: 24px;">Welcome to {safe_app_name}</h1>
    <p>Hi {safe_name},</p>
    <p>An account has been created for you. Activate it by choosing a username and password:</p>
    <p style="margin: 32px 0;">
        <a href="{safe_url}" style="{_BUTTON_STYLE}">Activate Account</a>
    </p>
    <p style="{_MUTED_STYLE}">
        Or copy and paste this link into your browser:<br>
        <a href="{safe_url}" style="{_LINK_STYLE}">{safe_url}</a>
    </p>
    <p style="{_MUTED_STYLE} margin-top: 32px;">
        {expiry} If you weren't expecting this email, you can safely ignore it.
    </p>
</body>
</html>"""


def _get_invitation_email_text(
    app_name: str, name: str, activation_url: str, expires_at: str | None
) -> str:
    expiry = f"This link expires on {expires_at}." if expires_at else "This link expires soon."
    return (
        f"Hi {name},\n\n"
        f"An account has been created for you on {app_name}.\n"
        f"Activate it here: {activation_url}\n\n"
        f"{expiry}\n"
    )


_dispatcher: EmailDispatcher | None = None


def get_email_dispatcher() -> EmailDispatcher:
    """Get the process-wide dispatcher built from settings."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EmailDispatcher.from_settings(get_settings())
    return _dispatcher
