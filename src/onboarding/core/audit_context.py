"""Audit context management using contextvars.

Stores request metadata (IP address, user agent, request id, actor) for use by AuditService.
"""

from contextvars import ContextVar
from dataclasses import dataclass, replace
from ipaddress import ip_address

_audit_context: ContextVar["AuditContext | None"] = ContextVar("audit_context", default=None)


@dataclass(frozen=True)
class AuditContext:
    """Immutable audit context for the current request."""

    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    actor: str | None = None


def set_audit_context(
    ip_address: str | None = None,
    user_agent: str | None = None,
    request_id: str | None = None,
) -> None:
    """Set audit context for the current request."""
    ctx = AuditContext(
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else user_agent,
        request_id=request_id,
    )
    _audit_context.set(ctx)


def set_audit_actor(actor: str) -> None:
    """Record who is acting (admin username, "webhook:<provider>", "invitee")."""
    ctx = _audit_context.get() or AuditContext()
    _audit_context.set(replace(ctx, actor=actor))


def get_audit_context() -> AuditContext | None:
    """Get the current audit context."""
    return _audit_context.get()


def clear_audit_context() -> None:
    """Clear the audit context."""
    _audit_context.set(None)


def get_client_ip(
    forwarded_for: str | None,
    client_host: str | None,
    trusted_proxies: list[str] | None = None,
) -> str | None:
    """Extract client IP, honouring X-Forwarded-For only from trusted proxies.

    Args:
        forwarded_for: Value of X-Forwarded-For header (may contain multiple IPs)
        client_host: Direct client host from the connection
        trusted_proxies: Peers allowed to set X-Forwarded-For. None trusts any peer.

    Returns:
        The first valid IP from X-Forwarded-For, or the client host
    """
    if forwarded_for and (trusted_proxies is None or client_host in trusted_proxies):
        candidate = forwarded_for.split(",")[0].strip()
        try:
            ip_address(candidate)
        except ValueError:
            return client_host
        return candidate
    return client_host
