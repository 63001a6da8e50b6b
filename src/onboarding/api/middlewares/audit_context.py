"""Audit context middleware - captures request metadata for audit logging."""

from asgi_correlation_id import correlation_id
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.onboarding.core.audit_context import (
    clear_audit_context,
    get_client_ip,
    set_audit_context,
)
from src.onboarding.core.config import get_settings


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Sets client IP, user agent and request ID for the duration of a request.

    The actor is filled in later by whichever dependency authenticates the caller.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        clear_audit_context()
        try:
            set_audit_context(
                ip_address=get_client_ip(
                    request.headers.get("x-forwarded-for"),
                    request.client.host if request.client else None,
                    get_settings().trusted_proxy_ips,
                ),
                user_agent=request.headers.get("user-agent"),
                request_id=correlation_id.get(),
            )
            return await call_next(request)
        finally:
            clear_audit_context()
