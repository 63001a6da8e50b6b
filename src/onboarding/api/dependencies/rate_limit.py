"""Rate limit dependency - fixed window per client IP."""

from fastapi import Depends, Request

from src.onboarding.core.audit_context import get_client_ip
from src.onboarding.core.config import get_settings
from src.onboarding.core.exceptions import RateLimited
from src.onboarding.core.logging import get_logger
from src.onboarding.core.rate_limit import RateLimiter, get_rate_limiter

logger = get_logger(__name__)


def client_ip(request: Request) -> str:
    settings = get_settings()
    ip = get_client_ip(
        request.headers.get("x-forwarded-for"),
        request.client.host if request.client else None,
        settings.trusted_proxy_ips,
    )
    return ip or "unknown"


async def enforce_rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    """Count this request against the caller's window; 429 once the window is full."""
    ip = client_ip(request)
    # Each endpoint gets its own window
    result = await limiter.hit(f"{request.url.path}:{ip}")
    if not result.allowed:
        logger.warning("Rate limit exceeded", path=request.url.path, client_ip=ip)
        raise RateLimited(
            f"Too many requests. Try again in {result.retry_after} seconds.",
            extra={"retryAfter": result.retry_after},
            headers={
                "Retry-After": str(result.retry_after),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": "0",
            },
        )


RateLimit = Depends(enforce_rate_limit)
