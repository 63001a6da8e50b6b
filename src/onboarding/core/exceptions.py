"""Domain error taxonomy and exception handlers with request_id in responses."""

from typing import Any

from asgi_correlation_id import correlation_id
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.onboarding.core.logging import get_logger

logger = get_logger(__name__)


class OnboardingError(Exception):
    """Base class for expected, user-facing outcomes.

    Subclasses carry the HTTP status they map to. ``extra`` is merged into the
    JSON error body (e.g. the payload keys a webhook actually carried).
    """

    status_code: int = 500
    default_detail: str = "Request failed"

    def __init__(
        self,
        detail: str | None = None,
        *,
        extra: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.detail = detail or self.default_detail
        self.extra = extra or {}
        self.headers = headers
        super().__init__(self.detail)


class Conflict(OnboardingError):
    """Uniqueness violation - email, username or token collision."""

    status_code = 409
    default_detail = "Resource already exists"


class NotFound(OnboardingError):
    status_code = 404
    default_detail = "Not found"


class Expired(OnboardingError):
    status_code = 400
    default_detail = "Invitation has expired"


class AlreadyUsed(OnboardingError):
    status_code = 400
    default_detail = "Invitation has already been used"


class Unauthorized(OnboardingError):
    status_code = 401
    default_detail = "Unauthorized"


class Forbidden(Unauthorized):
    """Credentials were supplied but do not match."""

    status_code = 403
    default_detail = "Forbidden"


class Invalid(OnboardingError):
    status_code = 400
    default_detail = "Invalid request"


class RateLimited(OnboardingError):
    status_code = 429
    default_detail = "Too many requests"


class Unavailable(OnboardingError):
    """A dependency (database, CRM, email provider) could not be reached."""

    status_code = 500
    default_detail = "Service temporarily unavailable"


class Internal(OnboardingError):
    status_code = 500
    default_detail = "Internal server error"


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers that include request_id in responses."""

    @app.exception_handler(StarletteHTTPException)
    async def starlette_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "request_id": correlation_id.get(),
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "request_id": correlation_id.get(),
            },
            headers=exc.headers,
        )

    @app.exception_handler(OnboardingError)
    async def onboarding_error_handler(request: Request, exc: OnboardingError) -> JSONResponse:
        request_id = correlation_id.get()
        if isinstance(exc, Internal):
            logger.error(
                "Internal error",
                detail=exc.detail,
                request_id=request_id,
                path=request.url.path,
            )
            # Never leak internal details
            content: dict[str, Any] = {"detail": Internal.default_detail}
        else:
            logger.info(
                "Request rejected",
                error=type(exc).__name__,
                status_code=exc.status_code,
                path=request.url.path,
            )
            content = {"detail": exc.detail, **exc.extra}
        content["request_id"] = request_id
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = correlation_id.get()
        logger.exception(
            "Unhandled exception",
            exc_info=exc,
            request_id=request_id,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "request_id": request_id,
            },
        )
