"""Admin Basic-Auth dependency."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from src.onboarding.core.audit_context import set_audit_actor
from src.onboarding.core.config import get_settings
from src.onboarding.core.exceptions import Forbidden, Unauthorized
from src.onboarding.core.logging import get_logger
from src.onboarding.core.security import credentials_match

logger = get_logger(__name__)

basic_auth = HTTPBasic(auto_error=False)


async def require_admin(
    credentials: Annotated[HTTPBasicCredentials | None, Depends(basic_auth)],
) -> str:
    """Validate admin Basic-Auth credentials and return the admin username.

    Missing credentials answer 401 with a Basic challenge; wrong credentials 403.
    """
    settings = get_settings()
    if not settings.admin_username or not settings.admin_password:
        logger.error("Admin credentials not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin credentials not configured",
        )

    if credentials is None:
        raise Unauthorized(
            "Authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )

    # Evaluate both comparisons so timing does not reveal which one failed
    username_ok = credentials_match(credentials.username, settings.admin_username)
    password_ok = credentials_match(credentials.password, settings.admin_password)
    if not (username_ok and password_ok):
        logger.warning("Admin authentication failed")
        raise Forbidden("Invalid credentials")

    set_audit_actor(f"admin:{credentials.username}")
    return credentials.username


AdminUser = Annotated[str, Depends(require_admin)]
