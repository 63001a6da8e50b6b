"""Profile image cleanup against the external blob store."""

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from src.onboarding.core.config import Settings
from src.onboarding.core.logging import get_logger
from src.onboarding.core.metrics import record_external_call
from src.onboarding.models import User

logger = get_logger(__name__)


@dataclass
class CleanupResult:
    success: bool
    skipped: bool = False
    error: str | None = None

    def to_status(self) -> dict[str, Any]:
        return {"success": self.success, "skipped": self.skipped, "error": self.error}


class ProfileImageStore:
    """Deletes a user's profile image by its object key. Never raises."""

    def __init__(
        self,
        base_url: str | None,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.token = token
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProfileImageStore":
        return cls(settings.profile_image_store_url, settings.profile_image_store_token)

    def object_key(self, image_url: str) -> str:
        """Object key for an image URL: the path relative to the store, or the URL path."""
        if self.base_url and image_url.startswith(self.base_url + "/"):
            return image_url[len(self.base_url) + 1 :]
        return urlparse(image_url).path.lstrip("/")

    async def delete_for_user(self, user: User) -> CleanupResult:
        if not user.profile_picture_url:
            return CleanupResult(success=True, skipped=True)
        if not self.base_url:
            return CleanupResult(
                success=False, skipped=True, error="Profile image store not configured"
            )

        key = self.object_key(user.profile_picture_url)
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.delete(f"{self.base_url}/{key}", headers=headers)
        except httpx.HTTPError as e:
            record_external_call("profile_images", "delete", False)
            logger.warning("Profile image delete failed", user_id=str(user.id), error=str(e))
            return CleanupResult(success=False, error=str(e) or type(e).__name__)

        # 404: already gone
        if response.is_success or response.status_code == 404:
            record_external_call("profile_images", "delete", True)
            return CleanupResult(success=True)
        record_external_call("profile_images", "delete", False)
        error = f"Profile image store returned {response.status_code}"
        logger.warning("Profile image delete failed", user_id=str(user.id), error=error)
        return CleanupResult(success=False, error=error)
