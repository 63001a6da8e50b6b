"""GoHighLevel contact API client.

One normalized interface over an API whose error shapes are inconsistent:
a duplicate on create comes back as a 400 carrying the existing contact id,
which ``upsert`` turns into an update of that contact.

Every call has a timeout and is retried once on 5xx, 429, timeout or
transport failure. Other 4xx responses raise Invalid without retry; exhausted
retries raise Unavailable. Best-effort callers wrap this client with
``CrmSync``, which converts all of it into result objects.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from src.onboarding.core.config import Settings, get_settings
from src.onboarding.core.exceptions import Invalid, Unavailable
from src.onboarding.core.logging import get_logger, mask_email
from src.onboarding.core.metrics import record_external_call
from src.onboarding.crm.models import CrmContact

logger = get_logger(__name__)

MAX_ATTEMPTS = 2


def duplicate_contact_id(body: Any) -> str | None:
    """Extract the existing contact id from a duplicate-on-create error body."""
    if not isinstance(body, dict):
        return None
    meta = body.get("meta")
    if isinstance(meta, dict):
        if meta.get("contactId"):
            return str(meta["contactId"])
        contact = meta.get("contact")
        if isinstance(contact, dict) and contact.get("id"):
            return str(contact["id"])
    if body.get("contactId"):
        return str(body["contactId"])
    return None


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _json_object(response: httpx.Response) -> dict[str, Any]:
    """The response body when it is a JSON object, otherwise empty."""
    body = _json_or_none(response)
    return body if isinstance(body, dict) else {}


def _error_message(response: httpx.Response) -> str:
    body = _json_or_none(response)
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body.get("msg")
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        if message:
            return f"CRM returned {response.status_code}: {message}"
    return f"CRM returned {response.status_code}"


class GoHighLevelClient:
    """Async client for the contacts API of one CRM location."""

    def __init__(
        self,
        api_key: str,
        location_id: str,
        *,
        base_url: str = "https://services.leadconnectorhq.com",
        api_version: str = "2021-07-28",
        timeout: float = 10.0,
        retry_backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.location_id = location_id
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Version": api_version,
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "GoHighLevelClient | None":
        """Build a client, or None when CRM credentials are not configured."""
        if not settings.crm_api_key or not settings.crm_location_id:
            return None
        return cls(
            settings.crm_api_key,
            settings.crm_location_id,
            base_url=settings.crm_base_url,
            api_version=settings.crm_api_version,
            timeout=settings.crm_timeout_seconds,
            retry_backoff=settings.crm_retry_backoff_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request, retrying once on transient failure.

        Returns any non-transient response (2xx or 4xx) for the caller to interpret.
        """
        last_error = ""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await self._client.request(method, path, json=json, params=params)
            except httpx.TimeoutException:
                last_error = "CRM request timed out"
            except httpx.TransportError as e:
                last_error = f"CRM transport error: {e}"
            else:
                if response.status_code < 500 and response.status_code != 429:
                    return response
                last_error = _error_message(response)

            logger.warning(
                "CRM request failed",
                operation=operation,
                attempt=attempt,
                error=last_error,
            )
            if attempt < MAX_ATTEMPTS:
                await self._sleep(self.retry_backoff)

        record_external_call("crm", operation, False)
        raise Unavailable(last_error)

    def _raise_for_client_error(self, response: httpx.Response, operation: str) -> None:
        if response.is_success:
            record_external_call("crm", operation, True)
            return
        record_external_call("crm", operation, False)
        raise Invalid(_error_message(response))

    async def lookup(self, email: str) -> CrmContact | None:
        """Find a contact by email in this location. None when there is no match."""
        response = await self._request(
            "GET",
            "/contacts/search/duplicate",
            "lookup",
            params={"locationId": self.location_id, "email": email.strip().lower()},
        )
        if response.status_code == 404:
            record_external_call("crm", "lookup", True)
            return None
        self._raise_for_client_error(response, "lookup")

        body = _json_object(response)
        contact = body.get("contact")
        contacts = body.get("contacts")
        if not contact and isinstance(contacts, list) and contacts:
            contact = contacts[0]
        if not isinstance(contact, dict) or not contact:
            return None
        return CrmContact.model_validate(contact)

    async def get(self, contact_id: str) -> CrmContact | None:
        response = await self._request("GET", f"/contacts/{contact_id}", "get")
        if response.status_code == 404:
            record_external_call("crm", "get", True)
            return None
        self._raise_for_client_error(response, "get")
        return CrmContact.from_response(_json_object(response))

    async def upsert(self, contact: CrmContact) -> CrmContact:
        """Create the contact, or update it when it already exists.

        A create rejected as a duplicate is treated as success: the existing
        id is taken from the error body and the contact is updated instead.
        """
        if contact.id:
            return await self._update(contact.id, contact)

        payload = {**contact.to_payload(), "locationId": self.location_id}
        response = await self._request("POST", "/contacts/", "create", json=payload)
        if response.status_code == 400:
            existing_id = duplicate_contact_id(_json_or_none(response))
            if existing_id:
                logger.info(
                    "CRM reported duplicate contact, updating existing",
                    contact_id=existing_id,
                    email=mask_email(contact.email),
                )
                return await self._update(existing_id, contact)
        self._raise_for_client_error(response, "create")

        created = CrmContact.from_response(_json_object(response))
        logger.info("CRM contact created", contact_id=created.id)
        return created

    async def _update(self, contact_id: str, contact: CrmContact) -> CrmContact:
        response = await self._request(
            "PUT", f"/contacts/{contact_id}", "update", json=contact.to_payload()
        )
        self._raise_for_client_error(response, "update")
        updated = CrmContact.from_response(_json_object(response))
        # Some API versions answer an update without echoing the id
        return updated.model_copy(update={"id": updated.id or contact_id})

    async def add_note(self, contact_id: str, text: str) -> str | None:
        """Attach a note to the contact. Returns the note id when the CRM reports one."""
        response = await self._request(
            "POST", f"/contacts/{contact_id}/notes", "add_note", json={"body": text}
        )
        self._raise_for_client_error(response, "add_note")
        body = _json_object(response)
        note = body.get("note") if isinstance(body.get("note"), dict) else body
        return note.get("id") if isinstance(note, dict) else None

    async def add_tags(self, contact_id: str, tags: list[str]) -> None:
        response = await self._request(
            "POST", f"/contacts/{contact_id}/tags", "add_tags", json={"tags": tags}
        )
        self._raise_for_client_error(response, "add_tags")

    async def remove_tags(self, contact_id: str, tags: list[str]) -> None:
        response = await self._request(
            "DELETE", f"/contacts/{contact_id}/tags", "remove_tags", json={"tags": tags}
        )
        self._raise_for_client_error(response, "remove_tags")

    async def delete_contact(self, contact_id: str) -> bool:
        """Delete a contact. Returns False if it was already gone."""
        response = await self._request("DELETE", f"/contacts/{contact_id}", "delete")
        if response.status_code == 404:
            record_external_call("crm", "delete", True)
            return False
        self._raise_for_client_error(response, "delete")
        return True


_client: GoHighLevelClient | None = None
_client_initialized = False


def get_crm_client() -> GoHighLevelClient | None:
    """Get the process-wide CRM client, or None when the CRM is not configured."""
    global _client, _client_initialized
    if not _client_initialized:
        _client = GoHighLevelClient.from_settings(get_settings())
        _client_initialized = True
        if _client is None:
            logger.info("CRM credentials not set - CRM sync disabled")
    return _client


async def close_crm_client() -> None:
    """Close the CRM client's connection pool. Call during shutdown."""
    global _client, _client_initialized
    if _client is not None:
        await _client.aclose()
    _client = None
    _client_initialized = False
