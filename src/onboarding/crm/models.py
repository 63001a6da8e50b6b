"""CRM contact representation shared by the client and the sync layer."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CrmContact(BaseModel):
    """A CRM contact as the client sees it.

    The CRM owns ids, tags and custom fields; this is only a mirror used to
    build requests and read responses.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    email: str | None = None
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    phone: str | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, str] = Field(default_factory=dict, exclude=True)

    def to_payload(self) -> dict[str, Any]:
        """Request body for create/update. Tags are managed through the tag endpoints."""
        payload = self.model_dump(by_alias=True, exclude_none=True, exclude={"id", "tags"})
        if self.custom_fields:
            payload["customFields"] = [
                {"key": key, "field_value": value} for key, value in self.custom_fields.items()
            ]
        return payload

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "CrmContact":
        """Parse a contact from either ``{"contact": {...}}`` or a bare contact object."""
        body = data.get("contact") if isinstance(data.get("contact"), dict) else data
        return cls.model_validate(body)
