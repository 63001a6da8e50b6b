"""Best-effort side-effect status objects, reported next to authoritative results."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class EmailStatusRead(BaseModel):
    """Email delivery status, separate from the account result."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sent: bool
    message_id: str | None = None
    error: str | None = None
    attempts: int = 0
    timestamp: str | None = None
    service_provider: str | None = None


class CrmStatusRead(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    synced: bool
    contact_id: str | None = None
    action: str | None = None
    error: str | None = None
    skipped: bool = False


class CleanupStatusRead(BaseModel):
    success: bool
    skipped: bool = False
    error: str | None = None
