"""CRM integration - GoHighLevel client and best-effort sync."""

from src.onboarding.crm.client import (
    GoHighLevelClient,
    close_crm_client,
    duplicate_contact_id,
    get_crm_client,
)
from src.onboarding.crm.models import CrmContact
from src.onboarding.crm.sync import CrmSync, CrmSyncResult

__all__ = [
    "CrmContact",
    "CrmSync",
    "CrmSyncResult",
    "GoHighLevelClient",
    "close_crm_client",
    "duplicate_contact_id",
    "get_crm_client",
]
