"""External CRM client."""
from dealflow_sync_core.crm.client import CrmClient, Page, get_client, raise_for_response

__all__ = ["CrmClient", "Page", "get_client", "raise_for_response"]
