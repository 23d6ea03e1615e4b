"""Client for the CRM platform's contact search (GoHighLevel-compatible)."""

import logging
from typing import Any

import httpx

from syncengine.config import get_settings
from syncengine.services.providers.base import ProviderClient, ProviderNotConfiguredError

logger = logging.getLogger(__name__)
settings = get_settings()


class CRMClient(ProviderClient):
    """
    Contact search pages with a compound searchAfter cursor [timestamp, id].

    Each contact may carry its own `searchAfter` pair; callers synthesize one
    from `dateAdded` and `id` when it is missing.
    """

    provider_name = "crm"

    def __init__(
        self,
        api_key: str | None = settings.crm_api_key,
        location_id: str | None = settings.crm_location_id,
        base_url: str = settings.crm_base_url,
        api_version: str = settings.crm_api_version,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url, transport=transport)
        self.api_key = api_key
        self.location_id = location_id
        self.headers["Version"] = api_version

    def _auth_headers(self) -> dict[str, str]:
        if not self.api_key or not self.location_id:
            raise ProviderNotConfiguredError("CRM credentials not configured", code="not_configured")
        return {"Authorization": f"Bearer {self.api_key}"}

    async def search_contacts(
        self,
        search_after: list[Any] | None = None,
        page_limit: int = 100,
    ) -> dict[str, Any]:
        """Fetch one page of contacts."""
        body: dict[str, Any] = {
            "locationId": self.location_id,
            "pageLimit": page_limit,
        }
        if search_after:
            body["searchAfter"] = search_after

        logger.debug(f"Searching CRM contacts: page_limit={page_limit}, searchAfter={search_after}")
        return await self._request("POST", "/contacts/search", json=body)
