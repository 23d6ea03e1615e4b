"""Client for the messaging platform's subscriber lookup (ManyChat-compatible)."""

import logging
from typing import Any

import httpx

from syncengine.config import get_settings
from syncengine.services.providers.base import (
    ProviderClient,
    ProviderError,
    ProviderNotConfiguredError,
)

logger = logging.getLogger(__name__)
settings = get_settings()


class MessagingClient(ProviderClient):
    """
    The messaging platform cannot list subscribers; they are looked up one at
    a time by a known system field (email).
    """

    provider_name = "messaging"

    def __init__(
        self,
        api_key: str | None = settings.messaging_api_key,
        base_url: str = settings.messaging_base_url,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url, transport=transport)
        self.api_key = api_key

    def _auth_headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ProviderNotConfiguredError(
                "messaging API key not configured", code="not_configured"
            )
        return {"Authorization": f"Bearer {self.api_key}"}

    async def find_subscriber_by_email(self, email: str) -> dict[str, Any] | None:
        """Return the subscriber for `email`, or None when there is none."""
        try:
            data = await self._request(
                "POST",
                "/fb/subscriber/findBySystemField",
                json={"field_name": "email", "field_value": email},
            )
        except ProviderError as e:
            if e.status_code == 404:
                return None
            raise

        if data.get("status") != "success" or not data.get("data"):
            return None
        return data["data"]
