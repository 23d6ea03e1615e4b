"""Client for the secondary payments provider (PayPal-compatible reporting API)."""

import logging
from datetime import datetime
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


class PaymentsSecondaryClient(ProviderClient):
    """
    Transaction search is page-numbered ({page, total_pages}) and limited to
    31-day windows, so callers query history in date chunks.
    """

    provider_name = "payments-secondary"

    def __init__(
        self,
        client_id: str | None = settings.payments_secondary_client_id,
        secret: str | None = settings.payments_secondary_secret,
        base_url: str = settings.payments_secondary_base_url,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url, transport=transport)
        self.client_id = client_id
        self.secret = secret
        self._access_token: str | None = None

    async def get_access_token(self) -> str:
        """Exchange client credentials for a bearer token (cached per client)."""
        if self._access_token:
            return self._access_token
        if not self.client_id or not self.secret:
            raise ProviderNotConfiguredError(
                "payments-secondary credentials not configured", code="not_configured"
            )

        data = await self._request(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.secret),
        )
        self._access_token = data["access_token"]
        return self._access_token

    async def search_transactions(
        self,
        start_date: datetime,
        end_date: datetime,
        page: int = 1,
        page_size: int = 100,
    ) -> dict[str, Any]:
        """Fetch one page of transactions within [start_date, end_date]."""
        token = await self.get_access_token()
        params = {
            "start_date": start_date.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "end_date": end_date.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "page_size": page_size,
            "page": page,
            "fields": "transaction_info,payer_info,cart_info",
        }

        try:
            return await self._request(
                "GET",
                "/v1/reporting/transactions",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except ProviderError as e:
            # An empty window is reported as an error by this API.
            if e.status_code == 404 or "NO_DATA" in str(e):
                logger.info(f"No transactions between {start_date} and {end_date}")
                return {"transaction_details": [], "page": page, "total_pages": 0}
            if e.status_code == 401:
                self._access_token = None
            raise
