"""Client for the primary payments provider (Stripe-compatible list API)."""

import logging
from datetime import datetime
from typing import Any

import httpx

from syncengine.config import get_settings
from syncengine.services.providers.base import ProviderClient, ProviderNotConfiguredError

logger = logging.getLogger(__name__)
settings = get_settings()


class PaymentsPrimaryClient(ProviderClient):
    """
    List endpoints return {"data": [...], "has_more": bool}; the next page is
    requested with starting_after=<id of the last item>.
    """

    provider_name = "payments-primary"

    def __init__(
        self,
        api_key: str | None = settings.payments_primary_api_key,
        base_url: str = settings.payments_primary_base_url,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url, transport=transport)
        self.api_key = api_key

    def _auth_headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ProviderNotConfiguredError(
                "payments-primary API key not configured", code="not_configured"
            )
        return {"Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def _list_params(
        limit: int,
        starting_after: str | None,
        created_gte: datetime | None,
        created_lte: datetime | None,
        expand: list[str] | None = None,
    ) -> list[tuple[str, Any]]:
        params: list[tuple[str, Any]] = [("limit", limit)]
        if starting_after:
            params.append(("starting_after", starting_after))
        if created_gte:
            params.append(("created[gte]", int(created_gte.timestamp())))
        if created_lte:
            params.append(("created[lte]", int(created_lte.timestamp())))
        for field in expand or []:
            params.append(("expand[]", field))
        return params

    async def list_payment_intents(
        self,
        starting_after: str | None = None,
        limit: int = 100,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> dict[str, Any]:
        """Fetch one page of payment intents, newest first."""
        params = self._list_params(
            limit, starting_after, created_gte, created_lte, expand=["data.customer"]
        )
        logger.debug(f"Fetching payment intents: limit={limit}, starting_after={starting_after}")
        return await self._request("GET", "/payment_intents", params=params)

    async def list_invoices(
        self,
        starting_after: str | None = None,
        limit: int = 100,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> dict[str, Any]:
        """Fetch one page of invoices, newest first."""
        params = self._list_params(limit, starting_after, created_gte, created_lte)
        logger.debug(f"Fetching invoices: limit={limit}, starting_after={starting_after}")
        return await self._request("GET", "/invoices", params=params)
