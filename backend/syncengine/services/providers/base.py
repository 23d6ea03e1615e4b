"""Shared HTTP plumbing for external provider clients."""

import logging
from typing import Any

import httpx

from syncengine.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class ProviderError(Exception):
    """
    Error raised by a provider client.

    `code` carries the HTTP status (as a string) or the transport error class
    name so retry allow-lists can match on it; `message` carries the
    provider's own error text when the response body has one. The raw body
    is kept on `body` and stays out of str(error).
    """

    def __init__(
        self,
        detail: str,
        status_code: int | None = None,
        code: str | None = None,
        message: str | None = None,
        body: str | None = None,
    ):
        super().__init__(detail)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.body = body

    @property
    def is_authorization_error(self) -> bool:
        return self.status_code in (401, 403)


class ProviderNotConfiguredError(ProviderError):
    """Raised when credentials for a provider are missing."""

    pass


def _provider_message(response: httpx.Response) -> str | None:
    """Pull a human-readable error out of a JSON error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None

    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or error.get("type")
    if isinstance(error, str):
        return body.get("error_description") or error
    return body.get("message") or body.get("name")


class ProviderClient:
    """
    Base client issuing exactly one HTTP request per call.

    Retries and pacing are the caller's job (retry_with_backoff and
    RateLimiter); this layer only translates failures into ProviderError.
    """

    provider_name = "provider"

    def __init__(
        self,
        base_url: str,
        timeout: float = settings.http_timeout_seconds,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Injected in tests (httpx.MockTransport)
        self.transport = transport
        self.headers: dict[str, str] = {"Accept": "application/json"}

    def _auth_headers(self) -> dict[str, str]:
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | tuple[str, str] | None = None,
    ) -> Any:
        """Make a single HTTP request and return the decoded JSON body."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        request_headers = {**self.headers, **self._auth_headers(), **(headers or {})}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    data=data,
                    headers=request_headers,
                    auth=auth,
                )
                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            provider_message = _provider_message(e.response)
            logger.warning(f"{self.provider_name} returned HTTP {status} for {method} {path}")
            detail = f"{self.provider_name} HTTP {status}"
            if provider_message:
                detail = f"{detail}: {provider_message}"
            raise ProviderError(
                detail,
                status_code=status,
                code=str(status),
                message=provider_message,
                body=e.response.text[:500],
            ) from e

        except httpx.RequestError as e:
            logger.warning(f"{self.provider_name} request error for {method} {path}: {e!r}")
            raise ProviderError(
                f"{self.provider_name} request error: {e!r}",
                code=type(e).__name__,
            ) from e
