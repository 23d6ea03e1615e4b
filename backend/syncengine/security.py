"""Shared-secret authorization for the trigger surface."""

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from syncengine.config import Settings, get_settings

logger = logging.getLogger(__name__)


async def require_admin_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_admin_key: Annotated[str | None, Header()] = None,
) -> None:
    """Reject the request with 403 unless x-admin-key matches ADMIN_API_KEY."""
    if not settings.admin_api_key:
        logger.warning("ADMIN_API_KEY is not configured; rejecting admin request")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    if x_admin_key is None or not secrets.compare_digest(
        x_admin_key.encode(), settings.admin_api_key.encode()
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


# Request throttle for the trigger surface (slowapi, keyed by client address)
limiter = Limiter(key_func=get_remote_address)
