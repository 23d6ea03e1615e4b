"""API routers."""

from syncengine.routers.health import router as health_router
from syncengine.routers.sync import router as sync_router

__all__ = ["health_router", "sync_router"]
