"""FastAPI application for the sync engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from syncengine.config import get_settings
from syncengine.database import check_db_ready
from syncengine.models import SyncSource
from syncengine.routers import health_router, sync_router
from syncengine.security import limiter
from syncengine.tasks.scheduler import setup_scheduler, shutdown_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting sync engine...")

    # Verify database is ready
    try:
        await check_db_ready()
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Database not ready: {e}")
        raise

    if settings.scheduler_enabled:
        setup_scheduler()
    else:
        logger.info("Scheduler disabled")

    yield

    # Shutdown
    shutdown_scheduler()
    logger.info("Sync engine shut down")


# Create FastAPI app
app = FastAPI(
    title="Sync Engine API",
    description="Incremental sync of payments, invoices and contacts from external APIs",
    version="0.1.0",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"error": f"Rate limit exceeded: {exc.detail}"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def _error_details(errors) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in errors
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Render payload errors as {error} with the first failure's message."""
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=422,
        content={"error": message, "details": _error_details(errors)},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


# Include routers
app.include_router(health_router)
app.include_router(sync_router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Sync Engine API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
        "sources": [source.value for source in SyncSource],
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "syncengine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
