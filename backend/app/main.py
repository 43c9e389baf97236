"""FastAPI application for the civic issue lifecycle backend."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from app.config import get_settings
from app.database import async_session_maker, check_db_ready
from app.domain.errors import (
    ConcurrentModificationError,
    IssueLifecycleError,
    IssueNotFound,
)
from app.routers import health_router, issues_router, notifications_router
from app.services.container import build_services
from app.store.sql import SqlIssueStore
from app.tasks.scheduler import setup_scheduler, shutdown_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting civic issues backend...")

    # Verify database is ready
    try:
        await check_db_ready()
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Database not ready: {e}")
        raise

    services = build_services(settings, SqlIssueStore(async_session_maker))
    app.state.services = services

    # Notification worker, then scheduled jobs that feed it
    services.queue.start()
    setup_scheduler(services)

    yield

    # Shutdown
    shutdown_scheduler()
    undelivered = await services.queue.stop()
    if undelivered:
        logger.warning(f"{len(undelivered)} notifications were not delivered")
    logger.info("Civic issues backend shut down")


# Create FastAPI app
app = FastAPI(
    title="Civic Issues API",
    description="Issue lifecycle and notification delivery for civic issue reporting",
    version="0.1.0",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(IssueLifecycleError)
async def lifecycle_exception_handler(request: Request, exc: IssueLifecycleError):
    """Map rejected lifecycle operations to client errors."""
    if isinstance(exc, IssueNotFound):
        status_code = 404
    elif isinstance(exc, ConcurrentModificationError):
        status_code = 409
    else:
        status_code = 422
    logger.info(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(health_router)
app.include_router(issues_router, prefix=settings.api_v1_prefix)
app.include_router(notifications_router, prefix=settings.api_v1_prefix)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Civic Issues API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
