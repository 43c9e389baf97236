"""Health and readiness endpoints."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from app.routers.deps import Services

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    notification_queue: dict[str, Any]
    issues: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(services: Services) -> HealthResponse:
    """
    Health check endpoint with queue and issue status.

    Reports the notification worker state and aggregate issue counts.
    """
    queue = services.queue.stats()
    return HealthResponse(
        status="healthy" if queue["running"] else "degraded",
        timestamp=datetime.now(UTC),
        notification_queue=queue,
        issues=await services.store.issue_statistics(),
    )


@router.get("/ready")
async def readiness_check() -> dict:
    """Simple readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict:
    """Simple liveness check for container orchestration."""
    return {"status": "alive"}
