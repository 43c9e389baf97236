"""API routers."""

from app.routers.health import router as health_router
from app.routers.issues import router as issues_router
from app.routers.notifications import router as notifications_router

__all__ = ["health_router", "issues_router", "notifications_router"]
