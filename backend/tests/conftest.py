"""Pytest fixtures for civic issues backend tests."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.domain import (
    Category,
    Department,
    GeoPoint,
    IssuePriority,
    NotificationPreferences,
    User,
    UserRole,
)
from app.main import app
from app.notifications.message import DeliveryResult
from app.services.container import AppServices, build_services
from app.store.memory import InMemoryIssueStore

# Reference point for test issues (Connaught Place, New Delhi)
CENTER = GeoPoint(latitude=28.6315, longitude=77.2167)

# One degree of latitude on the haversine sphere, in meters
METERS_PER_DEGREE = 111_194.9


def offset_north(point: GeoPoint, meters: float) -> GeoPoint:
    """Point `meters` due north of `point`."""
    return GeoPoint(
        latitude=point.latitude + meters / METERS_PER_DEGREE, longitude=point.longitude
    )


class FrozenClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta | None = None, **kwargs) -> datetime:
        self.now += delta or timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at a Monday morning."""
    return FrozenClock(datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC))


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with safe defaults."""
    return Settings(
        database_url="postgresql+asyncpg://localhost:5432/civic_issues_test",
        notification_max_retries=3,
        notification_retry_delay_seconds=5.0,
        notification_poll_interval_seconds=0.01,
        debug=True,
    )


@pytest.fixture
def store() -> InMemoryIssueStore:
    """In-memory store seeded with departments, categories and users."""
    store = InMemoryIssueStore()

    store.add_department(
        Department(id="dept-roads", name="Roads Department", code="ROADS")
    )
    store.add_department(
        Department(id="dept-water", name="Water Board", code="WATER")
    )
    store.add_department(
        Department(id="dept-old", name="Old Works", code="OLD", is_active=False)
    )

    store.add_category(
        Category(
            id="cat-pothole",
            name="Pothole",
            code="POTHOLE",
            sla_hours=72,
            default_priority=IssuePriority.MEDIUM,
            department_id="dept-roads",
        )
    )
    store.add_category(
        Category(
            id="cat-streetlight",
            name="Streetlight",
            code="STREETLIGHT",
            sla_hours=48,
            default_priority=IssuePriority.LOW,
            department_id="dept-roads",
        )
    )
    store.add_category(
        Category(
            id="cat-retired",
            name="Retired",
            code="RETIRED",
            sla_hours=24,
            is_active=False,
        )
    )

    store.add_user(
        User(
            id="citizen-1",
            full_name="Asha Rao",
            email="asha@example.com",
            notification_preferences=NotificationPreferences(push=False),
        )
    )
    store.add_user(
        User(
            id="citizen-2",
            full_name="Vikram Sen",
            email="vikram@example.com",
            notification_preferences=NotificationPreferences(push=False),
        )
    )
    store.add_user(
        User(
            id="citizen-muted",
            full_name="Quiet Citizen",
            email="quiet@example.com",
            notification_preferences=NotificationPreferences(issue_updates=False),
        )
    )
    store.add_user(
        User(
            id="staff-roads",
            full_name="Meera Iyer",
            email="meera@roads.example.gov",
            role=UserRole.STAFF,
            department_id="dept-roads",
            notification_preferences=NotificationPreferences(push=False, in_app=False),
        )
    )
    store.add_user(
        User(
            id="head-roads",
            full_name="Ravi Kumar",
            email="ravi@roads.example.gov",
            role=UserRole.DEPARTMENT_HEAD,
            department_id="dept-roads",
            notification_preferences=NotificationPreferences(push=False, in_app=False),
        )
    )
    store.add_user(
        User(
            id="staff-water",
            full_name="Nita Das",
            email="nita@water.example.gov",
            role=UserRole.STAFF,
            department_id="dept-water",
            notification_preferences=NotificationPreferences(push=False, in_app=False),
        )
    )
    store.add_user(
        User(
            id="staff-inactive",
            full_name="Former Staff",
            email="former@roads.example.gov",
            role=UserRole.STAFF,
            department_id="dept-roads",
            is_active=False,
        )
    )
    return store


@pytest.fixture
def sender() -> AsyncMock:
    """Channel sender that always succeeds."""
    sender = AsyncMock()
    sender.send.return_value = DeliveryResult.ok("msg-1")
    return sender


@pytest.fixture
def services(test_settings, store, sender, clock) -> AppServices:
    """Service graph around the seeded store; the queue worker is not started."""
    return build_services(test_settings, store, sender=sender, clock=clock)


@pytest.fixture
def issue_service(services):
    return services.issues


@pytest.fixture
def report(issue_service):
    """Factory that reports an issue through the service."""

    async def _report(**overrides):
        fields = {
            "title": "Deep pothole on Janpath",
            "description": "A large pothole near the bus stop is damaging vehicles.",
            "category_id": "cat-pothole",
            "location": CENTER,
            "reported_by": "citizen-1",
        }
        fields.update(overrides)
        result = await issue_service.create_issue(**fields)
        return result.issue

    return _report


@pytest_asyncio.fixture
async def client(services: AppServices) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client wired to in-memory services."""
    app.state.services = services
    app.state.limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.state.limiter.enabled = True
    del app.state.services
