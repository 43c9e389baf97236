"""Injectable time source."""

from collections.abc import Callable
from datetime import UTC, datetime

# Any zero-argument callable returning an aware UTC datetime.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)
