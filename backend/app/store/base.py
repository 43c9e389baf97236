"""Port definitions for the issue store.

Responsibilities:
  - Define the persistence contract the lifecycle services depend on.
Must not:
  - Implement logic; interfaces only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from app.domain import BoundingBox, Category, Department, Issue, User

if TYPE_CHECKING:
    from app.notifications.message import Notification


class IssueStore(Protocol):
    """
    Persistence for issues and the reference data around them.

    Reads return detached copies. `save_issue` applies an optimistic
    version check: it fails with ConcurrentModificationError when the
    stored version differs from `issue.version`, and bumps the version of
    both the stored row and the passed issue on success.
    """

    async def add_issue(self, issue: Issue) -> Issue:
        """Insert a new issue, assigning its human-readable number."""
        ...

    async def get_issue(self, issue_id: str) -> Issue | None:
        ...

    async def save_issue(self, issue: Issue) -> Issue:
        ...

    async def save_issues(self, *issues: Issue) -> list[Issue]:
        """Save several issues atomically: every version check passes or none is written."""
        ...

    async def increment_view_count(self, issue_id: str) -> int:
        """Count a view without touching the version; returns the new total.

        `save_issue` never writes `view_count`, so reads cannot conflict with writers.
        """
        ...

    async def find_in_bounding_box(
        self,
        box: BoundingBox,
        *,
        category_id: str | None = None,
        since: datetime | None = None,
        include_archived: bool = False,
    ) -> list[Issue]:
        """Issues whose location falls inside `box` (first, cheap search phase)."""
        ...

    async def find_by_category_window(
        self, category_id: str, since: datetime
    ) -> list[Issue]:
        ...

    async def find_overdue_candidates(self, now: datetime) -> list[Issue]:
        """Non-terminal issues past their SLA deadline and not yet notified."""
        ...

    async def issue_statistics(self) -> dict[str, Any]:
        ...

    async def get_category(self, category_id: str) -> Category | None:
        ...

    async def get_department(self, department_id: str) -> Department | None:
        ...

    async def get_user(self, user_id: str) -> User | None:
        ...

    async def list_department_staff(self, department_id: str) -> list[User]:
        ...

    async def list_staff(self) -> list[User]:
        ...

    async def record_notification(self, notification: Notification) -> None:
        """
        Persist the log row for a notification, replacing any earlier row
        with the same id. A row's read marker is never overwritten here.
        """
        ...

    async def list_inbox(
        self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> tuple[list[Notification], int]:
        """
        A page of the user's sent in-app notifications, newest first.

        Returns:
            (page, total matching entries)
        """
        ...

    async def count_unread(self, user_id: str) -> int:
        ...

    async def set_inbox_read(
        self, user_id: str, notification_ids: list[str] | None, read_at: datetime | None
    ) -> int:
        """
        Mark inbox entries read (`read_at` set) or unread (`read_at` None).

        `notification_ids` None means every entry of the user. Entries that
        are already read keep their first read time. Ids outside the user's
        inbox are ignored.

        Returns:
            Number of entries changed
        """
        ...
