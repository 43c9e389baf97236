"""In-memory issue store for tests and local runs."""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.domain import (
    BoundingBox,
    Category,
    Department,
    Issue,
    IssuePriority,
    IssueStatus,
    NotificationChannel,
    NotificationStatus,
    User,
)
from app.domain.errors import ConcurrentModificationError, IssueNotFound

if TYPE_CHECKING:
    from app.notifications.message import Notification

logger = logging.getLogger(__name__)

_SLA_EXEMPT = frozenset(
    {IssueStatus.RESOLVED, IssueStatus.CLOSED, IssueStatus.REJECTED, IssueStatus.DUPLICATE}
)


class InMemoryIssueStore:
    """
    Dict-backed implementation of IssueStore.

    Every read returns a deep copy and every write stores one, so callers
    can never mutate stored state behind the version check.
    """

    def __init__(self):
        self._issues: dict[str, Issue] = {}
        self._categories: dict[str, Category] = {}
        self._departments: dict[str, Department] = {}
        self._users: dict[str, User] = {}
        self.notification_log: list[Notification] = []
        self._sequence = itertools.count(1)
        self._lock = asyncio.Lock()

    # ==================== Reference data ====================

    def add_category(self, category: Category) -> Category:
        self._categories[category.id] = copy.deepcopy(category)
        return category

    def add_department(self, department: Department) -> Department:
        self._departments[department.id] = copy.deepcopy(department)
        return department

    def add_user(self, user: User) -> User:
        self._users[user.id] = copy.deepcopy(user)
        return user

    async def get_category(self, category_id: str) -> Category | None:
        category = self._categories.get(category_id)
        return copy.deepcopy(category) if category else None

    async def get_department(self, department_id: str) -> Department | None:
        department = self._departments.get(department_id)
        return copy.deepcopy(department) if department else None

    async def get_user(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def list_department_staff(self, department_id: str) -> list[User]:
        return [
            copy.deepcopy(user)
            for user in self._users.values()
            if user.is_staff and user.is_active and user.department_id == department_id
        ]

    async def list_staff(self) -> list[User]:
        return [
            copy.deepcopy(user)
            for user in self._users.values()
            if user.is_staff and user.is_active
        ]

    # ==================== Issues ====================

    async def add_issue(self, issue: Issue) -> Issue:
        async with self._lock:
            if issue.id in self._issues:
                raise ValueError(f"Issue {issue.id} already exists")
            if issue.number is None:
                issue.number = f"ISS-{issue.created_at.year}-{next(self._sequence):06d}"
            issue.version = 1
            self._issues[issue.id] = copy.deepcopy(issue)
        return issue

    async def get_issue(self, issue_id: str) -> Issue | None:
        issue = self._issues.get(issue_id)
        return copy.deepcopy(issue) if issue else None

    def _check_save(self, issue: Issue) -> None:
        stored = self._issues.get(issue.id)
        if stored is None:
            raise IssueNotFound(f"Issue {issue.id} not found", issue.id)
        if stored.version != issue.version:
            raise ConcurrentModificationError(issue.id, issue.version)
        # History is append-only: the saved copy must extend the stored one
        if issue.status_history[: len(stored.status_history)] != stored.status_history:
            raise ConcurrentModificationError(issue.id, issue.version)

    def _write(self, issue: Issue) -> None:
        issue.version += 1
        stored = copy.deepcopy(issue)
        # Views are counted outside the version check
        stored.view_count = self._issues[issue.id].view_count
        issue.view_count = stored.view_count
        self._issues[issue.id] = stored

    async def save_issue(self, issue: Issue) -> Issue:
        await self.save_issues(issue)
        return issue

    async def save_issues(self, *issues: Issue) -> list[Issue]:
        async with self._lock:
            for issue in issues:
                self._check_save(issue)
            for issue in issues:
                self._write(issue)
        return list(issues)

    async def increment_view_count(self, issue_id: str) -> int:
        async with self._lock:
            stored = self._issues.get(issue_id)
            if stored is None:
                raise IssueNotFound(f"Issue {issue_id} not found", issue_id)
            stored.view_count += 1
            return stored.view_count

    async def find_in_bounding_box(
        self,
        box: BoundingBox,
        *,
        category_id: str | None = None,
        since: datetime | None = None,
        include_archived: bool = False,
    ) -> list[Issue]:
        results = []
        for issue in self._issues.values():
            if not box.contains(issue.location):
                continue
            if category_id is not None and issue.category_id != category_id:
                continue
            if since is not None and issue.created_at < since:
                continue
            if issue.is_archived and not include_archived:
                continue
            results.append(copy.deepcopy(issue))
        return results

    async def find_by_category_window(self, category_id: str, since: datetime) -> list[Issue]:
        return [
            copy.deepcopy(issue)
            for issue in self._issues.values()
            if issue.category_id == category_id
            and issue.created_at >= since
            and not issue.is_archived
        ]

    async def find_overdue_candidates(self, now: datetime) -> list[Issue]:
        return [
            copy.deepcopy(issue)
            for issue in self._issues.values()
            if issue.sla_deadline is not None
            and issue.sla_deadline < now
            and issue.status not in _SLA_EXEMPT
            and issue.sla_breach_notified_at is None
            and not issue.is_archived
        ]

    async def issue_statistics(self) -> dict[str, Any]:
        issues = [issue for issue in self._issues.values() if not issue.is_archived]
        scored = [issue.urgency_score for issue in issues if issue.urgency_score is not None]
        return {
            "total": len(issues),
            "by_status": dict(Counter(str(issue.status) for issue in issues)),
            "emergencies": sum(1 for issue in issues if issue.is_emergency),
            "high_priority": sum(
                1
                for issue in issues
                if issue.priority in (IssuePriority.HIGH, IssuePriority.CRITICAL)
            ),
            "average_urgency": round(sum(scored) / len(scored), 1) if scored else 0,
        }

    # ==================== Notifications ====================

    async def record_notification(self, notification: Notification) -> None:
        entry = copy.copy(notification)
        for i, logged in enumerate(self.notification_log):
            if entry.id is not None and logged.id == entry.id:
                entry.read_at = logged.read_at
                self.notification_log[i] = entry
                return
        self.notification_log.append(entry)

    def _inbox(self, user_id: str) -> list[Notification]:
        entries = [
            n
            for n in self.notification_log
            if n.user_id == user_id
            and n.channel == NotificationChannel.IN_APP
            and n.status == NotificationStatus.SENT
        ]
        return sorted(entries, key=lambda n: n.sent_at, reverse=True)

    async def list_inbox(
        self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> tuple[list[Notification], int]:
        entries = self._inbox(user_id)
        if unread_only:
            entries = [n for n in entries if n.read_at is None]
        page = entries[offset : offset + limit]
        return [copy.copy(n) for n in page], len(entries)

    async def count_unread(self, user_id: str) -> int:
        return sum(1 for n in self._inbox(user_id) if n.read_at is None)

    async def set_inbox_read(
        self, user_id: str, notification_ids: list[str] | None, read_at: datetime | None
    ) -> int:
        changed = 0
        for n in self._inbox(user_id):
            if notification_ids is not None and n.id not in notification_ids:
                continue
            if (n.read_at is None) == (read_at is None):
                continue
            n.read_at = read_at
            changed += 1
        return changed
