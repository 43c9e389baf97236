"""Turns domain events into queued notifications.

The dispatcher resolves recipients and their channels, composes each
message and enqueues it. It never waits on a channel sender.
"""

import logging
from typing import Any

from app.domain import (
    Issue,
    IssuePriority,
    IssueStatus,
    NotificationPriority,
    User,
)
from app.domain.events import (
    DailyDigestDue,
    DomainEvent,
    IssueAssigned,
    IssueCreated,
    SlaBreached,
    StatusChanged,
)
from app.notifications.composer import NotificationComposer, format_overdue_duration
from app.notifications.message import Notification
from app.notifications.queue import NotificationQueue
from app.store.base import IssueStore

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Routes lifecycle events to recipients.

    Recipients:
    - issue_created: reporter
    - status_update: reporter (unless anonymous) and followers
    - issue_assigned: assigned staff user
    - sla_breach: active staff of the assigned department
    - daily_digest: all active staff
    """

    def __init__(
        self,
        store: IssueStore,
        composer: NotificationComposer,
        queue: NotificationQueue,
    ):
        self.store = store
        self.composer = composer
        self.queue = queue

    async def publish(
        self, events: list[DomainEvent], issue: Issue | None = None
    ) -> list[Notification]:
        """Enqueue notifications for each event; failures are logged, not raised."""
        queued: list[Notification] = []
        for event in events:
            try:
                queued.extend(await self.handle(event, issue))
            except Exception as e:
                logger.error(
                    f"Failed to dispatch {type(event).__name__} for issue "
                    f"{event.issue_id}: {e}",
                    exc_info=True,
                )
        return queued

    async def handle(
        self, event: DomainEvent, issue: Issue | None = None
    ) -> list[Notification]:
        if event.event_type is None or event.event_type not in self.composer.event_types:
            return []

        if not isinstance(event, DailyDigestDue):
            if issue is None or issue.id != event.issue_id:
                issue = await self.store.get_issue(event.issue_id)
            if issue is None:
                logger.warning(f"Issue {event.issue_id} not found; dropping {event.event_type}")
                return []

        recipients = await self._recipients(event, issue)
        priority = self._priority(event, issue)
        context = await self._context(event, issue)

        notifications = []
        for user in recipients:
            message = self.composer.compose(event.event_type, issue, user, context)
            if message is None:
                continue
            for channel in user.notification_preferences.channels():
                address = user.address_for(channel)
                if not address:
                    continue
                notification = Notification(
                    channel=channel,
                    recipient=address,
                    subject=message.subject,
                    body=message.body,
                    priority=priority,
                    event_type=str(event.event_type),
                    issue_id=issue.id if issue else None,
                    user_id=user.id,
                )
                notifications.append(self.queue.enqueue(notification))

        if notifications:
            logger.info(
                f"Queued {len(notifications)} {event.event_type} notifications "
                f"for {len(recipients)} recipients"
            )
        return notifications

    async def _recipients(self, event: DomainEvent, issue: Issue | None) -> list[User]:
        user_ids: list[str] = []
        staff: list[User] = []

        if isinstance(event, IssueCreated):
            user_ids = [issue.reported_by]
        elif isinstance(event, StatusChanged):
            if not issue.is_anonymous:
                user_ids.append(issue.reported_by)
            user_ids.extend(issue.followers)
            user_ids = [uid for uid in user_ids if uid != event.actor_id]
        elif isinstance(event, IssueAssigned):
            if event.user_id:
                user_ids = [event.user_id]
        elif isinstance(event, SlaBreached):
            if issue.assigned_department_id:
                staff = await self.store.list_department_staff(issue.assigned_department_id)
        elif isinstance(event, DailyDigestDue):
            staff = await self.store.list_staff()

        users = list(staff)
        for user_id in dict.fromkeys(user_ids):
            user = await self.store.get_user(user_id)
            if user is not None:
                users.append(user)

        return [
            user
            for user in users
            if user.is_active and user.notification_preferences.issue_updates
        ]

    @staticmethod
    def _priority(event: DomainEvent, issue: Issue | None) -> NotificationPriority:
        if isinstance(event, StatusChanged) and event.new_status == IssueStatus.RESOLVED:
            return NotificationPriority.HIGH
        if isinstance(event, IssueAssigned) and issue.priority == IssuePriority.CRITICAL:
            return NotificationPriority.HIGH
        if isinstance(event, SlaBreached):
            return NotificationPriority.HIGH
        if isinstance(event, DailyDigestDue):
            return NotificationPriority.LOW
        return NotificationPriority.NORMAL

    async def _context(self, event: DomainEvent, issue: Issue | None) -> dict[str, Any]:
        context: dict[str, Any] = {}
        if issue is not None:
            category = await self.store.get_category(issue.category_id)
            if category:
                context["category_name"] = category.name
            if issue.assigned_department_id:
                department = await self.store.get_department(issue.assigned_department_id)
                if department:
                    context["department_name"] = department.name
            if not issue.is_anonymous:
                reporter = await self.store.get_user(issue.reported_by)
                if reporter:
                    context["reporter_name"] = reporter.full_name

        if isinstance(event, StatusChanged):
            context["new_status"] = event.new_status
            context["notes"] = event.notes
        elif isinstance(event, SlaBreached):
            context["overdue_duration"] = format_overdue_duration(event.overdue_by)
        elif isinstance(event, DailyDigestDue):
            context["stats"] = event.stats
            context["date"] = event.occurred_at.date().isoformat()
        return context
