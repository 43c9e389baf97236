"""Domain events emitted by the issue lifecycle.

Events are the only channel between issue mutations and notification
delivery: the lifecycle hands them to the dispatcher, which enqueues
messages and returns without waiting on any channel.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar

from app.domain.enums import EventType, IssueStatus


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    issue_id: str
    actor_id: str | None
    occurred_at: datetime

    # Notification event type this maps to; None means nobody is notified.
    event_type: ClassVar[str | None] = None


@dataclass(frozen=True, kw_only=True)
class IssueCreated(DomainEvent):
    event_type: ClassVar[str | None] = EventType.ISSUE_CREATED


@dataclass(frozen=True, kw_only=True)
class StatusChanged(DomainEvent):
    previous_status: IssueStatus
    new_status: IssueStatus
    notes: str | None = None

    event_type: ClassVar[str | None] = EventType.STATUS_UPDATE


@dataclass(frozen=True, kw_only=True)
class IssueAssigned(DomainEvent):
    department_id: str
    user_id: str | None = None

    event_type: ClassVar[str | None] = EventType.ISSUE_ASSIGNED


@dataclass(frozen=True, kw_only=True)
class IssueEscalated(DomainEvent):
    level: int
    reason: str

    event_type: ClassVar[str | None] = "issue_escalated"


@dataclass(frozen=True, kw_only=True)
class IssueMarkedDuplicate(DomainEvent):
    original_issue_id: str

    event_type: ClassVar[str | None] = "issue_marked_duplicate"


@dataclass(frozen=True, kw_only=True)
class SlaBreached(DomainEvent):
    overdue_by: timedelta

    event_type: ClassVar[str | None] = EventType.SLA_BREACH


@dataclass(frozen=True, kw_only=True)
class DailyDigestDue(DomainEvent):
    """Digest trigger; `issue_id` is empty because it covers all issues."""

    stats: dict[str, Any] = field(default_factory=dict)

    event_type: ClassVar[str | None] = EventType.DAILY_DIGEST
