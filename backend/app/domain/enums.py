"""Enumerations shared by the issue lifecycle and notification components."""

from enum import StrEnum


class IssueStatus(StrEnum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    REOPENED = "reopened"
    ESCALATED = "escalated"


class IssuePriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class VoteType(StrEnum):
    UP = "up"
    DOWN = "down"


class UserRole(StrEnum):
    CITIZEN = "citizen"
    STAFF = "staff"
    DEPARTMENT_HEAD = "department_head"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class NotificationChannel(StrEnum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


class NotificationPriority(StrEnum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Heap rank; lower drains first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    NotificationPriority.HIGH: 0,
    NotificationPriority.NORMAL: 1,
    NotificationPriority.LOW: 2,
}


class NotificationStatus(StrEnum):
    QUEUED = "queued"
    RETRY = "retry"
    SENT = "sent"
    FAILED = "failed"


class EventType(StrEnum):
    """Notification event types understood by the composer."""

    ISSUE_CREATED = "issue_created"
    STATUS_UPDATE = "status_update"
    ISSUE_ASSIGNED = "issue_assigned"
    SLA_BREACH = "sla_breach"
    DAILY_DIGEST = "daily_digest"
