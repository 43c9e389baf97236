"""Database models."""

from app.models.issue import IssueEscalationRecord, IssueRecord, IssueStatusHistoryRecord
from app.models.notification_log import NotificationLogRecord
from app.models.reference import CategoryRecord, DepartmentRecord, UserRecord

__all__ = [
    "CategoryRecord",
    "DepartmentRecord",
    "IssueEscalationRecord",
    "IssueRecord",
    "IssueStatusHistoryRecord",
    "NotificationLogRecord",
    "UserRecord",
]
