"""Framework-free issue lifecycle domain: entities, events and errors."""

from app.domain.entities import (
    Address,
    BoundingBox,
    Category,
    Comment,
    Department,
    EscalationEntry,
    Feedback,
    GeoPoint,
    Issue,
    NotificationPreferences,
    StatusHistoryEntry,
    User,
)
from app.domain.enums import (
    EventType,
    IssuePriority,
    IssueStatus,
    NotificationChannel,
    NotificationPriority,
    NotificationStatus,
    UserRole,
    VoteType,
)

__all__ = [
    "Address",
    "BoundingBox",
    "Category",
    "Comment",
    "Department",
    "EscalationEntry",
    "EventType",
    "Feedback",
    "GeoPoint",
    "Issue",
    "IssuePriority",
    "IssueStatus",
    "NotificationChannel",
    "NotificationPreferences",
    "NotificationPriority",
    "NotificationStatus",
    "StatusHistoryEntry",
    "User",
    "UserRole",
    "VoteType",
]
