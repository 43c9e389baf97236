"""Pydantic schemas for the notification queue and in-app inbox."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.domain import NotificationChannel, NotificationPriority, NotificationStatus


class NotificationOut(BaseModel):
    """Notification queue entry response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    channel: NotificationChannel
    recipient: str
    subject: str
    priority: NotificationPriority
    status: NotificationStatus
    attempts: int
    created_at: datetime | None = None
    last_attempt: datetime | None = None
    sent_at: datetime | None = None
    failed_at: datetime | None = None
    last_error: str | None = None
    event_type: str | None = None
    issue_id: str | None = None


class QueueStatsOut(BaseModel):
    running: bool
    pending: int
    delayed: int
    in_flight: int
    sent: int
    failed: int
    max_retries: int
    retry_delay_seconds: float


class FailedNotificationsResponse(BaseModel):
    notifications: list[NotificationOut]
    total: int


class InboxEntryOut(BaseModel):
    """In-app notification as shown in the recipient's inbox."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    subject: str
    body: str
    priority: NotificationPriority
    event_type: str | None = None
    issue_id: str | None = None
    sent_at: datetime | None = None
    read_at: datetime | None = None


class InboxResponse(BaseModel):
    notifications: list[InboxEntryOut]
    total: int
    unread_count: int


class UnreadCountOut(BaseModel):
    unread_count: int


class MarkReadIn(BaseModel):
    """Either a list of ids or `mark_all`."""

    notification_ids: list[str] | None = Field(None, max_length=200)
    mark_all: bool = False


class MarkUnreadIn(BaseModel):
    notification_ids: list[str] = Field(..., min_length=1, max_length=200)


class InboxUpdateOut(BaseModel):
    updated: int
