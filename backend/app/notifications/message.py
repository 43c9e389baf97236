"""Notification queue entries and delivery receipts."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.domain.enums import NotificationChannel, NotificationPriority, NotificationStatus


@dataclass
class Notification:
    """
    A message on its way to one recipient over one channel.

    Owned by the NotificationQueue while in flight; `attempts` never exceeds
    the queue's retry limit, and a `failed` entry only moves again through
    an explicit operator requeue.
    """

    channel: NotificationChannel
    recipient: str
    subject: str
    body: str
    priority: NotificationPriority = NotificationPriority.NORMAL

    id: str | None = None
    status: NotificationStatus = NotificationStatus.QUEUED
    attempts: int = 0
    created_at: datetime | None = None
    last_attempt: datetime | None = None
    sent_at: datetime | None = None
    failed_at: datetime | None = None
    last_error: str | None = None
    read_at: datetime | None = None

    # Provenance, for audit and in-app inboxes
    event_type: str | None = None
    issue_id: str | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"<Notification {self.id} {self.channel}->{self.recipient}: {self.status}>"


@dataclass(frozen=True)
class DeliveryResult:
    """Receipt for a delivered notification; failures raise DeliveryFailure."""

    message_id: str | None = None

    @classmethod
    def ok(cls, message_id: str | None = None) -> "DeliveryResult":
        return cls(message_id=message_id)
