"""A user's in-app notifications, read back from the notification log."""

import logging
from dataclasses import dataclass

from app.notifications.message import Notification
from app.services.clock import Clock, utc_now
from app.store.base import IssueStore

logger = logging.getLogger(__name__)


@dataclass
class InboxPage:
    notifications: list[Notification]
    total: int
    unread_count: int


class NotificationInbox:
    """
    Read-side of in-app delivery.

    InAppSender writes entries through the store; this service lists them
    and keeps the per-entry read marker.
    """

    def __init__(self, store: IssueStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    async def entries(
        self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> InboxPage:
        notifications, total = await self.store.list_inbox(
            user_id, unread_only=unread_only, limit=limit, offset=offset
        )
        return InboxPage(
            notifications=notifications,
            total=total,
            unread_count=await self.store.count_unread(user_id),
        )

    async def unread_count(self, user_id: str) -> int:
        return await self.store.count_unread(user_id)

    async def mark_read(self, user_id: str, notification_ids: list[str]) -> int:
        changed = await self.store.set_inbox_read(user_id, notification_ids, self.clock())
        logger.debug(f"Marked {changed} inbox entries read for {user_id}")
        return changed

    async def mark_all_read(self, user_id: str) -> int:
        changed = await self.store.set_inbox_read(user_id, None, self.clock())
        logger.info(f"Marked all {changed} unread inbox entries read for {user_id}")
        return changed

    async def mark_unread(self, user_id: str, notification_ids: list[str]) -> int:
        return await self.store.set_inbox_read(user_id, notification_ids, None)
