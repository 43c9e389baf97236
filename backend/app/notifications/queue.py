"""Priority notification queue with bounded retry.

A single worker drains entries in (priority, created_at) order. Retries wait
in a separate delay heap that the worker itself promotes, so there are no
timer callbacks racing the drain loop.
"""

import asyncio
import heapq
import itertools
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from app.domain import NotificationStatus
from app.domain.errors import DeliveryExhausted, DeliveryFailure
from app.notifications.message import DeliveryResult, Notification
from app.services.clock import Clock, utc_now

logger = logging.getLogger(__name__)

SettledHook = Callable[[Notification], Awaitable[None]]


class ChannelSender(Protocol):
    """
    Transport for one notification; must return within a bounded time.

    A failed attempt is reported by raising DeliveryFailure.
    """

    async def send(self, notification: Notification) -> DeliveryResult:
        ...


class NotificationQueue:
    """
    In-memory notification queue.

    Features:
    - Binary heap keyed by (priority rank, created_at, sequence)
    - Linear backoff: retry_delay * attempts after each failed attempt
    - At most one in-flight attempt per entry
    - Failed entries parked until an operator requeue
    """

    def __init__(
        self,
        sender: ChannelSender,
        *,
        max_retries: int = 3,
        retry_delay: timedelta = timedelta(seconds=5),
        poll_interval: float = 1.0,
        clock: Clock = utc_now,
        on_settled: SettledHook | None = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.sender = sender
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self.clock = clock
        self.on_settled = on_settled

        self._ready: list[tuple[int, datetime, int, Notification]] = []
        self._delayed: list[tuple[datetime, int, Notification]] = []
        self._failed: dict[str, Notification] = {}
        self._entries: dict[str, Notification] = {}
        self._in_flight: set[str] = set()
        self._seq = itertools.count()
        self._sent_count = 0

        self._wakeup = asyncio.Event()
        self._running = False
        self._stopping = False
        self._task: asyncio.Task | None = None

    # ==================== Producer side ====================

    def enqueue(self, notification: Notification) -> Notification:
        """Accept a new notification; returns immediately."""
        if notification.id is None:
            notification.id = uuid.uuid4().hex
        if notification.created_at is None:
            notification.created_at = self.clock()
        notification.status = NotificationStatus.QUEUED
        notification.attempts = 0
        notification.last_error = None

        self._entries[notification.id] = notification
        self._push_ready(notification)
        logger.info(
            f"Notification queued: {notification.id} "
            f"({notification.channel}, {notification.priority})"
        )
        return notification

    def requeue(self, notification_id: str) -> Notification:
        """
        Operator action: give a failed notification a fresh set of attempts.

        Raises:
            KeyError: No failed notification with this id
        """
        notification = self._failed.pop(notification_id, None)
        if notification is None:
            raise KeyError(notification_id)

        notification.status = NotificationStatus.QUEUED
        notification.attempts = 0
        notification.failed_at = None
        self._push_ready(notification)
        logger.info(f"Notification requeued by operator: {notification_id}")
        return notification

    def _push_ready(self, notification: Notification) -> None:
        heapq.heappush(
            self._ready,
            (
                notification.priority.rank,
                notification.created_at,
                next(self._seq),
                notification,
            ),
        )
        self._wakeup.set()

    def _push_delayed(self, notification: Notification, due_at: datetime) -> None:
        heapq.heappush(self._delayed, (due_at, next(self._seq), notification))
        self._wakeup.set()

    def _promote_due(self) -> None:
        now = self.clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, notification = heapq.heappop(self._delayed)
            notification.status = NotificationStatus.QUEUED
            self._push_ready(notification)

    # ==================== Worker side ====================

    async def attempt_delivery(self, notification: Notification) -> NotificationStatus:
        """
        Run one delivery attempt and settle or reschedule the entry.

        Raises:
            DeliveryExhausted: This was the last allowed attempt and it failed;
                the entry is already parked as failed when this is raised
        """
        if notification.id in self._in_flight:
            raise RuntimeError(f"Notification {notification.id} is already in flight")
        if notification.status == NotificationStatus.FAILED:
            raise RuntimeError(f"Notification {notification.id} has failed; requeue it first")

        failure: Exception | None = None
        self._in_flight.add(notification.id)
        try:
            notification.attempts += 1
            notification.last_attempt = self.clock()
            try:
                result = await self.sender.send(notification)
            except DeliveryFailure as e:
                failure = e
            except Exception as e:
                # Not a transport failure, so a sender bug; it still costs the attempt
                logger.error(
                    f"Sender raised unexpectedly for notification {notification.id}: {e!r}",
                    exc_info=True,
                )
                failure = e

            if failure is None:
                notification.status = NotificationStatus.SENT
                notification.sent_at = self.clock()
                notification.last_error = None
                self._sent_count += 1
                self._entries.pop(notification.id, None)
                logger.info(
                    f"Notification sent: {notification.id} "
                    f"(attempt {notification.attempts}, message id {result.message_id})"
                )
            else:
                notification.last_error = str(failure) or failure.__class__.__name__
                if notification.attempts < self.max_retries:
                    notification.status = NotificationStatus.RETRY
                    delay = self.retry_delay * notification.attempts
                    self._push_delayed(notification, self.clock() + delay)
                    logger.warning(
                        f"Notification {notification.id} failed "
                        f"(attempt {notification.attempts}/{self.max_retries}), "
                        f"retrying in {delay.total_seconds():g}s: {notification.last_error}"
                    )
                else:
                    notification.status = NotificationStatus.FAILED
                    notification.failed_at = self.clock()
                    self._failed[notification.id] = notification
        finally:
            self._in_flight.discard(notification.id)

        if notification.status in (NotificationStatus.SENT, NotificationStatus.FAILED):
            await self._settled(notification)
        if notification.status == NotificationStatus.FAILED:
            raise DeliveryExhausted(
                notification.id, notification.attempts, notification.last_error
            ) from failure
        return notification.status

    async def _settled(self, notification: Notification) -> None:
        if self.on_settled is None:
            return
        try:
            await self.on_settled(notification)
        except Exception as e:
            logger.error(
                f"Settled hook failed for notification {notification.id}: {e}",
                exc_info=True,
            )

    async def process_next(self) -> Notification | None:
        """
        Deliver the highest-priority ready entry, if any.

        Raises:
            DeliveryExhausted: The entry used up its last attempt
        """
        self._promote_due()
        if not self._ready:
            return None
        _, _, _, notification = heapq.heappop(self._ready)
        await self.attempt_delivery(notification)
        return notification

    def _seconds_until_next_due(self) -> float:
        if not self._delayed:
            return self.poll_interval
        remaining = (self._delayed[0][0] - self.clock()).total_seconds()
        return max(0.0, min(self.poll_interval, remaining))

    async def run(self) -> None:
        """Worker loop; returns once stop() has been requested."""
        self._running = True
        logger.info("Notification worker started")
        try:
            while not self._stopping:
                self._wakeup.clear()
                try:
                    processed = await self.process_next()
                except DeliveryExhausted as e:
                    logger.error(str(e))
                    continue
                except Exception as e:
                    logger.error(f"Notification worker error: {e}", exc_info=True)
                    await asyncio.sleep(self.poll_interval)
                    continue

                if processed is None and not self._stopping:
                    try:
                        await asyncio.wait_for(
                            self._wakeup.wait(), timeout=self._seconds_until_next_due()
                        )
                    except TimeoutError:
                        pass
        finally:
            self._running = False
            logger.info("Notification worker stopped")

    def start(self) -> asyncio.Task:
        """Start the worker loop as a background task."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stopping = False
        self._task = asyncio.create_task(self.run(), name="notification-worker")
        return self._task

    async def stop(self) -> list[Notification]:
        """
        Stop the worker after its current attempt.

        Returns:
            Entries still waiting for delivery, which are logged as undelivered
        """
        self._stopping = True
        self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None

        undelivered = self.pending()
        for notification in undelivered:
            logger.warning(
                f"Undelivered notification at shutdown: {notification.id} "
                f"({notification.channel} -> {notification.recipient}, "
                f"status={notification.status}, attempts={notification.attempts})"
            )
        return undelivered

    # ==================== Inspection ====================

    @property
    def is_running(self) -> bool:
        return self._running

    def get(self, notification_id: str) -> Notification | None:
        return self._entries.get(notification_id)

    def pending(self) -> list[Notification]:
        """Ready and delayed entries, in drain order then due order."""
        ready = [entry[3] for entry in sorted(self._ready, key=lambda e: e[:3])]
        delayed = [entry[2] for entry in sorted(self._delayed, key=lambda e: e[:2])]
        return ready + delayed

    def failed(self) -> list[Notification]:
        return sorted(self._failed.values(), key=lambda n: n.failed_at or n.created_at)

    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "pending": len(self._ready),
            "delayed": len(self._delayed),
            "in_flight": len(self._in_flight),
            "sent": self._sent_count,
            "failed": len(self._failed),
            "max_retries": self.max_retries,
            "retry_delay_seconds": self.retry_delay.total_seconds(),
        }
