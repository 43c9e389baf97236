"""Wiring of the lifecycle and notification services for one process."""

from dataclasses import dataclass
from datetime import timedelta

from app.config import Settings
from app.notifications.composer import NotificationComposer
from app.notifications.dispatcher import NotificationDispatcher
from app.notifications.inbox import NotificationInbox
from app.notifications.queue import ChannelSender, NotificationQueue
from app.notifications.senders import build_channel_router
from app.services.clock import Clock, utc_now
from app.services.duplicates import DuplicateDetector
from app.services.geo import GeoIndex
from app.services.issue_service import IssueService
from app.services.state_machine import IssueStateMachine
from app.store.base import IssueStore


@dataclass
class AppServices:
    """Everything the HTTP layer and scheduled jobs need, built once."""

    settings: Settings
    store: IssueStore
    issues: IssueService
    queue: NotificationQueue
    dispatcher: NotificationDispatcher
    inbox: NotificationInbox


def build_services(
    settings: Settings,
    store: IssueStore,
    *,
    sender: ChannelSender | None = None,
    clock: Clock = utc_now,
) -> AppServices:
    """
    Construct the service graph around a store.

    Args:
        settings: Application settings
        store: Issue store (PostGIS in production, in-memory in tests)
        sender: Channel sender; defaults to the configured channel router
        clock: Time source shared by every component

    Returns:
        The wired services; the queue worker is not started yet
    """
    queue = NotificationQueue(
        sender or build_channel_router(settings, store),
        max_retries=settings.notification_max_retries,
        retry_delay=timedelta(seconds=settings.notification_retry_delay_seconds),
        poll_interval=settings.notification_poll_interval_seconds,
        clock=clock,
        on_settled=store.record_notification,
    )
    dispatcher = NotificationDispatcher(
        store,
        NotificationComposer(settings.frontend_url, settings.admin_url),
        queue,
    )

    geo_index = GeoIndex(store)
    issues = IssueService(
        store,
        IssueStateMachine(clock),
        geo_index,
        DuplicateDetector(
            geo_index,
            lookback_days=settings.duplicate_lookback_days,
            max_candidates=settings.duplicate_max_candidates,
            similarity_threshold=settings.duplicate_similarity_threshold,
            clock=clock,
        ),
        dispatcher,
        duplicate_radius_meters=settings.duplicate_radius_meters,
        nearby_max_radius_meters=settings.nearby_max_radius_meters,
        clock=clock,
    )
    return AppServices(
        settings=settings,
        store=store,
        issues=issues,
        queue=queue,
        dispatcher=dispatcher,
        inbox=NotificationInbox(store, clock),
    )
