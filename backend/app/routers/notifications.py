"""Notification endpoints: the operator queue view and each user's in-app inbox."""

import logging

from fastapi import APIRouter, HTTPException, Query

from app.routers.deps import ActorId, Services
from app.schemas.notification import (
    FailedNotificationsResponse,
    InboxEntryOut,
    InboxResponse,
    InboxUpdateOut,
    MarkReadIn,
    MarkUnreadIn,
    NotificationOut,
    QueueStatsOut,
    UnreadCountOut,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/queue", response_model=QueueStatsOut)
async def queue_stats(services: Services) -> QueueStatsOut:
    return QueueStatsOut(**services.queue.stats())


@router.get("/failed", response_model=FailedNotificationsResponse)
async def failed_notifications(services: Services) -> FailedNotificationsResponse:
    """Notifications that exhausted their retries and await an operator."""
    failed = services.queue.failed()
    return FailedNotificationsResponse(
        notifications=[NotificationOut.model_validate(n) for n in failed],
        total=len(failed),
    )


@router.post("/{notification_id}/requeue", response_model=NotificationOut)
async def requeue_notification(
    notification_id: str, services: Services, actor_id: ActorId
) -> NotificationOut:
    """Give a failed notification a fresh set of delivery attempts."""
    try:
        notification = services.queue.requeue(notification_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Failed notification not found")
    logger.info(f"Notification {notification_id} requeued by {actor_id}")
    return NotificationOut.model_validate(notification)


# ==================== In-app inbox ====================


@router.get("/inbox", response_model=InboxResponse)
async def inbox(
    services: Services,
    actor_id: ActorId,
    unread_only: bool = False,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> InboxResponse:
    """The acting user's in-app notifications, newest first."""
    page = await services.inbox.entries(
        actor_id, unread_only=unread_only, limit=limit, offset=offset
    )
    return InboxResponse(
        notifications=[InboxEntryOut.model_validate(n) for n in page.notifications],
        total=page.total,
        unread_count=page.unread_count,
    )


@router.get("/inbox/unread-count", response_model=UnreadCountOut)
async def unread_count(services: Services, actor_id: ActorId) -> UnreadCountOut:
    return UnreadCountOut(unread_count=await services.inbox.unread_count(actor_id))


@router.post("/inbox/mark-read", response_model=InboxUpdateOut)
async def mark_read(body: MarkReadIn, services: Services, actor_id: ActorId) -> InboxUpdateOut:
    """Mark the listed entries, or with `mark_all` every entry, as read."""
    if body.mark_all:
        updated = await services.inbox.mark_all_read(actor_id)
    elif body.notification_ids:
        updated = await services.inbox.mark_read(actor_id, body.notification_ids)
    else:
        raise HTTPException(
            status_code=422, detail="Provide notification_ids or set mark_all to true"
        )
    return InboxUpdateOut(updated=updated)


@router.post("/inbox/mark-unread", response_model=InboxUpdateOut)
async def mark_unread(
    body: MarkUnreadIn, services: Services, actor_id: ActorId
) -> InboxUpdateOut:
    updated = await services.inbox.mark_unread(actor_id, body.notification_ids)
    return InboxUpdateOut(updated=updated)
