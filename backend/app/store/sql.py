"""PostGIS-backed issue store (SQLAlchemy async + GeoAlchemy2)."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any

from geoalchemy2 import WKTElement
from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.domain import (
    Address,
    BoundingBox,
    Category,
    Comment,
    Department,
    EscalationEntry,
    Feedback,
    GeoPoint,
    Issue,
    IssuePriority,
    IssueStatus,
    NotificationChannel,
    NotificationPreferences,
    NotificationPriority,
    NotificationStatus,
    StatusHistoryEntry,
    User,
    UserRole,
    VoteType,
)
from app.domain.errors import ConcurrentModificationError, IssueNotFound
from app.models import (
    CategoryRecord,
    DepartmentRecord,
    IssueEscalationRecord,
    IssueRecord,
    IssueStatusHistoryRecord,
    NotificationLogRecord,
    UserRecord,
)
from app.models.issue import issue_number_seq
from app.notifications.message import Notification

logger = logging.getLogger(__name__)

_SLA_EXEMPT = [
    IssueStatus.RESOLVED.value,
    IssueStatus.CLOSED.value,
    IssueStatus.REJECTED.value,
    IssueStatus.DUPLICATE.value,
]


# ==================== Row <-> entity mapping ====================


def _point(location: GeoPoint) -> WKTElement:
    return WKTElement(f"POINT({location.longitude} {location.latitude})", srid=4326)


def _comment_to_json(comment: Comment) -> dict[str, Any]:
    return {
        "user_id": comment.user_id,
        "text": comment.text,
        "created_at": comment.created_at.isoformat(),
        "is_official": comment.is_official,
    }


def _comment_from_json(data: dict[str, Any]) -> Comment:
    return Comment(
        user_id=data["user_id"],
        text=data["text"],
        created_at=datetime.fromisoformat(data["created_at"]),
        is_official=data.get("is_official", False),
    )


def _feedback_to_json(feedback: Feedback | None) -> dict[str, Any] | None:
    if feedback is None:
        return None
    return {
        "rating": feedback.rating,
        "comment": feedback.comment,
        "submitted_at": feedback.submitted_at.isoformat(),
    }


def _feedback_from_json(data: dict[str, Any] | None) -> Feedback | None:
    if not data:
        return None
    return Feedback(
        rating=data["rating"],
        comment=data.get("comment"),
        submitted_at=datetime.fromisoformat(data["submitted_at"]),
    )


def _apply_issue(record: IssueRecord, issue: Issue) -> None:
    """Copy mutable issue fields onto the row (history is written separately)."""
    record.title = issue.title
    record.description = issue.description
    record.category_id = issue.category_id
    record.subcategory = issue.subcategory
    record.priority = issue.priority.value
    record.is_emergency = issue.is_emergency
    record.is_anonymous = issue.is_anonymous
    record.tags = list(issue.tags)
    record.address = vars(issue.address).copy()
    record.status = issue.status.value
    record.assigned_department_id = issue.assigned_department_id
    record.assigned_user_id = issue.assigned_user_id
    record.escalation_level = issue.escalation_level
    record.sla_deadline = issue.sla_deadline
    record.sla_breach_notified_at = issue.sla_breach_notified_at
    record.actual_resolution_date = issue.actual_resolution_date
    record.voters = {user_id: vote.value for user_id, vote in issue.voters.items()}
    record.followers = list(issue.followers)
    record.comments = [_comment_to_json(c) for c in issue.comments]
    record.share_count = issue.share_count
    record.feedback = _feedback_to_json(issue.feedback)
    record.urgency_score = issue.urgency_score
    record.is_duplicate = issue.is_duplicate
    record.original_issue_id = issue.original_issue_id
    record.duplicate_count = issue.duplicate_count
    record.is_archived = issue.is_archived
    record.archived_at = issue.archived_at
    record.archived_by = issue.archived_by
    record.updated_at = issue.updated_at


def _history_record(issue_id: str, position: int, entry: StatusHistoryEntry):
    return IssueStatusHistoryRecord(
        issue_id=issue_id,
        position=position,
        status=entry.status.value,
        previous_status=entry.previous_status.value if entry.previous_status else None,
        changed_by=entry.changed_by,
        comment=entry.comment,
        timestamp=entry.timestamp,
    )


def _escalation_record(issue_id: str, entry: EscalationEntry):
    return IssueEscalationRecord(
        issue_id=issue_id,
        level=entry.level,
        escalated_by=entry.escalated_by,
        escalated_to=entry.escalated_to,
        reason=entry.reason,
        timestamp=entry.timestamp,
    )


def _to_issue(
    record: IssueRecord,
    lat: float,
    lng: float,
    history: list[IssueStatusHistoryRecord],
    escalations: list[IssueEscalationRecord],
) -> Issue:
    return Issue(
        id=record.id,
        number=record.number,
        title=record.title,
        description=record.description,
        category_id=record.category_id,
        location=GeoPoint(latitude=lat, longitude=lng),
        reported_by=record.reported_by,
        created_at=record.created_at,
        address=Address(**(record.address or {})),
        subcategory=record.subcategory,
        priority=IssuePriority(record.priority),
        is_emergency=record.is_emergency,
        is_anonymous=record.is_anonymous,
        tags=list(record.tags or []),
        status=IssueStatus(record.status),
        status_history=[
            StatusHistoryEntry(
                status=IssueStatus(h.status),
                previous_status=IssueStatus(h.previous_status) if h.previous_status else None,
                changed_by=h.changed_by,
                comment=h.comment,
                timestamp=h.timestamp,
            )
            for h in history
        ],
        assigned_department_id=record.assigned_department_id,
        assigned_user_id=record.assigned_user_id,
        escalation_level=record.escalation_level,
        escalation_history=[
            EscalationEntry(
                level=e.level,
                escalated_by=e.escalated_by,
                escalated_to=e.escalated_to,
                reason=e.reason,
                timestamp=e.timestamp,
            )
            for e in escalations
        ],
        sla_deadline=record.sla_deadline,
        sla_breach_notified_at=record.sla_breach_notified_at,
        actual_resolution_date=record.actual_resolution_date,
        voters={user_id: VoteType(vote) for user_id, vote in (record.voters or {}).items()},
        followers=list(record.followers or []),
        comments=[_comment_from_json(c) for c in record.comments or []],
        view_count=record.view_count,
        share_count=record.share_count,
        feedback=_feedback_from_json(record.feedback),
        urgency_score=record.urgency_score,
        is_duplicate=record.is_duplicate,
        original_issue_id=record.original_issue_id,
        duplicate_count=record.duplicate_count,
        is_archived=record.is_archived,
        archived_at=record.archived_at,
        archived_by=record.archived_by,
        updated_at=record.updated_at,
        version=record.version,
    )


def _to_user(record: UserRecord) -> User:
    return User(
        id=record.id,
        full_name=record.full_name,
        email=record.email,
        phone=record.phone,
        push_token=record.push_token,
        role=UserRole(record.role),
        department_id=record.department_id,
        is_active=record.is_active,
        notification_preferences=NotificationPreferences(
            **(record.notification_preferences or {})
        ),
    )


def _to_notification(record: NotificationLogRecord) -> Notification:
    return Notification(
        id=record.notification_id,
        channel=NotificationChannel(record.channel),
        recipient=record.recipient,
        subject=record.subject,
        body=record.body or "",
        priority=NotificationPriority(record.priority),
        status=NotificationStatus(record.status),
        attempts=record.attempts,
        created_at=record.queued_at,
        sent_at=record.sent_at,
        failed_at=record.failed_at,
        last_error=record.last_error,
        read_at=record.read_at,
        event_type=record.event_type,
        issue_id=record.issue_id,
        user_id=record.user_id,
    )


class SqlIssueStore:
    """
    IssueStore over PostgreSQL/PostGIS.

    Each call runs in its own session and transaction. Optimistic locking
    comes from the `version` column on IssueRecord.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    def _issue_query(self):
        return select(
            IssueRecord,
            func.ST_Y(IssueRecord.location).label("lat"),
            func.ST_X(IssueRecord.location).label("lng"),
        )

    async def _hydrate(self, session: AsyncSession, rows) -> list[Issue]:
        """Attach history and escalation rows to issue rows in two queries."""
        rows = list(rows)
        if not rows:
            return []
        ids = [row.IssueRecord.id for row in rows]

        history: dict[str, list[IssueStatusHistoryRecord]] = defaultdict(list)
        result = await session.execute(
            select(IssueStatusHistoryRecord)
            .where(IssueStatusHistoryRecord.issue_id.in_(ids))
            .order_by(IssueStatusHistoryRecord.issue_id, IssueStatusHistoryRecord.position)
        )
        for entry in result.scalars():
            history[entry.issue_id].append(entry)

        escalations: dict[str, list[IssueEscalationRecord]] = defaultdict(list)
        result = await session.execute(
            select(IssueEscalationRecord)
            .where(IssueEscalationRecord.issue_id.in_(ids))
            .order_by(IssueEscalationRecord.issue_id, IssueEscalationRecord.level)
        )
        for entry in result.scalars():
            escalations[entry.issue_id].append(entry)

        return [
            _to_issue(
                row.IssueRecord,
                row.lat,
                row.lng,
                history[row.IssueRecord.id],
                escalations[row.IssueRecord.id],
            )
            for row in rows
        ]

    # ==================== Issues ====================

    async def add_issue(self, issue: Issue) -> Issue:
        async with self.session_maker() as session:
            async with session.begin():
                if issue.number is None:
                    seq = await session.scalar(select(issue_number_seq.next_value()))
                    issue.number = f"ISS-{issue.created_at.year}-{seq:06d}"

                record = IssueRecord(
                    id=issue.id,
                    number=issue.number,
                    location=_point(issue.location),
                    reported_by=issue.reported_by,
                    created_at=issue.created_at,
                    view_count=issue.view_count,
                )
                _apply_issue(record, issue)
                session.add(record)
                session.add_all(
                    _history_record(issue.id, i, entry)
                    for i, entry in enumerate(issue.status_history)
                )
                session.add_all(
                    _escalation_record(issue.id, entry) for entry in issue.escalation_history
                )
                await session.flush()
                issue.version = record.version

        logger.info(f"Stored issue {issue.number} ({issue.id})")
        return issue

    async def get_issue(self, issue_id: str) -> Issue | None:
        async with self.session_maker() as session:
            result = await session.execute(
                self._issue_query().where(IssueRecord.id == issue_id)
            )
            issues = await self._hydrate(session, result.all())
        return issues[0] if issues else None

    async def _write_issue(self, session: AsyncSession, issue: Issue) -> IssueRecord:
        """Version-check one issue and stage its row and new history rows."""
        record = await session.get(IssueRecord, issue.id)
        if record is None:
            raise IssueNotFound(f"Issue {issue.id} not found", issue.id)
        if record.version != issue.version:
            raise ConcurrentModificationError(issue.id, issue.version)

        stored_history = await session.scalar(
            select(func.count(IssueStatusHistoryRecord.id)).where(
                IssueStatusHistoryRecord.issue_id == issue.id
            )
        )
        stored_escalations = await session.scalar(
            select(func.count(IssueEscalationRecord.id)).where(
                IssueEscalationRecord.issue_id == issue.id
            )
        )
        # History tables are append-only
        if len(issue.status_history) < stored_history or (
            len(issue.escalation_history) < stored_escalations
        ):
            raise ConcurrentModificationError(issue.id, issue.version)

        _apply_issue(record, issue)
        session.add_all(
            _history_record(issue.id, i, issue.status_history[i])
            for i in range(stored_history, len(issue.status_history))
        )
        session.add_all(
            _escalation_record(issue.id, entry)
            for entry in issue.escalation_history[stored_escalations:]
        )
        return record

    async def save_issue(self, issue: Issue) -> Issue:
        await self.save_issues(issue)
        return issue

    async def save_issues(self, *issues: Issue) -> list[Issue]:
        """Write every issue in one transaction; any failed check rolls back all."""
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    records = [await self._write_issue(session, issue) for issue in issues]
                    await session.flush()
        except StaleDataError as e:
            # Lost a race between the version read and the UPDATE
            raise ConcurrentModificationError(issues[0].id, issues[0].version) from e

        # Versions move only once the transaction has committed
        for issue, record in zip(issues, records):
            issue.version = record.version
            issue.view_count = record.view_count
        return list(issues)

    async def increment_view_count(self, issue_id: str) -> int:
        async with self.session_maker() as session:
            async with session.begin():
                count = await session.scalar(
                    update(IssueRecord)
                    .where(IssueRecord.id == issue_id)
                    .values(view_count=IssueRecord.view_count + 1)
                    .returning(IssueRecord.view_count)
                )
        if count is None:
            raise IssueNotFound(f"Issue {issue_id} not found", issue_id)
        return count

    async def find_in_bounding_box(
        self,
        box: BoundingBox,
        *,
        category_id: str | None = None,
        since: datetime | None = None,
        include_archived: bool = False,
    ) -> list[Issue]:
        envelope = func.ST_MakeEnvelope(
            box.min_lng, box.min_lat, box.max_lng, box.max_lat, 4326
        )
        conditions = [IssueRecord.location.intersects(envelope)]
        if category_id is not None:
            conditions.append(IssueRecord.category_id == category_id)
        if since is not None:
            conditions.append(IssueRecord.created_at >= since)
        if not include_archived:
            conditions.append(IssueRecord.is_archived.is_(False))

        async with self.session_maker() as session:
            result = await session.execute(self._issue_query().where(and_(*conditions)))
            return await self._hydrate(session, result.all())

    async def find_by_category_window(self, category_id: str, since: datetime) -> list[Issue]:
        async with self.session_maker() as session:
            result = await session.execute(
                self._issue_query()
                .where(
                    IssueRecord.category_id == category_id,
                    IssueRecord.created_at >= since,
                    IssueRecord.is_archived.is_(False),
                )
                .order_by(IssueRecord.created_at.desc())
            )
            return await self._hydrate(session, result.all())

    async def find_overdue_candidates(self, now: datetime) -> list[Issue]:
        async with self.session_maker() as session:
            result = await session.execute(
                self._issue_query().where(
                    IssueRecord.sla_deadline.is_not(None),
                    IssueRecord.sla_deadline < now,
                    IssueRecord.status.not_in(_SLA_EXEMPT),
                    IssueRecord.sla_breach_notified_at.is_(None),
                    IssueRecord.is_archived.is_(False),
                )
            )
            return await self._hydrate(session, result.all())

    async def issue_statistics(self) -> dict[str, Any]:
        active = IssueRecord.is_archived.is_(False)
        async with self.session_maker() as session:
            by_status_result = await session.execute(
                select(IssueRecord.status, func.count(IssueRecord.id))
                .where(active)
                .group_by(IssueRecord.status)
            )
            by_status = {status: count for status, count in by_status_result.all()}

            emergencies = await session.scalar(
                select(func.count(IssueRecord.id)).where(active, IssueRecord.is_emergency)
            )
            high_priority = await session.scalar(
                select(func.count(IssueRecord.id)).where(
                    active,
                    IssueRecord.priority.in_(
                        [IssuePriority.HIGH.value, IssuePriority.CRITICAL.value]
                    ),
                )
            )
            average_urgency = await session.scalar(
                select(func.avg(IssueRecord.urgency_score)).where(active)
            )

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "emergencies": emergencies or 0,
            "high_priority": high_priority or 0,
            "average_urgency": round(float(average_urgency), 1) if average_urgency else 0,
        }

    # ==================== Reference data ====================

    async def get_category(self, category_id: str) -> Category | None:
        async with self.session_maker() as session:
            record = await session.get(CategoryRecord, category_id)
        if record is None:
            return None
        return Category(
            id=record.id,
            name=record.name,
            code=record.code,
            sla_hours=record.sla_hours,
            default_priority=IssuePriority(record.default_priority),
            department_id=record.department_id,
            is_active=record.is_active,
        )

    async def get_department(self, department_id: str) -> Department | None:
        async with self.session_maker() as session:
            record = await session.get(DepartmentRecord, department_id)
        if record is None:
            return None
        return Department(
            id=record.id,
            name=record.name,
            code=record.code,
            email=record.email,
            is_active=record.is_active,
        )

    async def get_user(self, user_id: str) -> User | None:
        async with self.session_maker() as session:
            record = await session.get(UserRecord, user_id)
        return _to_user(record) if record else None

    async def list_department_staff(self, department_id: str) -> list[User]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(UserRecord).where(
                    UserRecord.department_id == department_id,
                    UserRecord.role != UserRole.CITIZEN.value,
                    UserRecord.is_active.is_(True),
                )
            )
            return [_to_user(record) for record in result.scalars()]

    async def list_staff(self) -> list[User]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(UserRecord).where(
                    UserRecord.role != UserRole.CITIZEN.value,
                    UserRecord.is_active.is_(True),
                )
            )
            return [_to_user(record) for record in result.scalars()]

    # ==================== Notifications ====================

    async def record_notification(self, notification: Notification) -> None:
        values = {
            "notification_id": notification.id,
            "channel": notification.channel.value,
            "recipient": notification.recipient,
            "subject": notification.subject[:255],
            "body": notification.body,
            "priority": notification.priority.value,
            "status": notification.status.value,
            "attempts": notification.attempts,
            "last_error": notification.last_error,
            "event_type": notification.event_type,
            "issue_id": notification.issue_id,
            "user_id": notification.user_id,
            "queued_at": notification.created_at,
            "sent_at": notification.sent_at,
            "failed_at": notification.failed_at,
        }
        stmt = insert(NotificationLogRecord).values(**values).on_conflict_do_update(
            index_elements=["notification_id"],
            set_={k: v for k, v in values.items() if k != "notification_id"},
        )
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(stmt)

    def _inbox_filter(self, user_id: str):
        return and_(
            NotificationLogRecord.user_id == user_id,
            NotificationLogRecord.channel == NotificationChannel.IN_APP.value,
            NotificationLogRecord.status == NotificationStatus.SENT.value,
        )

    async def list_inbox(
        self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> tuple[list[Notification], int]:
        condition = self._inbox_filter(user_id)
        if unread_only:
            condition = and_(condition, NotificationLogRecord.read_at.is_(None))

        async with self.session_maker() as session:
            total = await session.scalar(
                select(func.count(NotificationLogRecord.id)).where(condition)
            )
            result = await session.execute(
                select(NotificationLogRecord)
                .where(condition)
                .order_by(NotificationLogRecord.sent_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return [_to_notification(record) for record in result.scalars()], total or 0

    async def count_unread(self, user_id: str) -> int:
        async with self.session_maker() as session:
            count = await session.scalar(
                select(func.count(NotificationLogRecord.id)).where(
                    self._inbox_filter(user_id), NotificationLogRecord.read_at.is_(None)
                )
            )
            return count or 0

    async def set_inbox_read(
        self, user_id: str, notification_ids: list[str] | None, read_at: datetime | None
    ) -> int:
        stmt = update(NotificationLogRecord).where(self._inbox_filter(user_id))
        if notification_ids is not None:
            stmt = stmt.where(NotificationLogRecord.notification_id.in_(notification_ids))
        if read_at is None:
            stmt = stmt.where(NotificationLogRecord.read_at.is_not(None))
        else:
            stmt = stmt.where(NotificationLogRecord.read_at.is_(None))

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(stmt.values(read_at=read_at))
            return result.rowcount
