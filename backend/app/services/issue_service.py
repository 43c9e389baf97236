"""Issue lifecycle orchestration.

Loads issues from the store, applies state machine and engagement changes
under a per-issue lock, saves with the store's version check, and hands the
resulting domain events to the notification dispatcher.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from app.domain import (
    Address,
    GeoPoint,
    Issue,
    IssuePriority,
    IssueStatus,
    VoteType,
)
from app.domain.errors import (
    ConcurrentModificationError,
    InvalidIssueOperation,
    IssueNotFound,
)
from app.domain.entities import Feedback
from app.domain.events import DailyDigestDue, DomainEvent, SlaBreached
from app.notifications.dispatcher import NotificationDispatcher
from app.services.clock import Clock, utc_now
from app.services.duplicates import DuplicateCandidate, DuplicateDetector
from app.services.geo import GeoIndex, NearbyIssue
from app.services.locks import KeyedLock
from app.services.state_machine import IssueStateMachine, LifecycleResult
from app.services.urgency import recompute_urgency
from app.store.base import IssueStore

logger = logging.getLogger(__name__)

# Attempts at the two-issue duplicate write before a conflict is surfaced
DUPLICATE_MARK_RETRIES = 3


@dataclass
class CreationResult:
    """A newly stored issue plus advisory duplicate candidates."""

    issue: Issue
    duplicates: list[DuplicateCandidate] = field(default_factory=list)


class IssueService:
    """
    Entry point for every issue mutation.

    Reads and writes go through the store; the per-issue lock serialises
    read-modify-write within this process and the store's version check
    rejects stale writes from anywhere else.
    """

    def __init__(
        self,
        store: IssueStore,
        state_machine: IssueStateMachine,
        geo_index: GeoIndex,
        detector: DuplicateDetector,
        dispatcher: NotificationDispatcher | None = None,
        *,
        duplicate_radius_meters: float = 100.0,
        nearby_max_radius_meters: float = 50000.0,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.state_machine = state_machine
        self.geo_index = geo_index
        self.detector = detector
        self.dispatcher = dispatcher
        self.duplicate_radius_meters = duplicate_radius_meters
        self.nearby_max_radius_meters = nearby_max_radius_meters
        self.clock = clock
        self._locks = KeyedLock()

    # ==================== Helpers ====================

    async def _publish(self, events: list[DomainEvent], issue: Issue | None = None) -> None:
        if self.dispatcher is None or not events:
            return
        try:
            await self.dispatcher.publish(events, issue)
        except Exception as e:
            logger.error(f"Failed to publish {len(events)} events: {e}", exc_info=True)

    async def _load(self, issue_id: str) -> Issue:
        issue = await self.store.get_issue(issue_id)
        if issue is None:
            raise IssueNotFound(f"Issue {issue_id} not found", issue_id)
        return issue

    async def _mutate(
        self, issue_id: str, apply: Callable[[Issue], LifecycleResult | None]
    ) -> Issue:
        """Load, apply, save and publish under the issue's lock."""
        async with self._locks.hold(issue_id):
            issue = await self._load(issue_id)
            result = apply(issue)
            await self.store.save_issue(issue)

        if result is not None:
            await self._publish(result.events, issue)
        return issue

    @staticmethod
    def _require_not_archived(issue: Issue) -> None:
        if issue.is_archived:
            raise InvalidIssueOperation(f"Issue {issue.id} is archived", issue.id)

    # ==================== Creation & reads ====================

    async def create_issue(
        self,
        *,
        title: str,
        description: str,
        category_id: str,
        location: GeoPoint,
        reported_by: str,
        priority: IssuePriority | None = None,
        is_emergency: bool = False,
        is_anonymous: bool = False,
        address: Address | None = None,
        subcategory: str | None = None,
        tags: list[str] | None = None,
    ) -> CreationResult:
        """
        Create and store a new issue.

        Urgency scoring and duplicate detection degrade to "unset" and "no
        candidates" on failure; neither can block creation.
        """
        category = await self.store.get_category(category_id)
        if category is None:
            raise InvalidIssueOperation(f"Category {category_id} does not exist")
        if not category.is_active:
            raise InvalidIssueOperation(f"Category {category.code} is not active")

        issue = Issue(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            category_id=category.id,
            location=location,
            reported_by=reported_by,
            created_at=self.clock(),
            address=address or Address(),
            subcategory=subcategory,
            priority=priority or category.default_priority,
            is_emergency=is_emergency,
            is_anonymous=is_anonymous,
            tags=list(tags or []),
        )
        result = self.state_machine.submit(issue, reported_by)

        try:
            recompute_urgency(issue, self.clock())
        except Exception as e:
            issue.urgency_score = None
            logger.warning(f"Urgency scoring failed for new issue {issue.id}: {e}")

        try:
            duplicates = await self.detector.find_candidates(
                category.id,
                location,
                self.duplicate_radius_meters,
                title=title,
                description=description,
                exclude_issue_id=issue.id,
            )
        except Exception as e:
            duplicates = []
            logger.warning(f"Duplicate detection failed for new issue {issue.id}: {e}")

        await self.store.add_issue(issue)
        logger.info(
            f"Issue created: {issue.number} (category={category.code}, "
            f"priority={issue.priority}, urgency={issue.urgency_score}, "
            f"duplicates={len(duplicates)})"
        )

        await self._publish(result.events, issue)
        return CreationResult(issue=issue, duplicates=duplicates)

    async def get_issue(self, issue_id: str) -> Issue:
        return await self._load(issue_id)

    async def available_transitions(self, issue_id: str) -> list[IssueStatus]:
        issue = await self._load(issue_id)
        return self.state_machine.available_transitions(issue)

    def is_overdue(self, issue: Issue) -> bool:
        return self.state_machine.is_overdue(issue, self.clock())

    async def find_nearby(
        self,
        point: GeoPoint,
        radius_meters: float,
        *,
        category_id: str | None = None,
        limit: int = 50,
    ) -> list[NearbyIssue]:
        if radius_meters <= 0 or radius_meters > self.nearby_max_radius_meters:
            raise ValueError(
                f"radius_meters must be in (0, {self.nearby_max_radius_meters}]"
            )
        return await self.geo_index.find_within_radius(
            point, radius_meters, category_id=category_id, limit=limit
        )

    async def find_duplicates(self, issue_id: str) -> list[DuplicateCandidate]:
        issue = await self._load(issue_id)
        return await self.detector.find_candidates_for(issue, self.duplicate_radius_meters)

    # ==================== Lifecycle ====================

    async def transition(
        self,
        issue_id: str,
        new_status: IssueStatus,
        actor_id: str,
        notes: str | None = None,
    ) -> Issue:
        return await self._mutate(
            issue_id,
            lambda issue: self.state_machine.transition(issue, new_status, actor_id, notes),
        )

    async def assign(
        self,
        issue_id: str,
        department_id: str,
        actor_id: str,
        user_id: str | None = None,
        *,
        move_to_assigned: bool = True,
        notes: str | None = None,
    ) -> Issue:
        """
        Assign an issue, then move it to 'assigned' when that edge exists.

        Both changes are saved together.
        """
        department = await self.store.get_department(department_id)
        if department is None:
            raise IssueNotFound(f"Department {department_id} not found", issue_id)
        user = None
        if user_id is not None:
            user = await self.store.get_user(user_id)
            if user is None:
                raise IssueNotFound(f"User {user_id} not found", issue_id)

        async with self._locks.hold(issue_id):
            issue = await self._load(issue_id)
            self._require_not_archived(issue)
            category = await self.store.get_category(issue.category_id)
            if category is None:
                raise IssueNotFound(f"Category {issue.category_id} not found", issue_id)

            result = self.state_machine.assign_to(issue, department, category, actor_id, user)
            if move_to_assigned and self.state_machine.can_transition(
                issue.status, IssueStatus.ASSIGNED
            ):
                moved = self.state_machine.transition(
                    issue, IssueStatus.ASSIGNED, actor_id, notes or f"Assigned to {department.name}"
                )
                result.events.extend(moved.events)
            await self.store.save_issue(issue)

        await self._publish(result.events, issue)
        return issue

    async def escalate(
        self,
        issue_id: str,
        actor_id: str,
        reason: str,
        escalated_to: str | None = None,
    ) -> Issue:
        return await self._mutate(
            issue_id,
            lambda issue: self.state_machine.escalate(issue, actor_id, reason, escalated_to),
        )

    async def mark_duplicate(
        self,
        issue_id: str,
        original_issue_id: str,
        actor_id: str,
        notes: str | None = None,
    ) -> LifecycleResult:
        """
        Link an issue to its original and bump the original's duplicate count.

        Both issue locks are held, acquired in id order, and both issues are
        saved in one atomic write. A version conflict reloads both and
        re-applies the whole change.
        """
        async with self._locks.hold(issue_id, original_issue_id):
            for attempt in range(DUPLICATE_MARK_RETRIES):
                issue = await self._load(issue_id)
                original = issue if original_issue_id == issue_id else await self._load(
                    original_issue_id
                )
                result = self.state_machine.mark_duplicate(issue, original, actor_id, notes)
                try:
                    await self.store.save_issues(issue, original)
                    break
                except ConcurrentModificationError:
                    if attempt == DUPLICATE_MARK_RETRIES - 1:
                        raise
                    logger.warning(
                        f"Duplicate mark of {issue_id} -> {original_issue_id} conflicted, retrying"
                    )

        await self._publish(result.events, issue)
        return result

    async def archive(self, issue_id: str, actor_id: str) -> Issue:
        def apply(issue: Issue) -> None:
            self._require_not_archived(issue)
            now = self.clock()
            issue.is_archived = True
            issue.archived_at = now
            issue.archived_by = actor_id
            issue.updated_at = now
            logger.info(f"Issue {issue.id} archived by {actor_id}")

        return await self._mutate(issue_id, apply)

    # ==================== Engagement ====================

    def _engage(self, issue: Issue) -> None:
        now = self.clock()
        issue.updated_at = now
        recompute_urgency(issue, now)

    async def vote(self, issue_id: str, user_id: str, vote: VoteType) -> Issue:
        def apply(issue: Issue) -> None:
            self._require_not_archived(issue)
            issue.add_vote(user_id, vote)
            self._engage(issue)

        return await self._mutate(issue_id, apply)

    async def remove_vote(self, issue_id: str, user_id: str) -> Issue:
        def apply(issue: Issue) -> None:
            if issue.remove_vote(user_id):
                self._engage(issue)

        return await self._mutate(issue_id, apply)

    async def follow(self, issue_id: str, user_id: str) -> Issue:
        def apply(issue: Issue) -> None:
            self._require_not_archived(issue)
            if issue.add_follower(user_id):
                self._engage(issue)

        return await self._mutate(issue_id, apply)

    async def unfollow(self, issue_id: str, user_id: str) -> Issue:
        def apply(issue: Issue) -> None:
            if issue.remove_follower(user_id):
                self._engage(issue)

        return await self._mutate(issue_id, apply)

    async def add_comment(self, issue_id: str, user_id: str, text: str) -> Issue:
        """Add a comment; comments by staff are marked official."""
        if not text or not text.strip():
            raise InvalidIssueOperation("Comment text is required", issue_id)
        user = await self.store.get_user(user_id)
        is_official = bool(user and user.is_staff)

        def apply(issue: Issue) -> None:
            self._require_not_archived(issue)
            issue.add_comment(user_id, text.strip(), self.clock(), is_official)
            self._engage(issue)

        return await self._mutate(issue_id, apply)

    async def record_view(self, issue_id: str) -> int:
        """Count a view; the issue's version is left alone so readers never cause conflicts."""
        return await self.store.increment_view_count(issue_id)

    async def record_share(self, issue_id: str) -> Issue:
        def apply(issue: Issue) -> None:
            issue.share_count += 1

        return await self._mutate(issue_id, apply)

    async def update_priority(
        self, issue_id: str, priority: IssuePriority, actor_id: str
    ) -> Issue:
        def apply(issue: Issue) -> None:
            self._require_not_archived(issue)
            if issue.priority != priority:
                logger.info(
                    f"Issue {issue.id} priority {issue.priority} -> {priority} by {actor_id}"
                )
                issue.priority = priority
            self._engage(issue)

        return await self._mutate(issue_id, apply)

    async def submit_feedback(
        self,
        issue_id: str,
        user_id: str,
        rating: int,
        comment: str | None = None,
    ) -> Issue:
        """Reporter's one-time 1-5 rating of a resolved issue."""
        if not 1 <= rating <= 5:
            raise InvalidIssueOperation("Rating must be between 1 and 5", issue_id)

        def apply(issue: Issue) -> None:
            if issue.reported_by != user_id:
                raise InvalidIssueOperation(
                    "Only the reporter can give feedback on an issue", issue.id
                )
            if issue.status != IssueStatus.RESOLVED:
                raise InvalidIssueOperation(
                    f"Feedback is only accepted on resolved issues (is '{issue.status}')",
                    issue.id,
                )
            if issue.feedback is not None:
                raise InvalidIssueOperation("Feedback already submitted", issue.id)
            now = self.clock()
            issue.feedback = Feedback(rating=rating, comment=comment, submitted_at=now)
            issue.updated_at = now

        return await self._mutate(issue_id, apply)

    # ==================== Scheduled work ====================

    async def sweep_sla_breaches(self) -> int:
        """
        Emit SlaBreached once for each newly overdue issue.

        Returns:
            Number of issues flagged in this sweep
        """
        now = self.clock()
        candidates = await self.store.find_overdue_candidates(now)
        flagged = 0

        for candidate in candidates:
            try:
                async with self._locks.hold(candidate.id):
                    issue = await self._load(candidate.id)
                    overdue_by = self.state_machine.overdue_by(issue, now)
                    if overdue_by is None or issue.sla_breach_notified_at is not None:
                        continue
                    issue.sla_breach_notified_at = now
                    await self.store.save_issue(issue)
            except (ConcurrentModificationError, IssueNotFound) as e:
                logger.warning(f"Skipping SLA check for {candidate.id}: {e}")
                continue

            flagged += 1
            await self._publish(
                [
                    SlaBreached(
                        issue_id=issue.id,
                        actor_id=None,
                        occurred_at=now,
                        overdue_by=overdue_by,
                    )
                ],
                issue,
            )

        if flagged:
            logger.warning(f"SLA sweep flagged {flagged} overdue issues")
        return flagged

    async def send_daily_digest(self) -> dict:
        """Compute issue statistics and notify staff."""
        now = self.clock()
        stats = await self.store.issue_statistics()
        await self._publish(
            [DailyDigestDue(issue_id="", actor_id=None, occurred_at=now, stats=stats)]
        )
        logger.info(f"Daily digest sent for {now.date()} ({stats.get('total', 0)} issues)")
        return stats
