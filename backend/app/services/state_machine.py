"""Issue status state machine.

Owns every write to `status`, `status_history`, `escalation_level` and
`escalation_history`. Each operation validates first and mutates after, so a
raised IssueLifecycleError leaves the issue untouched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from app.domain import (
    Category,
    Department,
    EscalationEntry,
    Issue,
    IssueStatus,
    StatusHistoryEntry,
    User,
)
from app.domain.errors import (
    InvalidDepartmentAssignment,
    InvalidTransition,
    MaxEscalationReached,
    SelfReferenceError,
    TerminalStateError,
)
from app.domain.events import (
    DomainEvent,
    IssueAssigned,
    IssueCreated,
    IssueEscalated,
    IssueMarkedDuplicate,
    StatusChanged,
)
from app.services.clock import Clock, utc_now

logger = logging.getLogger(__name__)

MAX_ESCALATION_LEVEL = 5

S = IssueStatus

ALLOWED_TRANSITIONS: dict[IssueStatus, frozenset[IssueStatus]] = {
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.ASSIGNED, S.REJECTED, S.DUPLICATE, S.ESCALATED}),
    S.UNDER_REVIEW: frozenset(
        {S.ASSIGNED, S.REJECTED, S.DUPLICATE, S.ESCALATED, S.CLOSED}
    ),
    S.ASSIGNED: frozenset(
        {S.IN_PROGRESS, S.UNDER_REVIEW, S.REJECTED, S.ESCALATED, S.DUPLICATE, S.CLOSED}
    ),
    S.IN_PROGRESS: frozenset({S.RESOLVED, S.ASSIGNED, S.ESCALATED, S.CLOSED}),
    S.ESCALATED: frozenset(
        {
            S.UNDER_REVIEW,
            S.ASSIGNED,
            S.IN_PROGRESS,
            S.REJECTED,
            S.CLOSED,
            S.DUPLICATE,
        }
    ),
    S.REOPENED: frozenset(
        {S.UNDER_REVIEW, S.ASSIGNED, S.IN_PROGRESS, S.ESCALATED, S.CLOSED, S.DUPLICATE}
    ),
    S.RESOLVED: frozenset({S.REOPENED}),
    S.CLOSED: frozenset({S.REOPENED}),
    S.REJECTED: frozenset({S.REOPENED}),
    S.DUPLICATE: frozenset(),
}

# Statuses that only a reopen can leave
REOPENABLE_STATUSES = frozenset({S.RESOLVED, S.CLOSED, S.REJECTED})

# Statuses that no transition can leave
FINAL_STATUSES = frozenset({S.DUPLICATE})

# Statuses for which SLA is no longer tracked
TERMINAL_STATUSES = frozenset({S.RESOLVED, S.CLOSED, S.REJECTED, S.DUPLICATE})

# Statuses that can only be entered once a department owns the issue
REQUIRES_ASSIGNMENT = frozenset({S.IN_PROGRESS, S.RESOLVED})

del S


@dataclass
class LifecycleResult:
    """Outcome of a successful lifecycle operation."""

    issue: Issue
    events: list[DomainEvent] = field(default_factory=list)
    original: Issue | None = None  # Set by mark_duplicate


class IssueStateMachine:
    """Validates and applies status, assignment and escalation changes."""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    # ==================== Queries ====================

    @staticmethod
    def can_transition(current: IssueStatus, new_status: IssueStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(current, frozenset())

    @staticmethod
    def available_transitions(issue: Issue) -> list[IssueStatus]:
        """Statuses the issue may move to next, in declaration order."""
        allowed = ALLOWED_TRANSITIONS.get(issue.status, frozenset())
        if issue.assigned_department_id is None:
            allowed = allowed - REQUIRES_ASSIGNMENT
        return [status for status in IssueStatus if status in allowed]

    @staticmethod
    def compute_sla_deadline(issue: Issue, category: Category) -> datetime:
        return issue.created_at + timedelta(hours=category.sla_hours)

    def overdue_by(self, issue: Issue, now: datetime | None = None) -> timedelta | None:
        """How far past its SLA deadline the issue is, or None if not overdue."""
        if issue.sla_deadline is None or issue.status in TERMINAL_STATUSES:
            return None
        now = now or self.clock()
        if now > issue.sla_deadline:
            return now - issue.sla_deadline
        return None

    def is_overdue(self, issue: Issue, now: datetime | None = None) -> bool:
        return self.overdue_by(issue, now) is not None

    # ==================== Mutations ====================

    def append_history(
        self,
        issue: Issue,
        status: IssueStatus,
        actor_id: str,
        at: datetime,
        comment: str | None = None,
        previous_status: IssueStatus | None = None,
    ) -> StatusHistoryEntry:
        entry = StatusHistoryEntry(
            status=status,
            changed_by=actor_id,
            timestamp=at,
            comment=comment,
            previous_status=previous_status,
        )
        issue.status_history.append(entry)
        issue.updated_at = at
        return entry

    def submit(self, issue: Issue, actor_id: str) -> LifecycleResult:
        """Put a freshly reported issue into its initial status."""
        now = self.clock()
        issue.status = IssueStatus.SUBMITTED
        self.append_history(issue, IssueStatus.SUBMITTED, actor_id, now, "Issue reported")
        return LifecycleResult(
            issue=issue,
            events=[IssueCreated(issue_id=issue.id, actor_id=actor_id, occurred_at=now)],
        )

    def _check_transition(self, issue: Issue, new_status: IssueStatus) -> None:
        current = issue.status
        if current in FINAL_STATUSES:
            raise TerminalStateError(issue.id, current, new_status)
        if current in REOPENABLE_STATUSES and new_status != IssueStatus.REOPENED:
            raise TerminalStateError(issue.id, current, new_status)
        if not self.can_transition(current, new_status):
            raise InvalidTransition(issue.id, current, new_status)
        if new_status in REQUIRES_ASSIGNMENT and issue.assigned_department_id is None:
            raise InvalidTransition(
                issue.id, current, new_status, "issue has no assigned department"
            )

    def _apply_transition(
        self, issue: Issue, new_status: IssueStatus, actor_id: str, notes: str | None, now: datetime
    ) -> StatusChanged:
        previous = issue.status
        issue.status = new_status
        if new_status == IssueStatus.RESOLVED:
            issue.actual_resolution_date = now
        elif new_status == IssueStatus.REOPENED:
            issue.actual_resolution_date = None
        self.append_history(issue, new_status, actor_id, now, notes, previous)
        return StatusChanged(
            issue_id=issue.id,
            actor_id=actor_id,
            occurred_at=now,
            previous_status=previous,
            new_status=new_status,
            notes=notes,
        )

    def transition(
        self,
        issue: Issue,
        new_status: IssueStatus,
        actor_id: str,
        notes: str | None = None,
    ) -> LifecycleResult:
        """
        Move an issue to `new_status`.

        Raises:
            TerminalStateError: Issue is resolved/closed/rejected and the
                request is not a reopen, or the issue is a duplicate
            InvalidTransition: `new_status` is not adjacent to the current status
        """
        self._check_transition(issue, new_status)

        now = self.clock()
        event = self._apply_transition(issue, new_status, actor_id, notes, now)
        logger.info(f"Issue {issue.id}: {event.previous_status} -> {new_status} by {actor_id}")
        return LifecycleResult(issue=issue, events=[event])

    def assign_to(
        self,
        issue: Issue,
        department: Department,
        category: Category,
        actor_id: str,
        user: User | None = None,
    ) -> LifecycleResult:
        """
        Set the handling department (and optionally staff member).

        Status is left alone; callers follow up with a transition to
        'assigned'. The SLA deadline is (re)computed from the category.
        """
        if not department.is_active:
            raise InvalidDepartmentAssignment(
                f"Department {department.code} is not active", issue.id
            )
        if user is not None:
            if not user.is_active:
                raise InvalidDepartmentAssignment(f"User {user.id} is not active", issue.id)
            if user.department_id != department.id:
                raise InvalidDepartmentAssignment(
                    f"User {user.id} does not belong to department {department.code}",
                    issue.id,
                )

        now = self.clock()
        issue.assigned_department_id = department.id
        issue.assigned_user_id = user.id if user else None
        issue.sla_deadline = self.compute_sla_deadline(issue, category)
        issue.sla_breach_notified_at = None
        issue.updated_at = now

        logger.info(
            f"Issue {issue.id} assigned to department {department.code}"
            + (f", user {user.id}" if user else "")
        )
        return LifecycleResult(
            issue=issue,
            events=[
                IssueAssigned(
                    issue_id=issue.id,
                    actor_id=actor_id,
                    occurred_at=now,
                    department_id=department.id,
                    user_id=user.id if user else None,
                )
            ],
        )

    def escalate(
        self,
        issue: Issue,
        actor_id: str,
        reason: str,
        escalated_to: str | None = None,
    ) -> LifecycleResult:
        """Raise the escalation level by one; status is not changed."""
        if issue.escalation_level >= MAX_ESCALATION_LEVEL:
            raise MaxEscalationReached(issue.id, issue.escalation_level)

        now = self.clock()
        issue.escalation_level += 1
        issue.escalation_history.append(
            EscalationEntry(
                level=issue.escalation_level,
                escalated_by=actor_id,
                reason=reason,
                timestamp=now,
                escalated_to=escalated_to,
            )
        )
        issue.updated_at = now

        logger.warning(f"Issue {issue.id} escalated to level {issue.escalation_level}: {reason}")
        return LifecycleResult(
            issue=issue,
            events=[
                IssueEscalated(
                    issue_id=issue.id,
                    actor_id=actor_id,
                    occurred_at=now,
                    level=issue.escalation_level,
                    reason=reason,
                )
            ],
        )

    def mark_duplicate(
        self,
        issue: Issue,
        original: Issue,
        actor_id: str,
        notes: str | None = None,
    ) -> LifecycleResult:
        """
        Link `issue` to `original` and move it to 'duplicate'.

        Every call counts: marking the same pair twice is rejected only
        because 'duplicate' is final, not by an idempotency check.
        """
        if issue.id == original.id:
            raise SelfReferenceError(issue.id)
        self._check_transition(issue, IssueStatus.DUPLICATE)

        now = self.clock()
        issue.is_duplicate = True
        issue.original_issue_id = original.id
        changed = self._apply_transition(
            issue,
            IssueStatus.DUPLICATE,
            actor_id,
            notes or f"Duplicate of {original.number or original.id}",
            now,
        )
        original.duplicate_count += 1
        original.updated_at = now

        logger.info(
            f"Issue {issue.id} marked duplicate of {original.id} "
            f"(now {original.duplicate_count} duplicates)"
        )
        return LifecycleResult(
            issue=issue,
            original=original,
            events=[
                IssueMarkedDuplicate(
                    issue_id=issue.id,
                    actor_id=actor_id,
                    occurred_at=now,
                    original_issue_id=original.id,
                ),
                changed,
            ],
        )
