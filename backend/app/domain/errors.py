"""Exceptions raised by the issue lifecycle and notification delivery."""

from app.domain.enums import IssueStatus


class IssueLifecycleError(Exception):
    """Base exception for rejected issue operations.

    Raised before any field of the issue is touched, so a caller that
    catches it can rely on the issue being exactly as it was.
    """

    def __init__(self, message: str, issue_id: str | None = None):
        super().__init__(message)
        self.issue_id = issue_id


class IssueNotFound(IssueLifecycleError):
    """Raised when an issue, category, department or user lookup misses."""

    pass


class InvalidTransition(IssueLifecycleError):
    """Raised when the requested status is not adjacent to the current one."""

    def __init__(
        self,
        issue_id: str,
        current: IssueStatus,
        requested: IssueStatus,
        reason: str | None = None,
    ):
        message = f"Cannot move issue {issue_id} from '{current}' to '{requested}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, issue_id)
        self.current_status = current
        self.requested_status = requested
        self.reason = reason


class TerminalStateError(InvalidTransition):
    """Raised when a terminal issue is asked to move anywhere but 'reopened'."""

    def __init__(self, issue_id: str, current: IssueStatus, requested: IssueStatus):
        IssueLifecycleError.__init__(
            self,
            f"Issue {issue_id} is '{current}'; only a reopen is allowed "
            f"(requested '{requested}')",
            issue_id,
        )
        self.current_status = current
        self.requested_status = requested
        self.reason = None


class MaxEscalationReached(IssueLifecycleError):
    """Raised when escalating an issue already at the top level."""

    def __init__(self, issue_id: str, level: int):
        super().__init__(
            f"Issue {issue_id} is already at escalation level {level}", issue_id
        )
        self.level = level


class SelfReferenceError(IssueLifecycleError):
    """Raised when an issue is marked as a duplicate of itself."""

    def __init__(self, issue_id: str):
        super().__init__(f"Issue {issue_id} cannot be a duplicate of itself", issue_id)


class InvalidDepartmentAssignment(IssueLifecycleError):
    """Raised for an inactive department or a user outside the department."""

    pass


class InvalidIssueOperation(IssueLifecycleError):
    """Raised for operations not allowed in the issue's current state."""

    pass


class ConcurrentModificationError(IssueLifecycleError):
    """Raised when a save loses an optimistic version check."""

    def __init__(self, issue_id: str, expected_version: int):
        super().__init__(
            f"Issue {issue_id} was modified concurrently (expected version "
            f"{expected_version})",
            issue_id,
        )
        self.expected_version = expected_version


class DeliveryFailure(Exception):
    """A delivery attempt failed; the notification may be retried."""

    pass


class DeliveryExhausted(DeliveryFailure):
    """The final allowed delivery attempt failed."""

    def __init__(self, notification_id: str, attempts: int, last_error: str | None):
        super().__init__(
            f"Notification {notification_id} failed after {attempts} attempts: "
            f"{last_error}"
        )
        self.notification_id = notification_id
        self.attempts = attempts
        self.last_error = last_error
