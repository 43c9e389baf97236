"""Issue lifecycle entities.

Plain dataclasses with no persistence behaviour. Stores hand out copies, the
lifecycle services mutate those copies and hand them back for saving.
"""

from dataclasses import dataclass, field
from datetime import datetime

from app.domain.enums import (
    IssuePriority,
    IssueStatus,
    NotificationChannel,
    UserRole,
    VoteType,
)


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 point."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        """Validate coordinate ranges."""
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(f"Latitude {self.latitude} out of range")
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(f"Longitude {self.longitude} out of range")


@dataclass(frozen=True)
class BoundingBox:
    """Geographic bounds used for the cheap first phase of radius searches."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, point: GeoPoint) -> bool:
        """Check if a point is within these bounds (edges included)."""
        return (
            self.min_lat <= point.latitude <= self.max_lat
            and self.min_lng <= point.longitude <= self.max_lng
        )


@dataclass
class Address:
    formatted: str | None = None
    street: str | None = None
    area: str | None = None
    city: str | None = None
    state: str | None = None
    pincode: str | None = None
    landmark: str | None = None


@dataclass
class Category:
    id: str
    name: str
    code: str
    sla_hours: int
    default_priority: IssuePriority = IssuePriority.MEDIUM
    department_id: str | None = None  # Primary handling department
    is_active: bool = True


@dataclass
class Department:
    id: str
    name: str
    code: str
    email: str | None = None
    is_active: bool = True


@dataclass
class NotificationPreferences:
    email: bool = True
    sms: bool = False
    push: bool = True
    in_app: bool = True
    issue_updates: bool = True  # Opt-out switch for issue notifications

    def channels(self) -> list[NotificationChannel]:
        """Channels this user accepts, in delivery preference order."""
        enabled = {
            NotificationChannel.EMAIL: self.email,
            NotificationChannel.SMS: self.sms,
            NotificationChannel.PUSH: self.push,
            NotificationChannel.IN_APP: self.in_app,
        }
        return [channel for channel, on in enabled.items() if on]


@dataclass
class User:
    id: str
    full_name: str
    email: str | None = None
    phone: str | None = None
    push_token: str | None = None
    role: UserRole = UserRole.CITIZEN
    department_id: str | None = None
    is_active: bool = True
    notification_preferences: NotificationPreferences = field(
        default_factory=NotificationPreferences
    )

    @property
    def is_staff(self) -> bool:
        return self.role != UserRole.CITIZEN

    def address_for(self, channel: NotificationChannel) -> str | None:
        """Delivery address for a channel, or None if the user has none."""
        if channel == NotificationChannel.EMAIL:
            return self.email
        if channel == NotificationChannel.SMS:
            return self.phone
        if channel == NotificationChannel.PUSH:
            return self.push_token
        return self.id


@dataclass
class StatusHistoryEntry:
    status: IssueStatus
    changed_by: str
    timestamp: datetime
    comment: str | None = None
    previous_status: IssueStatus | None = None


@dataclass
class EscalationEntry:
    level: int
    escalated_by: str
    reason: str
    timestamp: datetime
    escalated_to: str | None = None


@dataclass
class Comment:
    user_id: str
    text: str
    created_at: datetime
    is_official: bool = False


@dataclass
class Feedback:
    rating: int
    submitted_at: datetime
    comment: str | None = None


@dataclass
class Issue:
    """
    A citizen-submitted report.

    `status_history` and `escalation_history` are append-only and written
    only by the state machine. `urgency_score` is None until scored.
    """

    id: str
    title: str
    description: str
    category_id: str
    location: GeoPoint
    reported_by: str
    created_at: datetime

    number: str | None = None
    address: Address = field(default_factory=Address)
    subcategory: str | None = None
    priority: IssuePriority = IssuePriority.MEDIUM
    is_emergency: bool = False
    is_anonymous: bool = False
    tags: list[str] = field(default_factory=list)

    # Status
    status: IssueStatus = IssueStatus.SUBMITTED
    status_history: list[StatusHistoryEntry] = field(default_factory=list)

    # Assignment & escalation
    assigned_department_id: str | None = None
    assigned_user_id: str | None = None
    escalation_level: int = 0
    escalation_history: list[EscalationEntry] = field(default_factory=list)
    sla_deadline: datetime | None = None
    sla_breach_notified_at: datetime | None = None
    actual_resolution_date: datetime | None = None

    # Engagement
    voters: dict[str, VoteType] = field(default_factory=dict)
    followers: list[str] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    view_count: int = 0
    share_count: int = 0
    feedback: Feedback | None = None

    # Derived
    urgency_score: int | None = None

    # Duplicate linkage
    is_duplicate: bool = False
    original_issue_id: str | None = None
    duplicate_count: int = 0

    # Lifecycle
    is_archived: bool = False
    archived_at: datetime | None = None
    archived_by: str | None = None
    updated_at: datetime | None = None
    version: int = 0

    @property
    def upvotes(self) -> int:
        return sum(1 for vote in self.voters.values() if vote == VoteType.UP)

    @property
    def downvotes(self) -> int:
        return sum(1 for vote in self.voters.values() if vote == VoteType.DOWN)

    @property
    def vote_score(self) -> int:
        return self.upvotes - self.downvotes

    @property
    def followers_count(self) -> int:
        return len(self.followers)

    @property
    def comments_count(self) -> int:
        return len(self.comments)

    def age_in_hours(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds() / 3600

    def age_in_days(self, now: datetime) -> int:
        return int(self.age_in_hours(now) // 24)

    def add_vote(self, user_id: str, vote: VoteType) -> None:
        """Record a vote; a later vote by the same user replaces the earlier one."""
        self.voters.pop(user_id, None)
        self.voters[user_id] = vote

    def remove_vote(self, user_id: str) -> bool:
        return self.voters.pop(user_id, None) is not None

    def add_follower(self, user_id: str) -> bool:
        if user_id in self.followers:
            return False
        self.followers.append(user_id)
        return True

    def remove_follower(self, user_id: str) -> bool:
        if user_id not in self.followers:
            return False
        self.followers.remove(user_id)
        return True

    def add_comment(
        self, user_id: str, text: str, at: datetime, is_official: bool = False
    ) -> Comment:
        comment = Comment(user_id=user_id, text=text, created_at=at, is_official=is_official)
        self.comments.append(comment)
        return comment

    def __repr__(self) -> str:
        return f"<Issue {self.number or self.id}: {self.status}>"
