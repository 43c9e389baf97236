"""Pydantic schemas for issues."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.domain import Issue, IssuePriority, IssueStatus, VoteType
from app.services.duplicates import DuplicateCandidate
from app.services.geo import NearbyIssue


class Coordinates(BaseModel):
    """Geographic coordinates."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class AddressIn(BaseModel):
    formatted: str | None = None
    street: str | None = None
    area: str | None = None
    city: str | None = None
    state: str | None = None
    pincode: str | None = None
    landmark: str | None = None


class IssueCreate(BaseModel):
    """Request body for reporting an issue."""

    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    category_id: str
    coordinates: Coordinates
    address: AddressIn | None = None
    subcategory: str | None = None
    priority: IssuePriority | None = None
    is_emergency: bool = False
    is_anonymous: bool = False
    tags: list[str] = Field(default_factory=list, max_length=10)


class StatusChangeIn(BaseModel):
    status: IssueStatus
    notes: str | None = Field(None, max_length=1000)


class AssignIn(BaseModel):
    department_id: str
    user_id: str | None = None
    notes: str | None = Field(None, max_length=1000)


class EscalateIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    escalated_to: str | None = None


class MarkDuplicateIn(BaseModel):
    original_issue_id: str
    notes: str | None = Field(None, max_length=1000)


class PriorityIn(BaseModel):
    priority: IssuePriority


class VoteIn(BaseModel):
    vote: VoteType


class CommentIn(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)


class FeedbackIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=500)


class StatusHistoryOut(BaseModel):
    status: IssueStatus
    previous_status: IssueStatus | None = None
    changed_by: str
    comment: str | None = None
    timestamp: datetime


class EscalationOut(BaseModel):
    level: int
    escalated_by: str
    escalated_to: str | None = None
    reason: str
    timestamp: datetime


class CommentOut(BaseModel):
    user_id: str
    text: str
    created_at: datetime
    is_official: bool


class FeedbackOut(BaseModel):
    rating: int
    comment: str | None = None
    submitted_at: datetime


class IssueOut(BaseModel):
    """Issue response schema, including fields derived on read."""

    id: str
    number: str | None
    title: str
    description: str
    category_id: str
    subcategory: str | None = None
    priority: IssuePriority
    is_emergency: bool
    is_anonymous: bool
    tags: list[str]

    coordinates: Coordinates
    address: AddressIn

    reported_by: str | None
    status: IssueStatus
    status_history: list[StatusHistoryOut]

    assigned_department_id: str | None = None
    assigned_user_id: str | None = None
    escalation_level: int
    escalation_history: list[EscalationOut]
    sla_deadline: datetime | None = None
    actual_resolution_date: datetime | None = None

    upvotes: int
    downvotes: int
    vote_score: int
    followers_count: int
    comments_count: int
    comments: list[CommentOut]
    view_count: int
    share_count: int
    feedback: FeedbackOut | None = None

    urgency_score: int | None = None
    age_in_days: int
    is_overdue: bool

    is_duplicate: bool
    original_issue_id: str | None = None
    duplicate_count: int

    is_archived: bool
    created_at: datetime
    updated_at: datetime | None = None
    version: int

    @classmethod
    def from_issue(cls, issue: Issue, now: datetime, is_overdue: bool) -> "IssueOut":
        return cls(
            id=issue.id,
            number=issue.number,
            title=issue.title,
            description=issue.description,
            category_id=issue.category_id,
            subcategory=issue.subcategory,
            priority=issue.priority,
            is_emergency=issue.is_emergency,
            is_anonymous=issue.is_anonymous,
            tags=issue.tags,
            coordinates=Coordinates(
                latitude=issue.location.latitude, longitude=issue.location.longitude
            ),
            address=AddressIn(**vars(issue.address)),
            reported_by=None if issue.is_anonymous else issue.reported_by,
            status=issue.status,
            status_history=[StatusHistoryOut(**vars(h)) for h in issue.status_history],
            assigned_department_id=issue.assigned_department_id,
            assigned_user_id=issue.assigned_user_id,
            escalation_level=issue.escalation_level,
            escalation_history=[EscalationOut(**vars(e)) for e in issue.escalation_history],
            sla_deadline=issue.sla_deadline,
            actual_resolution_date=issue.actual_resolution_date,
            upvotes=issue.upvotes,
            downvotes=issue.downvotes,
            vote_score=issue.vote_score,
            followers_count=issue.followers_count,
            comments_count=issue.comments_count,
            comments=[CommentOut(**vars(c)) for c in issue.comments],
            view_count=issue.view_count,
            share_count=issue.share_count,
            feedback=FeedbackOut(**vars(issue.feedback)) if issue.feedback else None,
            urgency_score=issue.urgency_score,
            age_in_days=issue.age_in_days(now),
            is_overdue=is_overdue,
            is_duplicate=issue.is_duplicate,
            original_issue_id=issue.original_issue_id,
            duplicate_count=issue.duplicate_count,
            is_archived=issue.is_archived,
            created_at=issue.created_at,
            updated_at=issue.updated_at,
            version=issue.version,
        )


class IssueSummaryOut(BaseModel):
    """Compact issue representation for search results."""

    id: str
    number: str | None
    title: str
    category_id: str
    status: IssueStatus
    priority: IssuePriority
    coordinates: Coordinates
    urgency_score: int | None = None
    created_at: datetime

    @classmethod
    def from_issue(cls, issue: Issue) -> "IssueSummaryOut":
        return cls(
            id=issue.id,
            number=issue.number,
            title=issue.title,
            category_id=issue.category_id,
            status=issue.status,
            priority=issue.priority,
            coordinates=Coordinates(
                latitude=issue.location.latitude, longitude=issue.location.longitude
            ),
            urgency_score=issue.urgency_score,
            created_at=issue.created_at,
        )


class NearbyIssueOut(BaseModel):
    issue: IssueSummaryOut
    distance_meters: float

    @classmethod
    def from_nearby(cls, nearby: NearbyIssue) -> "NearbyIssueOut":
        return cls(
            issue=IssueSummaryOut.from_issue(nearby.issue),
            distance_meters=round(nearby.distance_meters, 1),
        )


class DuplicateCandidateOut(BaseModel):
    issue: IssueSummaryOut
    distance_meters: float
    similarity: float
    is_probable: bool

    @classmethod
    def from_candidate(cls, candidate: DuplicateCandidate) -> "DuplicateCandidateOut":
        return cls(
            issue=IssueSummaryOut.from_issue(candidate.issue),
            distance_meters=round(candidate.distance_meters, 1),
            similarity=round(candidate.similarity, 3),
            is_probable=candidate.is_probable,
        )


class IssueCreatedOut(BaseModel):
    """Response for a new report: the issue and advisory duplicate candidates."""

    issue: IssueOut
    duplicates: list[DuplicateCandidateOut]


class NearbyIssuesResponse(BaseModel):
    issues: list[NearbyIssueOut]
    radius_meters: float
    total: int


class DuplicateCandidatesResponse(BaseModel):
    candidates: list[DuplicateCandidateOut]
    total: int


class TransitionsOut(BaseModel):
    status: IssueStatus
    available_transitions: list[IssueStatus]
