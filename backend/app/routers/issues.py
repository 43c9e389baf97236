"""API routes for the issue lifecycle."""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from app.domain import Address, GeoPoint
from app.routers.deps import ActorId, Services
from app.schemas.issue import (
    AssignIn,
    CommentIn,
    DuplicateCandidateOut,
    DuplicateCandidatesResponse,
    EscalateIn,
    FeedbackIn,
    IssueCreate,
    IssueCreatedOut,
    IssueOut,
    MarkDuplicateIn,
    NearbyIssueOut,
    NearbyIssuesResponse,
    PriorityIn,
    StatusChangeIn,
    TransitionsOut,
    VoteIn,
)
from app.services.container import AppServices

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/issues", tags=["issues"])


def _out(services: AppServices, issue) -> IssueOut:
    return IssueOut.from_issue(
        issue, services.issues.clock(), services.issues.is_overdue(issue)
    )


@router.post("", response_model=IssueCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_issue(body: IssueCreate, services: Services, actor_id: ActorId):
    """
    Report a new issue.

    Nearby same-category reports are returned as advisory duplicate
    candidates; the issue is created regardless.
    """
    result = await services.issues.create_issue(
        title=body.title,
        description=body.description,
        category_id=body.category_id,
        location=GeoPoint(
            latitude=body.coordinates.latitude, longitude=body.coordinates.longitude
        ),
        reported_by=actor_id,
        priority=body.priority,
        is_emergency=body.is_emergency,
        is_anonymous=body.is_anonymous,
        address=Address(**body.address.model_dump()) if body.address else None,
        subcategory=body.subcategory,
        tags=body.tags,
    )
    return IssueCreatedOut(
        issue=_out(services, result.issue),
        duplicates=[DuplicateCandidateOut.from_candidate(c) for c in result.duplicates],
    )


@router.get("/nearby", response_model=NearbyIssuesResponse)
async def nearby_issues(
    services: Services,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: float | None = Query(None, gt=0, description="Radius in meters"),
    category_id: str | None = None,
    limit: int = Query(50, ge=1, le=200),
):
    """Issues within `radius` meters of a point, nearest first."""
    radius = radius or services.settings.nearby_default_radius_meters
    try:
        results = await services.issues.find_nearby(
            GeoPoint(latitude=lat, longitude=lng),
            radius,
            category_id=category_id,
            limit=limit,
        )
    except ValueError as e:
        logger.warning(f"Invalid nearby search: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    return NearbyIssuesResponse(
        issues=[NearbyIssueOut.from_nearby(r) for r in results],
        radius_meters=radius,
        total=len(results),
    )


@router.get("/{issue_id}", response_model=IssueOut)
async def get_issue(issue_id: str, services: Services):
    """Get a single issue; counts as a view."""
    await services.issues.record_view(issue_id)
    issue = await services.issues.get_issue(issue_id)
    return _out(services, issue)


@router.get("/{issue_id}/transitions", response_model=TransitionsOut)
async def get_transitions(issue_id: str, services: Services):
    issue = await services.issues.get_issue(issue_id)
    return TransitionsOut(
        status=issue.status,
        available_transitions=services.issues.state_machine.available_transitions(issue),
    )


@router.get("/{issue_id}/duplicates", response_model=DuplicateCandidatesResponse)
async def get_duplicates(issue_id: str, services: Services):
    candidates = await services.issues.find_duplicates(issue_id)
    return DuplicateCandidatesResponse(
        candidates=[DuplicateCandidateOut.from_candidate(c) for c in candidates],
        total=len(candidates),
    )


@router.post("/{issue_id}/status", response_model=IssueOut)
async def change_status(
    issue_id: str, body: StatusChangeIn, services: Services, actor_id: ActorId
):
    issue = await services.issues.transition(issue_id, body.status, actor_id, body.notes)
    return _out(services, issue)


@router.post("/{issue_id}/assign", response_model=IssueOut)
async def assign_issue(issue_id: str, body: AssignIn, services: Services, actor_id: ActorId):
    issue = await services.issues.assign(
        issue_id, body.department_id, actor_id, body.user_id, notes=body.notes
    )
    return _out(services, issue)


@router.post("/{issue_id}/escalate", response_model=IssueOut)
async def escalate_issue(
    issue_id: str, body: EscalateIn, services: Services, actor_id: ActorId
):
    issue = await services.issues.escalate(issue_id, actor_id, body.reason, body.escalated_to)
    return _out(services, issue)


@router.post("/{issue_id}/duplicate", response_model=IssueOut)
async def mark_duplicate(
    issue_id: str, body: MarkDuplicateIn, services: Services, actor_id: ActorId
):
    result = await services.issues.mark_duplicate(
        issue_id, body.original_issue_id, actor_id, body.notes
    )
    return _out(services, result.issue)


@router.post("/{issue_id}/votes", response_model=IssueOut)
async def vote(issue_id: str, body: VoteIn, services: Services, actor_id: ActorId):
    issue = await services.issues.vote(issue_id, actor_id, body.vote)
    return _out(services, issue)


@router.delete("/{issue_id}/votes", response_model=IssueOut)
async def remove_vote(issue_id: str, services: Services, actor_id: ActorId):
    issue = await services.issues.remove_vote(issue_id, actor_id)
    return _out(services, issue)


@router.post("/{issue_id}/follow", response_model=IssueOut)
async def follow(issue_id: str, services: Services, actor_id: ActorId):
    issue = await services.issues.follow(issue_id, actor_id)
    return _out(services, issue)


@router.delete("/{issue_id}/follow", response_model=IssueOut)
async def unfollow(issue_id: str, services: Services, actor_id: ActorId):
    issue = await services.issues.unfollow(issue_id, actor_id)
    return _out(services, issue)


@router.post("/{issue_id}/share", response_model=IssueOut)
async def share(issue_id: str, services: Services):
    issue = await services.issues.record_share(issue_id)
    return _out(services, issue)


@router.post(
    "/{issue_id}/comments", response_model=IssueOut, status_code=status.HTTP_201_CREATED
)
async def add_comment(issue_id: str, body: CommentIn, services: Services, actor_id: ActorId):
    issue = await services.issues.add_comment(issue_id, actor_id, body.text)
    return _out(services, issue)


@router.post("/{issue_id}/feedback", response_model=IssueOut)
async def submit_feedback(
    issue_id: str, body: FeedbackIn, services: Services, actor_id: ActorId
):
    issue = await services.issues.submit_feedback(
        issue_id, actor_id, body.rating, body.comment
    )
    return _out(services, issue)


@router.delete("/{issue_id}", response_model=IssueOut)
async def archive_issue(issue_id: str, services: Services, actor_id: ActorId):
    """Soft-archive an issue; issues are never hard-deleted."""
    issue = await services.issues.archive(issue_id, actor_id)
    return _out(services, issue)


@router.post("/{issue_id}/priority", response_model=IssueOut)
async def update_priority(
    issue_id: str, body: PriorityIn, services: Services, actor_id: ActorId
):
    issue = await services.issues.update_priority(issue_id, body.priority, actor_id)
    return _out(services, issue)
