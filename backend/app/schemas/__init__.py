"""Pydantic schemas for API request/response validation."""

from app.schemas.issue import IssueCreate, IssueCreatedOut, IssueOut, NearbyIssuesResponse
from app.schemas.notification import NotificationOut, QueueStatsOut

__all__ = [
    "IssueCreate",
    "IssueCreatedOut",
    "IssueOut",
    "NearbyIssuesResponse",
    "NotificationOut",
    "QueueStatsOut",
]
