"""Urgency scoring for issues.

Pure-function module, no store or I/O dependencies. Blends priority,
emergency flag, recency and public engagement into a 0-100 score that the
caller stores on the issue.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from app.domain import Issue, IssuePriority

PRIORITY_WEIGHTS: dict[IssuePriority, int] = {
    IssuePriority.CRITICAL: 40,
    IssuePriority.HIGH: 30,
    IssuePriority.MEDIUM: 20,
    IssuePriority.LOW: 10,
}

EMERGENCY_BONUS = 30

# (max age in hours, bonus); first matching band wins
RECENCY_BANDS: tuple[tuple[float, int], ...] = (
    (1, 20),
    (6, 15),
    (24, 10),
    (72, 5),
)

ENGAGEMENT_WEIGHT = 0.1
ENGAGEMENT_CAP = 10.0

MAX_SCORE = 100


@dataclass(frozen=True)
class UrgencyBreakdown:
    """Component scores, kept for explainability."""

    priority: int
    emergency: int
    recency: int
    engagement: float
    total: int


def recency_bonus(age_hours: float) -> int:
    for max_hours, bonus in RECENCY_BANDS:
        if age_hours <= max_hours:
            return bonus
    return 0


def engagement_bonus(upvotes: int, followers: int, comments: int) -> float:
    raw = 2 * upvotes + followers + comments
    return min(raw * ENGAGEMENT_WEIGHT, ENGAGEMENT_CAP)


def urgency_breakdown(issue: Issue, now: datetime) -> UrgencyBreakdown:
    """Score an issue and keep the per-component contributions."""
    priority = PRIORITY_WEIGHTS.get(issue.priority, 0)
    emergency = EMERGENCY_BONUS if issue.is_emergency else 0
    recency = recency_bonus(issue.age_in_hours(now))
    engagement = engagement_bonus(
        issue.upvotes, issue.followers_count, issue.comments_count
    )

    # Half-up rounding of the fractional engagement bonus
    total = math.floor(priority + emergency + recency + engagement + 0.5)
    total = max(0, min(total, MAX_SCORE))

    return UrgencyBreakdown(
        priority=priority,
        emergency=emergency,
        recency=recency,
        engagement=engagement,
        total=total,
    )


def score_urgency(issue: Issue, now: datetime) -> int:
    """Urgency score in [0, 100] for the issue's current fields."""
    return urgency_breakdown(issue, now).total


def recompute_urgency(issue: Issue, now: datetime) -> int:
    """Recompute and store the urgency score on the issue."""
    issue.urgency_score = score_urgency(issue, now)
    return issue.urgency_score
