"""Creation-time duplicate detection.

Candidates are advisory: they are surfaced to the submitter and staff, and
nothing is rejected or merged automatically.
"""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta

from app.domain import GeoPoint, Issue
from app.services.clock import Clock, utc_now
from app.services.geo import GeoIndex

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9]+")

_STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "at", "be", "by", "for", "from", "has", "in",
        "is", "it", "near", "of", "on", "or", "the", "there", "this", "to",
        "was", "with",
    }
)


def _tokens(text: str | None) -> set[str]:
    if not text:
        return set()
    return {w for w in _WORD_RE.findall(text.lower()) if w not in _STOPWORDS and len(w) > 1}


def text_similarity(a: str | None, b: str | None) -> float:
    """Jaccard similarity of the content words of two texts (0.0-1.0)."""
    tokens_a = _tokens(a)
    tokens_b = _tokens(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


@dataclass(frozen=True)
class DuplicateCandidate:
    """A nearby same-category issue that may describe the same problem."""

    issue: Issue
    distance_meters: float
    similarity: float
    is_probable: bool


class DuplicateDetector:
    """
    Flags probable duplicate reports.

    Features:
    - Radius search through GeoIndex (box pre-filter, haversine re-filter)
    - Same-category, lookback-window narrowing
    - Title/description similarity to mark the likeliest matches
    """

    def __init__(
        self,
        geo_index: GeoIndex,
        lookback_days: int = 30,
        max_candidates: int = 10,
        similarity_threshold: float = 0.5,
        clock: Clock = utc_now,
    ):
        self.geo_index = geo_index
        self.lookback_days = lookback_days
        self.max_candidates = max_candidates
        self.similarity_threshold = similarity_threshold
        self.clock = clock

    async def find_candidates(
        self,
        category_id: str,
        point: GeoPoint,
        radius_meters: float,
        *,
        title: str | None = None,
        description: str | None = None,
        exclude_issue_id: str | None = None,
    ) -> list[DuplicateCandidate]:
        """
        Find probable duplicates of a report at `point`.

        Args:
            category_id: Category of the new report
            point: Location of the new report
            radius_meters: Search radius
            title: Title of the new report, for similarity
            description: Description of the new report, for similarity
            exclude_issue_id: Id of the report itself, when already stored

        Returns:
            Up to `max_candidates` candidates, nearest first
        """
        since = self.clock() - timedelta(days=self.lookback_days)
        nearby = await self.geo_index.find_within_radius(
            point,
            radius_meters,
            category_id=category_id,
            since=since,
            exclude_ids=[exclude_issue_id] if exclude_issue_id else (),
        )

        report_text = " ".join(filter(None, [title, description]))
        candidates = []
        for match in nearby:
            issue = match.issue
            # Re-check the narrowing in case the store ignores a filter
            if issue.category_id != category_id or issue.created_at < since:
                continue
            if issue.is_duplicate or issue.is_archived:
                continue

            similarity = text_similarity(
                report_text, " ".join(filter(None, [issue.title, issue.description]))
            )
            candidates.append(
                DuplicateCandidate(
                    issue=issue,
                    distance_meters=match.distance_meters,
                    similarity=similarity,
                    is_probable=similarity >= self.similarity_threshold,
                )
            )
            if len(candidates) >= self.max_candidates:
                break

        if candidates:
            logger.info(
                f"Found {len(candidates)} duplicate candidates within {radius_meters}m "
                f"(category={category_id})"
            )
        return candidates

    async def find_candidates_for(
        self, issue: Issue, radius_meters: float
    ) -> list[DuplicateCandidate]:
        """Candidates for an issue that may already be stored."""
        return await self.find_candidates(
            issue.category_id,
            issue.location,
            radius_meters,
            title=issue.title,
            description=issue.description,
            exclude_issue_id=issue.id,
        )
