"""Issue lifecycle services: scoring, spatial search, duplicates, state machine."""

from app.services.duplicates import DuplicateCandidate, DuplicateDetector
from app.services.geo import GeoIndex, NearbyIssue, bounding_box, haversine_meters
from app.services.state_machine import IssueStateMachine, LifecycleResult
from app.services.urgency import recompute_urgency, score_urgency

__all__ = [
    "DuplicateCandidate",
    "DuplicateDetector",
    "GeoIndex",
    "IssueStateMachine",
    "LifecycleResult",
    "NearbyIssue",
    "bounding_box",
    "haversine_meters",
    "recompute_urgency",
    "score_urgency",
]
