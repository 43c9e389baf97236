"""Spatial search over issues.

Radius searches run in two phases: a bounding box the store can answer from
its spatial index, then an exact haversine re-filter down to the true circle.
"""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from app.domain import BoundingBox, GeoPoint, Issue
from app.store.base import IssueStore

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000.0
METERS_PER_DEGREE_LAT = 111_000.0  # Approximation used only for the box phase


def haversine_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points on a mean-radius Earth."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlng = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def bounding_box(center: GeoPoint, radius_meters: float) -> BoundingBox:
    """
    Box enclosing the circle of `radius_meters` around `center`.

    Longitude span is widened by cos(latitude), taken at the box edge
    closest to a pole. Boxes touching a pole or crossing the antimeridian
    fall back to the full longitude range.
    """
    lat_delta = radius_meters / METERS_PER_DEGREE_LAT
    min_lat = max(-90.0, center.latitude - lat_delta)
    max_lat = min(90.0, center.latitude + lat_delta)

    widest_lat = max(abs(min_lat), abs(max_lat))
    cos_lat = math.cos(math.radians(widest_lat))
    if cos_lat < 1e-9:
        return BoundingBox(min_lat=min_lat, max_lat=max_lat, min_lng=-180.0, max_lng=180.0)

    lng_delta = radius_meters / (METERS_PER_DEGREE_LAT * cos_lat)
    min_lng = center.longitude - lng_delta
    max_lng = center.longitude + lng_delta
    if min_lng < -180.0 or max_lng > 180.0:
        min_lng, max_lng = -180.0, 180.0

    return BoundingBox(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng)


@dataclass(frozen=True)
class NearbyIssue:
    """An issue found by a radius search, with its exact distance."""

    issue: Issue
    distance_meters: float


class GeoIndex:
    """Radius search on top of the store's bounding-box query."""

    def __init__(self, store: IssueStore):
        self.store = store

    async def find_within_radius(
        self,
        point: GeoPoint,
        radius_meters: float,
        *,
        category_id: str | None = None,
        since: datetime | None = None,
        exclude_ids: Iterable[str] = (),
        limit: int | None = None,
    ) -> list[NearbyIssue]:
        """
        Find issues within `radius_meters` of `point`, nearest first.

        Args:
            point: Search centre
            radius_meters: Search radius
            category_id: Only issues in this category
            since: Only issues created at or after this time
            exclude_ids: Issue ids to leave out (e.g. the issue being checked)
            limit: Maximum number of results

        Returns:
            Matching issues with distances, ordered by distance ascending
        """
        if radius_meters < 0:
            raise ValueError("radius_meters must be non-negative")

        box = bounding_box(point, radius_meters)
        candidates = await self.store.find_in_bounding_box(
            box, category_id=category_id, since=since
        )

        excluded = set(exclude_ids)
        results = []
        for issue in candidates:
            if issue.id in excluded:
                continue
            distance = haversine_meters(point, issue.location)
            if distance <= radius_meters:
                results.append(NearbyIssue(issue=issue, distance_meters=distance))

        results.sort(key=lambda r: (r.distance_meters, r.issue.created_at))
        logger.debug(
            f"Radius search {radius_meters}m: {len(candidates)} in box, {len(results)} in circle"
        )

        if limit is not None:
            results = results[:limit]
        return results
