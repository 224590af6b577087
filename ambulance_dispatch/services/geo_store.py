"""
GeoStore - distance and ranking queries over point locations.

Pure query layer: callers pass in the candidate set (a snapshot of
(id, Point) pairs taken at query time) and get distances in meters back.
Distances use the haversine formula on a spherical earth.
"""

import math
from typing import Hashable, Iterable, List, Tuple

from ambulance_dispatch.shared.types import Point

EARTH_RADIUS_M = 6_371_008.8  # IUGG mean radius

Candidate = Tuple[Hashable, Point]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float, radius: float = EARTH_RADIUS_M) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    # Clamp: rounding can push a slightly past 1 for antipodal points
    a = min(1.0, a)
    return 2 * radius * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def interpolate(start: Point, target: Point, fraction: float) -> Point:
    """Straight-line interpolation in lon/lat space."""
    return Point(
        longitude=start.longitude + (target.longitude - start.longitude) * fraction,
        latitude=start.latitude + (target.latitude - start.latitude) * fraction,
    )


class GeoStore:
    """Distance, k-nearest and within-radius queries."""

    def __init__(self, earth_radius_m: float = EARTH_RADIUS_M):
        self.earth_radius_m = earth_radius_m

    def distance(self, a: Point, b: Point) -> float:
        """Great-circle distance between two points, in meters."""
        if a == b:
            return 0.0
        return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude, self.earth_radius_m)

    def rank(self, origin: Point, candidates: Iterable[Candidate]) -> List[Tuple[Hashable, float]]:
        """Every candidate with its distance, ascending, ties broken by id."""
        scored = [(cid, self.distance(origin, point)) for cid, point in candidates if point is not None]
        scored.sort(key=lambda item: (item[1], item[0]))
        return scored

    def nearest(self, origin: Point, candidates: Iterable[Candidate], k: int) -> List[Tuple[Hashable, float]]:
        """The k closest candidates as (id, meters), ascending."""
        if k <= 0:
            return []
        return self.rank(origin, candidates)[:k]

    def within_radius(self, origin: Point, candidates: Iterable[Candidate],
                      radius_m: float) -> List[Tuple[Hashable, float]]:
        """Candidates at most radius_m meters from origin, as (id, meters)."""
        return [(cid, d) for cid, d in self.rank(origin, candidates) if d <= radius_m]
