"""
Zone geometry: circles and polygons with point-containment tests.

* **Circle** -- contains a point iff its haversine distance to the centre is
  ``<= radius_m``.
* **Polygon** -- ray casting over ``(lng, lat)`` treated as planar
  coordinates.  Zones span at most a few tens of kilometres, so the planar
  approximation is well inside GPS noise.  Points on an edge or vertex are
  contained (closed region) so a driver parked on a boundary does not flap
  in and out of the zone.

Shapes validate themselves once, at construction, and raise
``InvalidGeometry``.  The containment tests assume valid input.

Complexity: circle O(1); polygon O(n) per test, O(n^2) once at validation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Union

from .distance import EARTH_RADIUS_KM, haversine_m
from .errors import InvalidGeometry

_EPS = 1e-12


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lng)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lng <= 180.0
        )

    def distance_m(self, other: LatLng) -> float:
        return haversine_m(self.lat, self.lng, other.lat, other.lng)

    def distance_km(self, other: LatLng) -> float:
        return self.distance_m(other) / 1_000.0


# ── Shapes ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Circle:
    center: LatLng
    radius_m: float

    def __post_init__(self) -> None:
        if not self.center.is_valid():
            raise InvalidGeometry(f"Circle centre out of range: {self.center}")
        if not math.isfinite(self.radius_m) or self.radius_m <= 0:
            raise InvalidGeometry(f"Circle radius must be > 0, got {self.radius_m}")

    def contains(self, point: LatLng) -> bool:
        return self.center.distance_m(point) <= self.radius_m

    def area_m2(self) -> float:
        return math.pi * self.radius_m ** 2


@dataclass(frozen=True)
class Polygon:
    vertices: tuple[LatLng, ...]
    _bbox: tuple[float, float, float, float] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        verts = tuple(self.vertices)
        # GeoJSON-style closed rings repeat the first vertex at the end
        if len(verts) > 1 and verts[0] == verts[-1]:
            verts = verts[:-1]
        if len(verts) < 3:
            raise InvalidGeometry(
                f"Polygon needs at least 3 vertices, got {len(verts)}"
            )
        for v in verts:
            if not v.is_valid():
                raise InvalidGeometry(f"Polygon vertex out of range: {v}")
        if len(set(verts)) != len(verts):
            raise InvalidGeometry("Polygon has repeated vertices")
        if _is_self_intersecting(verts):
            raise InvalidGeometry("Polygon edges intersect")
        if _planar_area(verts) <= _EPS:
            raise InvalidGeometry("Polygon has zero area")

        lats = [v.lat for v in verts]
        lngs = [v.lng for v in verts]
        object.__setattr__(self, "vertices", verts)
        object.__setattr__(self, "_bbox", (min(lats), min(lngs), max(lats), max(lngs)))

    def contains(self, point: LatLng) -> bool:
        min_lat, min_lng, max_lat, max_lng = self._bbox
        if not (min_lat <= point.lat <= max_lat and min_lng <= point.lng <= max_lng):
            return False

        x, y = point.lng, point.lat
        verts = self.vertices
        n = len(verts)
        inside = False
        for i in range(n):
            a, b = verts[i], verts[(i + 1) % n]
            if _on_segment(a, b, point):
                return True
            if (a.lat > y) != (b.lat > y):
                x_cross = a.lng + (y - a.lat) * (b.lng - a.lng) / (b.lat - a.lat)
                if x < x_cross:
                    inside = not inside
        return inside

    def area_m2(self) -> float:
        """Shoelace area on an equirectangular projection around the mean latitude."""
        lat0 = math.radians(sum(v.lat for v in self.vertices) / len(self.vertices))
        r = EARTH_RADIUS_KM * 1_000.0
        pts = [
            (r * math.radians(v.lng) * math.cos(lat0), r * math.radians(v.lat))
            for v in self.vertices
        ]
        acc = 0.0
        for i in range(len(pts)):
            x1, y1 = pts[i]
            x2, y2 = pts[(i + 1) % len(pts)]
            acc += x1 * y2 - x2 * y1
        return abs(acc) / 2.0


Shape = Union[Circle, Polygon]


def contains(shape: Shape, point: LatLng) -> bool:
    """Closed-region containment test for either shape kind."""
    return shape.contains(point)


def area_m2(shape: Shape) -> float:
    return shape.area_m2()


# ── Planar helpers (x = lng, y = lat) ─────────────────────────────────


def _cross(o: LatLng, a: LatLng, b: LatLng) -> float:
    return (a.lng - o.lng) * (b.lat - o.lat) - (a.lat - o.lat) * (b.lng - o.lng)


def _on_segment(a: LatLng, b: LatLng, p: LatLng) -> bool:
    if abs(_cross(a, b, p)) > _EPS:
        return False
    return (
        min(a.lng, b.lng) - _EPS <= p.lng <= max(a.lng, b.lng) + _EPS
        and min(a.lat, b.lat) - _EPS <= p.lat <= max(a.lat, b.lat) + _EPS
    )


def _segments_intersect(p1: LatLng, p2: LatLng, q1: LatLng, q2: LatLng) -> bool:
    d1 = _cross(q1, q2, p1)
    d2 = _cross(q1, q2, p2)
    d3 = _cross(p1, p2, q1)
    d4 = _cross(p1, p2, q2)
    if ((d1 > _EPS and d2 < -_EPS) or (d1 < -_EPS and d2 > _EPS)) and (
        (d3 > _EPS and d4 < -_EPS) or (d3 < -_EPS and d4 > _EPS)
    ):
        return True
    return (
        _on_segment(q1, q2, p1)
        or _on_segment(q1, q2, p2)
        or _on_segment(p1, p2, q1)
        or _on_segment(p1, p2, q2)
    )


def _is_self_intersecting(verts: tuple[LatLng, ...]) -> bool:
    n = len(verts)
    edges = [(verts[i], verts[(i + 1) % n]) for i in range(n)]
    for i in range(n):
        a1, a2 = edges[i]
        for j in range(i + 1, n):
            b1, b2 = edges[j]
            if j == i + 1 or (i == 0 and j == n - 1):
                # Adjacent edges share one vertex; they only conflict when
                # they fold back over each other.
                shared = a2 if j == i + 1 else a1
                far_a = a1 if shared is a2 else a2
                far_b = b2 if shared is b1 else b1
                if _on_segment(shared, far_a, far_b) or _on_segment(shared, far_b, far_a):
                    return True
                continue
            if _segments_intersect(a1, a2, b1, b2):
                return True
    return False


def _planar_area(verts: tuple[LatLng, ...]) -> float:
    acc = 0.0
    for i in range(len(verts)):
        a, b = verts[i], verts[(i + 1) % len(verts)]
        acc += a.lng * b.lat - b.lng * a.lat
    return abs(acc) / 2.0
