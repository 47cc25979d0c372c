"""
Planar polygon primitives shared by every stage of the layer pipeline.

A ``Polygon`` is an immutable ordered sequence of ``(x, y)`` points.
Closed polygons are stored without repeating the first vertex at the
end; the closing edge from the last point back to the first is
implicit.  Use :meth:`Polygon.closed_points` when a consumer expects an
explicitly closed point list.

Orientation matters throughout the pipeline: outer boundaries are
counter-clockwise (positive signed area) and holes are clockwise.  A
``Region`` pairs one outer boundary with the holes it contains and is
the unit that shells, skirts and infill operate on.

The helpers at module level work on plain point lists so they can be
reused by the contour assembler and the offsetters without building
intermediate ``Polygon`` objects.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

Point2 = Tuple[float, float]
BBox = Tuple[float, float, float, float]


def polygon_area_2d(points: Sequence[Point2]) -> float:
    """Compute the signed area of a 2D polygon using the shoelace formula.

    The polygon is treated as closed.  The result is positive for
    counter-clockwise winding and negative for clockwise winding.
    """
    n = len(points)
    if n < 3:
        return 0.0
    area = 0.0
    for i in range(n):
        x0, y0 = points[i]
        x1, y1 = points[(i + 1) % n]
        area += x0 * y1 - x1 * y0
    return 0.5 * area


def distance(a: Point2, b: Point2) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def point_segment_distance(p: Point2, a: Point2, b: Point2) -> float:
    """Return the distance from ``p`` to the closed segment ``ab``."""
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    length_sq = dx * dx + dy * dy
    if length_sq == 0.0:
        return distance(p, a)
    t = ((p[0] - a[0]) * dx + (p[1] - a[1]) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    return math.hypot(p[0] - (a[0] + t * dx), p[1] - (a[1] + t * dy))


def bounding_box(points: Iterable[Point2]) -> BBox:
    """Return ``(min_x, min_y, max_x, max_y)`` for a non-empty point set."""
    xs: List[float] = []
    ys: List[float] = []
    for x, y in points:
        xs.append(x)
        ys.append(y)
    if not xs:
        raise ValueError("bounding_box requires at least one point")
    return (min(xs), min(ys), max(xs), max(ys))


def _near_boundary(p: Point2, points: Sequence[Point2], eps: float) -> bool:
    n = len(points)
    return any(point_segment_distance(p, points[i], points[(i + 1) % n]) <= eps for i in range(n))


def point_in_polygon(p: Point2, points: Sequence[Point2], eps: float = 0.0) -> bool:
    """Test whether ``p`` lies inside the closed polygon ``points``.

    Points within ``eps`` of an edge count as inside.  Otherwise the
    even-odd ray casting rule decides.
    """
    n = len(points)
    if n < 3:
        return False
    if eps > 0.0 and _near_boundary(p, points, eps):
        return True
    x, y = p
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = points[i]
        xj, yj = points[j]
        if (yi > y) != (yj > y):
            x_cross = xi + (y - yi) * (xj - xi) / (yj - yi)
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def _orientation(p: Point2, q: Point2, r: Point2) -> int:
    """Return the orientation of the ordered triplet (p, q, r).

    The function returns:
        * 0 if the points are colinear
        * 1 if they are oriented clockwise
        * 2 if they are oriented counter-clockwise
    """
    val = (q[1] - p[1]) * (r[0] - q[0]) - (q[0] - p[0]) * (r[1] - q[1])
    if abs(val) < 1e-12:
        return 0
    return 1 if val > 0 else 2


def _on_segment(p: Point2, q: Point2, r: Point2) -> bool:
    """Return True if point q lies on the segment pr."""
    return (min(p[0], r[0]) - 1e-12 <= q[0] <= max(p[0], r[0]) + 1e-12) and (
        min(p[1], r[1]) - 1e-12 <= q[1] <= max(p[1], r[1]) + 1e-12
    )


def segments_intersect(p1: Point2, q1: Point2, p2: Point2, q2: Point2) -> bool:
    """Check whether two closed line segments p1q1 and p2q2 intersect."""
    o1 = _orientation(p1, q1, p2)
    o2 = _orientation(p1, q1, q2)
    o3 = _orientation(p2, q2, p1)
    o4 = _orientation(p2, q2, q1)
    if o1 != o2 and o3 != o4:
        return True
    if o1 == 0 and _on_segment(p1, p2, q1):
        return True
    if o2 == 0 and _on_segment(p1, q2, q1):
        return True
    if o3 == 0 and _on_segment(p2, p1, q2):
        return True
    if o4 == 0 and _on_segment(p2, q1, q2):
        return True
    return False


def polygon_self_intersects(points: Sequence[Point2]) -> bool:
    """Return True if the closed polygon defined by ``points`` self-intersects.

    Adjacent edges and the first/last edge pair share a vertex and are
    not tested against each other.
    """
    n = len(points)
    if n < 4:
        return False
    for i1 in range(n):
        p1 = points[i1]
        q1 = points[(i1 + 1) % n]
        for i2 in range(i1 + 1, n):
            if (i1 + 1) % n == i2 or i1 == (i2 + 1) % n:
                continue
            if segments_intersect(p1, q1, points[i2], points[(i2 + 1) % n]):
                return True
    return False


def polygons_cross(a: Sequence[Point2], b: Sequence[Point2]) -> bool:
    """Return True if any edge of ``a`` intersects any edge of ``b``."""
    na = len(a)
    nb = len(b)
    for i in range(na):
        p1 = a[i]
        q1 = a[(i + 1) % na]
        for j in range(nb):
            if segments_intersect(p1, q1, b[j], b[(j + 1) % nb]):
                return True
    return False


def clean_points(points: Sequence[Point2], eps: float) -> List[Point2]:
    """Remove duplicate and collinear vertices from a closed point loop.

    A vertex is dropped when it lies within ``eps`` of its predecessor
    or within ``eps`` of the straight line through its neighbours while
    lying between them.  The loop is scanned until nothing changes.
    """
    pts = list(points)
    changed = True
    while changed and len(pts) >= 3:
        changed = False
        i = 0
        while i < len(pts) and len(pts) >= 3:
            prev_pt = pts[i - 1]
            curr = pts[i]
            next_pt = pts[(i + 1) % len(pts)]
            if distance(prev_pt, curr) <= eps:
                del pts[i]
                changed = True
                continue
            chord = distance(prev_pt, next_pt)
            if chord > eps:
                cross = (curr[0] - prev_pt[0]) * (next_pt[1] - prev_pt[1]) - (
                    curr[1] - prev_pt[1]
                ) * (next_pt[0] - prev_pt[0])
                between = (
                    (curr[0] - prev_pt[0]) * (next_pt[0] - prev_pt[0])
                    + (curr[1] - prev_pt[1]) * (next_pt[1] - prev_pt[1])
                ) >= 0.0 and (
                    (curr[0] - next_pt[0]) * (prev_pt[0] - next_pt[0])
                    + (curr[1] - next_pt[1]) * (prev_pt[1] - next_pt[1])
                ) >= 0.0
                if between and abs(cross) / chord <= eps:
                    del pts[i]
                    changed = True
                    continue
            i += 1
    return pts


def _line_intersection(
    p1: Point2,
    p2: Point2,
    p3: Point2,
    p4: Point2,
    eps: float = 1e-12,
) -> Optional[Point2]:
    """Compute the intersection point of the infinite lines p1-p2 and p3-p4.

    Returns ``None`` when the lines are parallel within ``eps``.
    """
    x1, y1 = p1
    x2, y2 = p2
    x3, y3 = p3
    x4, y4 = p4
    denom = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)
    if abs(denom) < eps:
        return None
    det1 = x1 * y2 - y1 * x2
    det2 = x3 * y4 - y3 * x4
    px = (det1 * (x3 - x4) - (x1 - x2) * det2) / denom
    py = (det1 * (y3 - y4) - (y1 - y2) * det2) / denom
    return (px, py)


def offset_polygon_2d(points: Sequence[Point2], offset: float) -> List[Point2]:
    """Offset a simple closed polygon by moving every edge along its normal.

    Positive offsets grow the enclosed area, negative offsets shrink it,
    whatever the winding.  New vertices are the intersections of
    consecutive offset edges (mitre joins).  The caller is responsible
    for checking the result: a large inward offset can make the output
    self-intersect or flip orientation.

    Args:
        points: Closed polygon without a repeated closing vertex.  It
            should be free of duplicate and collinear vertices.
        offset: Signed offset distance.

    Returns:
        A list of points with the same length as the input.
    """
    n = len(points)
    if n < 3:
        return list(points)
    area = polygon_area_2d(points)
    if abs(area) < 1e-12:
        return list(points)
    # Positive area means CCW, for which (dy, -dx) points outward
    sign = 1.0 if area > 0 else -1.0
    offset_edges: List[Tuple[Point2, Point2]] = []
    for i in range(n):
        p0 = points[i]
        p1 = points[(i + 1) % n]
        dx = p1[0] - p0[0]
        dy = p1[1] - p0[1]
        length = math.hypot(dx, dy)
        if length == 0.0:
            offset_edges.append((p0, p0))
            continue
        nx = (dy / length) * sign
        ny = (-dx / length) * sign
        offset_edges.append(
            (
                (p0[0] + offset * nx, p0[1] + offset * ny),
                (p1[0] + offset * nx, p1[1] + offset * ny),
            )
        )
    result: List[Point2] = []
    for i in range(n):
        prev_edge = offset_edges[i - 1]
        curr_edge = offset_edges[i]
        inter = _line_intersection(prev_edge[0], prev_edge[1], curr_edge[0], curr_edge[1])
        if inter is None:
            inter = curr_edge[0]
        result.append(inter)
    return result


@dataclass(frozen=True)
class Polygon:
    """Immutable planar polygon.

    Attributes:
        points: Ordered vertices.  For closed polygons the closing edge
            is implicit and the first vertex is not repeated.
        closed: Whether the last vertex connects back to the first.
    """

    points: Tuple[Point2, ...]
    closed: bool = True

    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]], closed: bool = True) -> "Polygon":
        pts = tuple((float(p[0]), float(p[1])) for p in points)
        if closed and len(pts) > 1 and pts[0] == pts[-1]:
            pts = pts[:-1]
        return cls(points=pts, closed=closed)

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[Point2]:
        return iter(self.points)

    @property
    def area(self) -> float:
        """Signed area; positive for counter-clockwise winding."""
        if not self.closed:
            return 0.0
        return polygon_area_2d(self.points)

    @property
    def is_ccw(self) -> bool:
        return self.area > 0.0

    @property
    def bbox(self) -> BBox:
        return bounding_box(self.points)

    @property
    def length(self) -> float:
        """Total edge length, including the closing edge when closed."""
        pts = self.points
        total = sum(distance(pts[i], pts[i + 1]) for i in range(len(pts) - 1))
        if self.closed and len(pts) > 2:
            total += distance(pts[-1], pts[0])
        return total

    def reversed(self) -> "Polygon":
        return Polygon(points=tuple(reversed(self.points)), closed=self.closed)

    def oriented(self, ccw: bool) -> "Polygon":
        """Return this polygon wound counter-clockwise or clockwise."""
        if self.is_ccw == ccw:
            return self
        return self.reversed()

    def canonical(self) -> "Polygon":
        """Rotate the vertex order to start at the smallest (x, y) vertex.

        Winding is preserved, so two polygons describing the same ring
        with the same orientation compare equal after canonicalisation.
        """
        if not self.closed or not self.points:
            return self
        start = min(range(len(self.points)), key=lambda i: self.points[i])
        return Polygon(points=self.points[start:] + self.points[:start], closed=True)

    def closed_points(self) -> List[Point2]:
        """Return the vertices with the first point repeated at the end."""
        pts = list(self.points)
        if self.closed and pts:
            pts.append(pts[0])
        return pts

    def contains_point(self, p: Point2, eps: float = 0.0) -> bool:
        return point_in_polygon(p, self.points, eps)

    def self_intersects(self) -> bool:
        return polygon_self_intersects(self.points)

    def to_list(self) -> List[List[float]]:
        return [[x, y] for x, y in self.points]


@dataclass(frozen=True)
class Region:
    """A connected solid area: one outer boundary minus its holes.

    The outer boundary is counter-clockwise and every hole clockwise.
    """

    outer: Polygon
    holes: Tuple[Polygon, ...] = field(default_factory=tuple)

    @property
    def area(self) -> float:
        """Unsigned area of the material (outer minus holes)."""
        return abs(self.outer.area) - sum(abs(h.area) for h in self.holes)

    @property
    def bbox(self) -> BBox:
        return self.outer.bbox

    def polygons(self) -> Iterator[Polygon]:
        yield self.outer
        yield from self.holes

    def contains_point(self, p: Point2, eps: float = 0.0) -> bool:
        """Return True if ``p`` lies in the material of this region.

        Points within ``eps`` of any boundary count as inside.
        """
        if not self.outer.contains_point(p, eps):
            return False
        for hole in self.holes:
            if not hole.contains_point(p):
                continue
            # Inside the hole; tolerate points sitting on its boundary
            if eps > 0.0 and _near_boundary(p, hole.points, eps):
                continue
            return False
        return True

    def canonical(self) -> "Region":
        holes = sorted((h.canonical() for h in self.holes), key=lambda h: h.points[0])
        return Region(outer=self.outer.canonical(), holes=tuple(holes))

    def to_dict(self) -> dict:
        return {
            "outer": self.outer.to_list(),
            "holes": [h.to_list() for h in self.holes],
            "area": self.area,
        }
