"""
Mesh-plane intersection for horizontal slicing planes.

For a plane ``z = const`` every triangle of a world-space mesh is
classified vertex by vertex as above, below or on the plane (within
``eps``).  Triangles that straddle the plane contribute one
``SliceSegment`` each; the segments come out in no particular order and
are stitched into contours by :mod:`contours`.

Tie-breaking for vertices lying on the plane:

- a triangle with all three vertices on the plane is coplanar; it
  contributes nothing and is reported as a ``GeometryWarning``;
- a triangle with one edge on the plane contributes that edge only
  when its third vertex is above the plane, so an edge shared by two
  wall triangles is emitted exactly once;
- a triangle touching the plane at a single vertex contributes
  nothing unless its other two vertices lie on opposite sides.

Intersection points on an edge are interpolated with the edge
endpoints in a fixed order, which makes neighbouring triangles that
share the edge produce bit-identical points.

Debug logging can be enabled via the ``SLICE_DEBUG`` environment
variable.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .diagnostics import IssueKind, SliceIssue
from .polygons import Point2

logger = logging.getLogger(__name__)

__all__ = [
    "SliceSegment",
    "classify_distances",
    "intersect_triangle_with_plane",
    "intersect_triangles_with_plane",
    "intersect_meshes_with_plane",
]


@dataclass(frozen=True)
class SliceSegment:
    """A line segment where one triangle crosses the slicing plane.

    Attributes:
        p1: First endpoint in the layer's XY frame.
        p2: Second endpoint.
        triangle: Index of the source triangle within its mesh.
        mesh: Index of the source mesh within the build.
    """

    p1: Point2
    p2: Point2
    triangle: int = -1
    mesh: int = 0

    @property
    def length(self) -> float:
        return math.hypot(self.p2[0] - self.p1[0], self.p2[1] - self.p1[1])


def classify_distances(distances: Sequence[float], eps: float) -> Tuple[int, int, int]:
    """Classify signed vertex distances as -1 (below), 0 (on) or 1 (above)."""
    signs = []
    for d in distances:
        if abs(d) <= eps:
            signs.append(0)
        elif d > 0.0:
            signs.append(1)
        else:
            signs.append(-1)
    return signs[0], signs[1], signs[2]


def _edge_point(p: np.ndarray, q: np.ndarray, z: float) -> Point2:
    # Order the endpoints so both triangles sharing the edge agree
    if (p[0], p[1], p[2]) > (q[0], q[1], q[2]):
        p, q = q, p
    dp = p[2] - z
    dq = q[2] - z
    t = dp / (dp - dq)
    return (float(p[0] + t * (q[0] - p[0])), float(p[1] + t * (q[1] - p[1])))


def _xy(v: np.ndarray) -> Point2:
    return (float(v[0]), float(v[1]))


def intersect_triangle_with_plane(tri: np.ndarray, z: float, eps: float = 1e-6) -> List[Point2]:
    """Intersect a single triangle with the plane ``z``.

    Args:
        tri: ``(3, 3)`` array of triangle corners.
        z: Height of the slicing plane.
        eps: Distance below which a vertex counts as lying on the plane.

    Returns:
        Either an empty list or exactly two points in the XY frame.
        Coplanar triangles yield an empty list; callers that need to
        tell them apart use :func:`classify_distances`.
    """
    s = classify_distances((tri[0][2] - z, tri[1][2] - z, tri[2][2] - z), eps)
    on = [i for i in range(3) if s[i] == 0]
    if len(on) == 3:
        return []
    if len(on) == 2:
        third = 3 - on[0] - on[1]
        if s[third] > 0:
            return [_xy(tri[on[0]]), _xy(tri[on[1]])]
        return []
    if len(on) == 1:
        i = on[0]
        j, k = [n for n in range(3) if n != i]
        if s[j] * s[k] < 0:
            return [_xy(tri[i]), _edge_point(tri[j], tri[k], z)]
        return []
    points: List[Point2] = []
    for i, j in ((0, 1), (1, 2), (2, 0)):
        if s[i] * s[j] < 0:
            points.append(_edge_point(tri[i], tri[j], z))
    if len(points) != 2:
        return []
    return points


def intersect_triangles_with_plane(
    triangles: np.ndarray,
    z: float,
    eps: float = 1e-6,
    mesh_index: int = 0,
) -> Tuple[List[SliceSegment], List[SliceIssue]]:
    """Intersect every triangle of one world-space mesh with the plane ``z``.

    Triangles whose z range does not reach the plane are discarded with
    a vectorised test before the per-triangle classification runs.

    Args:
        triangles: ``(T, 3, 3)`` array of world-space triangle corners.
        z: Height of the slicing plane.
        eps: On-plane tolerance.
        mesh_index: Index recorded on each segment for diagnostics.

    Returns:
        A tuple ``(segments, issues)``; ``issues`` holds one
        ``GeometryWarning`` per coplanar triangle.
    """
    segments: List[SliceSegment] = []
    issues: List[SliceIssue] = []
    if triangles.size == 0:
        return segments, issues
    zs = triangles[:, :, 2]
    dmin = zs.min(axis=1) - z
    dmax = zs.max(axis=1) - z
    candidates = np.nonzero((dmin <= eps) & (dmax >= -eps))[0]
    coplanar = 0
    for t in candidates:
        if dmax[t] <= eps and dmin[t] >= -eps:
            coplanar += 1
            issues.append(
                SliceIssue(
                    kind=IssueKind.GEOMETRY_WARNING,
                    message=f"triangle {int(t)} of mesh {mesh_index} is coplanar with z={z:.6g}",
                    triangle=int(t),
                )
            )
            continue
        pts = intersect_triangle_with_plane(triangles[t], z, eps)
        if len(pts) == 2 and pts[0] != pts[1]:
            segments.append(SliceSegment(p1=pts[0], p2=pts[1], triangle=int(t), mesh=mesh_index))
    if os.getenv("SLICE_DEBUG"):
        logger.debug(
            "intersect_triangles_with_plane: z=%s inspected=%d candidates=%d segments=%d coplanar=%d",
            z,
            len(triangles),
            len(candidates),
            len(segments),
            coplanar,
        )
    return segments, issues


def intersect_meshes_with_plane(
    triangle_sets: Sequence[np.ndarray],
    z: float,
    eps: float = 1e-6,
) -> Tuple[List[SliceSegment], List[SliceIssue]]:
    """Intersect several world-space meshes with the plane ``z``.

    The segments of all meshes are pooled; contour assembly treats the
    build plate as a single cross-section.
    """
    segments: List[SliceSegment] = []
    issues: List[SliceIssue] = []
    for mesh_index, triangles in enumerate(triangle_sets):
        segs, found = intersect_triangles_with_plane(triangles, z, eps, mesh_index=mesh_index)
        segments.extend(segs)
        issues.extend(found)
    return segments, issues
