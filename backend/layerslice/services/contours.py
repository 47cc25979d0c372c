"""
Contour assembly: stitching unordered slice segments into closed loops.

Intersection points produced by neighbouring triangles rarely match
exactly, so endpoints are matched within a tolerance rather than by
equality.  Endpoints are binned into a hash grid whose cells are one
tolerance wide; a lookup only has to inspect the 3x3 block of cells
around a query point.

Chains are walked greedily.  A chain starts from the lowest-numbered
unused segment and is extended from its tail with the nearest unused
endpoint; once the tail is stuck the head is extended the same way.
A chain whose ends meet becomes a loop.  Open chains are repaired or
rejected:

- shorter than ``noise_length``: dropped with an ``AssemblyWarning``;
- gap between the ends within ``close_tolerance``: snapped shut with an
  ``AssemblyWarning``;
- anything else: the layer cannot be trusted and ``AssemblyError`` is
  raised once every chain has been examined.

Finally the loops are nested.  A loop contained in an even number of
other loops is an outer boundary and wound counter-clockwise; an odd
count makes it a hole, wound clockwise and attached to the smallest
loop that contains it.
"""

from __future__ import annotations

import logging
import math
import os
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from .diagnostics import AssemblyError, IssueKind, SliceIssue
from .polygons import Point2, Polygon, Region, clean_points, distance, point_in_polygon
from .settings import SlicingSettings
from .slicing import SliceSegment

logger = logging.getLogger(__name__)

CellKey = Tuple[int, int]


@dataclass(frozen=True)
class AssemblyResult:
    """Regions built from one layer's segments plus the warnings raised."""

    regions: Tuple[Region, ...]
    issues: Tuple[SliceIssue, ...]


class _EndpointGrid:
    """Spatial hash of segment endpoints for tolerance lookups."""

    def __init__(self, segments: Sequence[Tuple[Point2, Point2]], cell: float) -> None:
        self.cell = cell
        self.cells: Dict[CellKey, List[Tuple[int, int]]] = {}
        for idx, (a, b) in enumerate(segments):
            self.cells.setdefault(self._key(a), []).append((idx, 0))
            self.cells.setdefault(self._key(b), []).append((idx, 1))

    def _key(self, p: Point2) -> CellKey:
        return (int(math.floor(p[0] / self.cell)), int(math.floor(p[1] / self.cell)))

    def nearest(
        self,
        p: Point2,
        segments: Sequence[Tuple[Point2, Point2]],
        used: List[bool],
        eps: float,
    ) -> Optional[Tuple[int, int]]:
        """Return ``(segment, end)`` of the closest unused endpoint within ``eps``."""
        kx, ky = self._key(p)
        best: Optional[Tuple[float, int, int]] = None
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for idx, end in self.cells.get((kx + dx, ky + dy), ()):
                    if used[idx]:
                        continue
                    d = distance(p, segments[idx][end])
                    if d > eps:
                        continue
                    candidate = (d, idx, end)
                    if best is None or candidate < best:
                        best = candidate
        if best is None:
            return None
        return best[1], best[2]


class ContourAssembler:
    """Stitch slice segments into oriented regions.

    Args:
        eps: Endpoint matching tolerance.
        noise_length: Open chains shorter than this are discarded.
        close_tolerance: Open chains whose end gap is within this
            distance are force-closed.
    """

    def __init__(self, eps: float, noise_length: float, close_tolerance: float) -> None:
        if eps <= 0.0:
            raise ValueError("eps must be positive for endpoint matching")
        self.eps = eps
        self.noise_length = noise_length
        self.close_tolerance = close_tolerance

    @classmethod
    def from_settings(cls, settings: SlicingSettings) -> "ContourAssembler":
        return cls(
            eps=settings.tolerance_epsilon,
            noise_length=settings.assembly_noise_length,
            close_tolerance=settings.assembly_close_tolerance,
        )

    def assemble(self, segments: Sequence[SliceSegment]) -> AssemblyResult:
        """Build closed, oriented regions from an unordered segment set.

        Raises:
            AssemblyError: If an open chain can neither be discarded nor
                closed.  The exception carries the warnings gathered so
                far in ``issues``.
        """
        issues: List[SliceIssue] = []
        loops, open_chains = self.chain_segments(segments)
        gaps: List[float] = []
        for chain in open_chains:
            length = sum(distance(chain[i], chain[i + 1]) for i in range(len(chain) - 1))
            gap = distance(chain[0], chain[-1])
            if length < self.noise_length:
                issues.append(
                    SliceIssue(
                        kind=IssueKind.ASSEMBLY_WARNING,
                        message=f"discarded open chain of length {length:.4g} ({len(chain)} points)",
                    )
                )
            elif gap <= self.close_tolerance:
                issues.append(
                    SliceIssue(
                        kind=IssueKind.ASSEMBLY_WARNING,
                        message=f"force-closed chain with gap {gap:.4g}",
                    )
                )
                loops.append(chain)
            else:
                gaps.append(gap)
        if gaps:
            worst = max(gaps)
            raise AssemblyError(
                f"{len(gaps)} contour chain(s) left open; largest gap {worst:.4g}",
                gap=worst,
                issues=issues,
            )

        polygons: List[Polygon] = []
        for loop in loops:
            pts = clean_points(loop, self.eps)
            if len(pts) < 3 or abs(Polygon(points=tuple(pts)).area) <= self.eps * self.eps:
                issues.append(
                    SliceIssue(
                        kind=IssueKind.ASSEMBLY_WARNING,
                        message=f"discarded degenerate loop with {len(loop)} points",
                    )
                )
                continue
            polygons.append(Polygon(points=tuple(pts)))
        regions = nest_loops(polygons)
        if os.getenv("SLICE_DEBUG"):
            logger.debug(
                "assemble: segments=%d loops=%d open=%d regions=%d",
                len(segments),
                len(loops),
                len(open_chains),
                len(regions),
            )
        return AssemblyResult(regions=tuple(regions), issues=tuple(issues))

    def chain_segments(
        self, segments: Sequence[SliceSegment]
    ) -> Tuple[List[List[Point2]], List[List[Point2]]]:
        """Walk segments into chains.

        Returns:
            A tuple ``(closed_loops, open_chains)``.  Closed loops do not
            repeat their first point.
        """
        eps = self.eps
        segs = [(s.p1, s.p2) for s in segments if s.length > eps]
        grid = _EndpointGrid(segs, eps)
        used = [False] * len(segs)
        loops: List[List[Point2]] = []
        open_chains: List[List[Point2]] = []
        for start in range(len(segs)):
            if used[start]:
                continue
            used[start] = True
            chain: Deque[Point2] = deque(segs[start])
            closed = False
            while True:
                if len(chain) >= 4 and distance(chain[-1], chain[0]) <= eps:
                    chain.pop()
                    closed = True
                    break
                found = grid.nearest(chain[-1], segs, used, eps)
                if found is None:
                    break
                idx, end = found
                used[idx] = True
                chain.append(segs[idx][1 - end])
            if not closed:
                while True:
                    found = grid.nearest(chain[0], segs, used, eps)
                    if found is None:
                        break
                    idx, end = found
                    used[idx] = True
                    chain.appendleft(segs[idx][1 - end])
                    if len(chain) >= 4 and distance(chain[0], chain[-1]) <= eps:
                        chain.popleft()
                        closed = True
                        break
            if closed:
                loops.append(list(chain))
            else:
                open_chains.append(list(chain))
        return loops, open_chains


def nest_loops(polygons: Sequence[Polygon]) -> List[Region]:
    """Classify loops as outer boundaries or holes and group them.

    Each loop's nesting depth is the number of larger loops containing
    one of its vertices.  Even depth means material on the inside, so
    the loop is an outer boundary; odd depth makes it a hole of the
    smallest loop that contains it.

    Returns:
        Regions in a canonical order (by first canonical vertex, then
        area) with outer boundaries CCW and holes CW.
    """
    n = len(polygons)
    areas = [abs(p.area) for p in polygons]
    depth = [0] * n
    parent: List[Optional[int]] = [None] * n
    for i in range(n):
        sample = polygons[i].points[0]
        for j in range(n):
            if i == j or areas[j] <= areas[i]:
                continue
            if point_in_polygon(sample, polygons[j].points):
                depth[i] += 1
                if parent[i] is None or areas[j] < areas[parent[i]]:
                    parent[i] = j
    holes: Dict[int, List[Polygon]] = {}
    for i in range(n):
        if depth[i] % 2 == 1 and parent[i] is not None:
            holes.setdefault(parent[i], []).append(polygons[i].oriented(ccw=False))
    regions: List[Region] = []
    for i in range(n):
        if depth[i] % 2 == 0:
            region = Region(outer=polygons[i].oriented(ccw=True), holes=tuple(holes.get(i, ())))
            regions.append(region.canonical())
    regions.sort(key=lambda r: (r.outer.points[0], -r.area))
    return regions
