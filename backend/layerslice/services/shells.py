"""
Shell (perimeter) generation by repeated inward offsetting.

Ring 0 runs half an extrusion width inside the contour so the outer
wall's edge lands on the part surface; every following ring is one
full width inside its parent.  After ``shell_count`` shell rings,
``skins_count`` extra rings of the same width are added for solid
top and bottom layers.

Offsetting is done per region (an outer boundary with its holes) and
per branch: when an offset pinches a region apart, each piece becomes
its own region in the ring and carries on independently.  The index
of the parent region in the previous ring is recorded on every ring,
so a ``ShellSet`` can report the innermost region of each branch
without holding references into other rings.

Two strategies are available and selected explicitly through
:class:`~.settings.OffsetPolicy`:

- ``ROBUST`` buffers the region with Shapely using mitre joins.  Splits
  and vanishing holes are handled by the geometry engine.
- ``FAST`` moves each edge along its normal.  It cannot represent a
  split; when the result self-intersects the branch is truncated and an
  ``OffsetError`` issue is recorded.

A branch whose offset collapses to (near) zero area simply stops; that
is a normal outcome for thin features and not reported as an issue.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from shapely.geometry import JOIN_STYLE
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry

from .diagnostics import IssueKind, OffsetError, SliceIssue
from .polygons import (
    Polygon,
    Region,
    clean_points,
    offset_polygon_2d,
    polygon_area_2d,
    polygon_self_intersects,
    polygons_cross,
)
from .settings import OffsetPolicy, SlicingSettings

logger = logging.getLogger(__name__)

MITRE_LIMIT = 5.0

SHELL = "shell"
SKIN = "skin"


@dataclass(frozen=True)
class ShellRing:
    """One concentric ring of a shell set.

    Attributes:
        index: Ring number, 0 for the outermost.
        kind: ``"shell"`` or ``"skin"``.
        regions: Regions making up the ring.  Several regions appear
            when an earlier offset split the contour.
        parents: For each region, the index of the region in the
            previous ring it was offset from.  Ring 0 uses ``-1``.
    """

    index: int
    kind: str
    regions: Tuple[Region, ...]
    parents: Tuple[int, ...]


@dataclass(frozen=True)
class ShellSet:
    """All rings derived from one contour region."""

    contour: Region
    rings: Tuple[ShellRing, ...]
    requested: int

    @property
    def ring_count(self) -> int:
        return len(self.rings)

    def innermost_regions(self) -> Tuple[Region, ...]:
        """Return the deepest region of every branch.

        A region is innermost when no region of the next ring was
        offset from it.
        """
        result: List[Region] = []
        for k, ring in enumerate(self.rings):
            children = set(self.rings[k + 1].parents) if k + 1 < len(self.rings) else set()
            for i, region in enumerate(ring.regions):
                if i not in children:
                    result.append(region)
        return tuple(result)

    @property
    def truncated(self) -> bool:
        """True when some branch ended before the requested ring count."""
        if len(self.rings) < self.requested:
            return True
        last = self.requested - 1
        for k, ring in enumerate(self.rings[:last]):
            children = set(self.rings[k + 1].parents)
            if any(i not in children for i in range(len(ring.regions))):
                return True
        return False


def region_to_shapely(region: Region) -> ShapelyPolygon:
    return ShapelyPolygon(region.outer.points, [h.points for h in region.holes])


def regions_from_shapely(geom: BaseGeometry, eps: float, min_area: float) -> List[Region]:
    """Convert a Shapely (multi)polygon into canonical regions.

    Pieces whose area does not exceed ``min_area`` are dropped.
    """
    if geom.is_empty:
        return []
    if geom.geom_type == "Polygon":
        parts = [geom]
    elif hasattr(geom, "geoms"):
        parts = [g for g in geom.geoms if g.geom_type == "Polygon"]
    else:
        return []
    regions: List[Region] = []
    for part in parts:
        if part.area <= min_area:
            continue
        outer_pts = clean_points(list(part.exterior.coords)[:-1], eps)
        if len(outer_pts) < 3:
            continue
        holes: List[Polygon] = []
        for interior in part.interiors:
            hole_pts = clean_points(list(interior.coords)[:-1], eps)
            if len(hole_pts) >= 3 and abs(polygon_area_2d(hole_pts)) > min_area:
                holes.append(Polygon(points=tuple(hole_pts)).oriented(ccw=False))
        outer = Polygon(points=tuple(outer_pts)).oriented(ccw=True)
        regions.append(Region(outer=outer, holes=tuple(holes)).canonical())
    regions.sort(key=lambda r: (r.outer.points[0], -r.area))
    return regions


class ShellOffsetter:
    """Generate the ring sequence of a contour region.

    Args:
        extrusion_width: Width of one printed perimeter.
        shell_count: Number of shell rings to generate.
        skins_count: Extra full-width rings after the shells.
        shell_only: Generate ring 0 only.
        policy: Offsetting strategy.
        eps: Geometric tolerance.
    """

    def __init__(
        self,
        extrusion_width: float,
        shell_count: int,
        skins_count: int = 0,
        shell_only: bool = False,
        policy: OffsetPolicy = OffsetPolicy.ROBUST,
        eps: float = 1e-4,
    ) -> None:
        self.extrusion_width = extrusion_width
        self.shell_count = shell_count
        self.skins_count = skins_count
        self.shell_only = shell_only
        self.policy = OffsetPolicy(policy)
        self.eps = eps
        self.min_area = eps * extrusion_width

    @classmethod
    def from_settings(cls, settings: SlicingSettings) -> "ShellOffsetter":
        return cls(
            extrusion_width=settings.extrusion_width,
            shell_count=settings.shell_count,
            skins_count=settings.skins_count,
            shell_only=settings.shell_only,
            policy=settings.offset_policy,
            eps=settings.tolerance_epsilon,
        )

    @property
    def ring_total(self) -> int:
        if self.shell_only:
            return 1
        return self.shell_count + self.skins_count

    def offset_region(self, region: Region, distance: float) -> List[Region]:
        """Shrink ``region`` by ``distance`` with the configured policy.

        Returns:
            The resulting regions; an empty list when the region
            collapsed.

        Raises:
            OffsetError: When the fast policy produces an invalid ring.
        """
        if self.policy is OffsetPolicy.FAST:
            return self._offset_fast(region, distance)
        return self._offset_robust(region, distance)

    def _offset_robust(self, region: Region, distance: float) -> List[Region]:
        shape = region_to_shapely(region)
        if not shape.is_valid:
            shape = shape.buffer(0)
        result = shape.buffer(-distance, join_style=JOIN_STYLE.mitre, mitre_limit=MITRE_LIMIT)
        return regions_from_shapely(result, self.eps, self.min_area)

    def _offset_fast(self, region: Region, distance: float) -> List[Region]:
        outer_src = region.outer.points
        outer_pts = offset_polygon_2d(outer_src, -distance)
        if polygon_area_2d(outer_pts) <= self.min_area or _all_edges_reversed(outer_src, outer_pts):
            return []
        if _any_edge_reversed(outer_src, outer_pts) or polygon_self_intersects(outer_pts):
            raise OffsetError("outer boundary self-intersects after offset")
        holes: List[Polygon] = []
        for hole in region.holes:
            hole_pts = offset_polygon_2d(hole.points, distance)
            if _any_edge_reversed(hole.points, hole_pts) or polygon_self_intersects(hole_pts):
                raise OffsetError("hole self-intersects after offset")
            if polygons_cross(outer_pts, hole_pts):
                raise OffsetError("hole crosses the outer boundary after offset")
            holes.append(Polygon(points=tuple(hole_pts)).oriented(ccw=False))
        for i in range(len(holes)):
            for j in range(i + 1, len(holes)):
                if polygons_cross(holes[i].points, holes[j].points):
                    raise OffsetError("holes merge after offset")
        shrunk = Region(outer=Polygon(points=tuple(outer_pts)).oriented(ccw=True), holes=tuple(holes))
        if shrunk.area <= self.min_area:
            return []
        return [shrunk.canonical()]

    def build(self, contour: Region) -> Tuple[ShellSet, List[SliceIssue]]:
        """Generate every ring for ``contour``.

        Returns:
            A tuple ``(shell_set, issues)``.  ``issues`` holds one
            ``OffsetError`` record per truncated branch.
        """
        issues: List[SliceIssue] = []
        rings: List[ShellRing] = []
        previous: Sequence[Region] = [contour]
        w = self.extrusion_width
        for k in range(self.ring_total):
            step = 0.5 * w if k == 0 else w
            regions: List[Region] = []
            parents: List[int] = []
            for parent_index, parent in enumerate(previous):
                try:
                    pieces = self.offset_region(parent, step)
                except OffsetError as exc:
                    issues.append(
                        SliceIssue(
                            kind=IssueKind.OFFSET_ERROR,
                            message=f"ring {k} truncated: {exc}",
                            ring=k,
                        )
                    )
                    continue
                for piece in pieces:
                    regions.append(piece)
                    parents.append(parent_index if k > 0 else -1)
            if not regions:
                break
            kind = SHELL if k < self.shell_count else SKIN
            rings.append(ShellRing(index=k, kind=kind, regions=tuple(regions), parents=tuple(parents)))
            previous = regions
        shell_set = ShellSet(contour=contour, rings=tuple(rings), requested=self.ring_total)
        if os.getenv("SLICE_DEBUG"):
            logger.debug(
                "shells: policy=%s requested=%d generated=%d truncated=%s",
                self.policy.value,
                self.ring_total,
                len(rings),
                shell_set.truncated,
            )
        return shell_set, issues


def _edge_dot(src: Sequence[Tuple[float, float]], dst: Sequence[Tuple[float, float]], i: int) -> float:
    n = len(src)
    a0, a1 = src[i], src[(i + 1) % n]
    b0, b1 = dst[i], dst[(i + 1) % n]
    return (a1[0] - a0[0]) * (b1[0] - b0[0]) + (a1[1] - a0[1]) * (b1[1] - b0[1])


def _any_edge_reversed(src: Sequence[Tuple[float, float]], dst: Sequence[Tuple[float, float]]) -> bool:
    return any(_edge_dot(src, dst, i) < 0.0 for i in range(len(src)))


def _all_edges_reversed(src: Sequence[Tuple[float, float]], dst: Sequence[Tuple[float, float]]) -> bool:
    return all(_edge_dot(src, dst, i) <= 0.0 for i in range(len(src)))
