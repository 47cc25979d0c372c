"""
Skirt generation for the first layers of a print.

The skirt is a single priming loop drawn around everything on the
plate.  It is built from the convex hull of the union of all outer
contours at the current layer, pushed outward by the skirt clearance
plus one extrusion width.  Using the hull guarantees one closed loop
even when several parts are on the plate, and the loop always encloses
every contour and therefore every shell ring inside them.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from shapely.errors import GEOSException
from shapely.geometry import JOIN_STYLE
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.ops import unary_union
from shapely.validation import make_valid

from .diagnostics import IssueKind, OffsetError, SliceIssue
from .polygons import Polygon, Region, clean_points
from .settings import SlicingSettings

logger = logging.getLogger(__name__)

SKIRT_RESOLUTION = 8


class SkirtBuilder:
    """Build the skirt polygon for layers up to ``skirt_height``."""

    def __init__(self, skirt_height: float, clearance: float, extrusion_width: float, eps: float = 1e-4) -> None:
        self.skirt_height = skirt_height
        self.clearance = clearance
        self.extrusion_width = extrusion_width
        self.eps = eps

    @classmethod
    def from_settings(cls, settings: SlicingSettings) -> "SkirtBuilder":
        return cls(
            skirt_height=settings.skirt_height,
            clearance=settings.skirt_distance,
            extrusion_width=settings.extrusion_width,
            eps=settings.tolerance_epsilon,
        )

    @property
    def offset(self) -> float:
        return self.clearance + self.extrusion_width

    def applies_to(self, z: float) -> bool:
        return z <= self.skirt_height

    def outline(self, regions: Sequence[Region]) -> Polygon:
        """Return the skirt loop around ``regions``.

        Self-intersecting outers are repaired before they are merged.

        Raises:
            OffsetError: If the offset does not produce a single polygon.
        """
        try:
            outers = [make_valid(ShapelyPolygon(r.outer.points)) for r in regions]
            hull = unary_union(outers).convex_hull
            grown = hull.buffer(self.offset, SKIRT_RESOLUTION, join_style=JOIN_STYLE.round)
        except GEOSException as exc:
            raise OffsetError(f"skirt union failed: {exc}") from exc
        if grown.is_empty or grown.geom_type != "Polygon":
            raise OffsetError(f"skirt offset produced {grown.geom_type}")
        pts = clean_points(list(grown.exterior.coords)[:-1], self.eps)
        if len(pts) < 3:
            raise OffsetError("skirt offset collapsed")
        return Polygon(points=tuple(pts)).oriented(ccw=True).canonical()

    def build(self, z: float, regions: Sequence[Region]) -> Tuple[Optional[Polygon], List[SliceIssue]]:
        """Return the skirt for a layer at height ``z``, if it needs one.

        Returns:
            A tuple ``(skirt, issues)``; ``skirt`` is ``None`` above the
            skirt height, when the layer has no contours, or when the
            offset failed (recorded as an ``OffsetError`` issue).
        """
        if not self.applies_to(z) or not regions:
            return None, []
        try:
            return self.outline(regions), []
        except OffsetError as exc:
            logger.warning("skirt offset failed at z=%s: %s", z, exc)
            return None, [SliceIssue(kind=IssueKind.OFFSET_ERROR, message=f"skirt: {exc}")]
