"""
Sparse infill hatching confined to the innermost shell regions.

Hatch lines are parallel and evenly spaced.  To clip them the regions
are rotated so that the hatch direction becomes the x axis; every
scanline ``y = k * spacing`` is then intersected with all edges of the
region (outer boundary and holes alike) and the sorted crossings are
paired even-odd, which keeps exactly the parts inside the material.
The pieces are rotated back into the layer frame.

Scanlines are anchored on a global grid rather than on the region's
bounding box, so the spacing between neighbouring lines is the same
across regions and can be measured on the output.

Spacing and angle are resolved per layer:

- on an alternate infill layer, ``alternate_infill_distance`` and
  ``alternate_infill_rotation_degrees`` replace the defaults outright;
- otherwise the angle is the base rotation plus the per-layer
  increment times the layer index, modulo 360.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .polygons import Point2, Region
from .settings import SlicingSettings

logger = logging.getLogger(__name__)

HatchSegment = Tuple[Point2, Point2]


@dataclass(frozen=True)
class InfillPattern:
    """Hatch segments for one layer.

    Attributes:
        segments: Pairs of endpoints in the layer frame.
        spacing: Distance between neighbouring hatch lines.
        angle: Hatch direction in degrees, measured from the x axis.
        alternate: Whether the alternate spacing and angle were used.
    """

    segments: Tuple[HatchSegment, ...]
    spacing: float
    angle: float
    alternate: bool = False

    def __len__(self) -> int:
        return len(self.segments)

    def to_list(self) -> List[List[List[float]]]:
        return [[[a[0], a[1]], [b[0], b[1]]] for a, b in self.segments]


def resolve_infill(settings: SlicingSettings, layer_index: int, layer_count: int) -> Tuple[float, float, bool]:
    """Return ``(spacing, angle, alternate)`` for a layer."""
    if layer_index in settings.resolved_alternate_layers(layer_count):
        return (
            settings.alternate_infill_distance,
            settings.alternate_infill_rotation_degrees % 360.0,
            True,
        )
    angle = (
        settings.infill_rotation_degrees
        + layer_index * settings.infill_rotation_increment_per_layer
    ) % 360.0
    return settings.infill_distance, angle, False


def _rotate(p: Point2, c: float, s: float) -> Point2:
    return (p[0] * c - p[1] * s, p[0] * s + p[1] * c)


def hatch_region(region: Region, spacing: float, angle: float, eps: float = 1e-9) -> List[HatchSegment]:
    """Clip parallel hatch lines against one region.

    Args:
        region: Area to fill.
        spacing: Distance between hatch lines.
        angle: Hatch direction in degrees.
        eps: Pieces shorter than this, and scanlines within this
            distance of the region's extreme rows, are dropped.

    Returns:
        Hatch segments ordered by scanline, then left to right.
    """
    rad = math.radians(angle)
    c = math.cos(rad)
    s = math.sin(rad)
    # Rotate by -angle so hatch lines run along the x axis
    loops = [[_rotate(p, c, -s) for p in poly.points] for poly in region.polygons()]
    ys = [p[1] for loop in loops for p in loop]
    if not ys:
        return []
    y_min = min(ys)
    y_max = max(ys)
    first = math.ceil(y_min / spacing)
    last = math.floor(y_max / spacing)
    segments: List[HatchSegment] = []
    for k in range(first, last + 1):
        y = k * spacing
        if y - y_min <= eps or y_max - y <= eps:
            continue
        crossings: List[float] = []
        for loop in loops:
            n = len(loop)
            for i in range(n):
                a = loop[i]
                b = loop[(i + 1) % n]
                if (a[1] <= y < b[1]) or (b[1] <= y < a[1]):
                    crossings.append(a[0] + (y - a[1]) * (b[0] - a[0]) / (b[1] - a[1]))
        crossings.sort()
        for i in range(0, len(crossings) - 1, 2):
            x0 = crossings[i]
            x1 = crossings[i + 1]
            if x1 - x0 <= eps:
                continue
            segments.append((_rotate((x0, y), c, s), _rotate((x1, y), c, s)))
    return segments


class InfillGenerator:
    """Produce the infill pattern of a layer from its innermost regions."""

    def __init__(self, settings: SlicingSettings) -> None:
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return not self.settings.shell_only

    def generate(
        self,
        layer_index: int,
        layer_count: int,
        regions: Sequence[Region],
    ) -> Optional[InfillPattern]:
        """Hatch ``regions`` for the given layer.

        Returns:
            ``None`` when infill is disabled for the build, otherwise a
            pattern, possibly without segments.
        """
        if not self.enabled:
            return None
        spacing, angle, alternate = resolve_infill(self.settings, layer_index, layer_count)
        segments: List[HatchSegment] = []
        for region in regions:
            segments.extend(hatch_region(region, spacing, angle, self.settings.tolerance_epsilon))
        if os.getenv("SLICE_DEBUG"):
            logger.debug(
                "infill: layer=%d spacing=%s angle=%s alternate=%s segments=%d",
                layer_index,
                spacing,
                angle,
                alternate,
                len(segments),
            )
        return InfillPattern(segments=tuple(segments), spacing=spacing, angle=angle, alternate=alternate)
