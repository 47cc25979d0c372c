"""
Per-layer results and the read-only layer store.

A ``Layer`` is identified by its index and height and never changes
after the pipeline builds it.  A ``LayerStore`` is the ordered, complete
output of one build.  Consumers (the viewer, exporters, the HTTP API)
only ever read from it; a new build produces a new store rather than
patching layers of an existing one.

A store may be *partial*: a layer whose contours could not be
assembled is kept in place with empty geometry and ``failed`` status,
while the other layers remain usable.  Consumers check
``Layer.status`` before drawing or exporting a layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from .diagnostics import SliceIssue
from .infill import InfillPattern
from .mesh import Bounds
from .polygons import Polygon, Region
from .settings import SlicingSettings
from .shells import ShellSet


class LayerStatus(str, Enum):
    OK = "ok"
    WARNINGS = "warnings"
    FAILED = "failed"


class BuildStatus(str, Enum):
    READY = "ready"
    PARTIAL = "partial"


@dataclass(frozen=True)
class Layer:
    """Printable geometry of one horizontal cross-section.

    Attributes:
        index: Layer number, 0 at the bottom.
        z: Height of the cutting plane.
        thickness: Layer thickness.
        shells: One shell set per contour region.
        skirt: Skirt loop, or ``None`` when the layer has none.
        infill: Infill pattern, or ``None`` when infill is disabled or
            the layer failed.
        status: Outcome of the layer computation.
        issues: Warnings and errors recorded for this layer.
    """

    index: int
    z: float
    thickness: float
    shells: Tuple[ShellSet, ...] = ()
    skirt: Optional[Polygon] = None
    infill: Optional[InfillPattern] = None
    status: LayerStatus = LayerStatus.OK
    issues: Tuple[SliceIssue, ...] = field(default_factory=tuple)

    @property
    def contours(self) -> Tuple[Region, ...]:
        return tuple(s.contour for s in self.shells)

    @property
    def failed(self) -> bool:
        return self.status is LayerStatus.FAILED

    @property
    def is_empty(self) -> bool:
        return not self.shells


@dataclass(frozen=True)
class LayerStore:
    """Ordered, immutable collection of the layers of one build.

    Attributes:
        layers: Layers ordered by index; ``layers[i].index == i``.
        fingerprint: Digest of the inputs the store was built from.
        settings: Settings snapshot used for the build.
        bounds: Bounds the layer heights were derived from.
        issues: Build-level issues (layer issues stay on the layers).
    """

    layers: Tuple[Layer, ...]
    fingerprint: str
    settings: SlicingSettings
    bounds: Bounds
    issues: Tuple[SliceIssue, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self) -> Iterator[Layer]:
        return iter(self.layers)

    def __getitem__(self, index: int) -> Layer:
        return self.layers[index]

    @property
    def failed_layers(self) -> Tuple[int, ...]:
        return tuple(layer.index for layer in self.layers if layer.failed)

    @property
    def status(self) -> BuildStatus:
        return BuildStatus.PARTIAL if self.failed_layers else BuildStatus.READY

    @property
    def is_ready(self) -> bool:
        return self.status is BuildStatus.READY

    def all_issues(self) -> List[SliceIssue]:
        """Return build issues followed by layer issues in layer order."""
        result = list(self.issues)
        for layer in self.layers:
            result.extend(layer.issues)
        return result

    def layer_at_z(self, z: float) -> Optional[Layer]:
        """Return the layer whose slab ``[z - t/2, z + t/2)`` contains ``z``."""
        for layer in self.layers:
            half = 0.5 * layer.thickness
            if layer.z - half <= z < layer.z + half:
                return layer
        return None

    def layer_for_fraction(self, value: float) -> Optional[Layer]:
        """Pick the layer cut by a plane at a 0..1 fraction of the build height.

        The plane sits at ``min_z + value * (max_z - min_z)`` and the layer
        whose slab holds it is returned, so ``0`` selects the bottom layer
        and ``1`` the layer containing the top of the build.
        """
        if not self.layers:
            return None
        value = min(1.0, max(0.0, value))
        low, high = self.bounds.min[2], self.bounds.max[2]
        z = low + value * (high - low)
        layer = self.layer_at_z(z)
        if layer is None:
            # Rounding can leave z just outside every slab
            layer = min(self.layers, key=lambda candidate: abs(candidate.z - z))
        return layer
