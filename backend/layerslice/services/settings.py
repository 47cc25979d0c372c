"""
Slicing settings snapshot.

``SlicingSettings`` is the immutable parameter set a build consumes.
A new snapshot is created whenever the user changes anything;
re-slicing always happens against a fresh snapshot so a running build
never observes a half-edited configuration.

Every field is populated after construction.  The repair thresholds
of the contour assembler default to values derived from the
extrusion width when they are not given explicitly, and the set of
alternate infill layers is an empty ``frozenset`` rather than
``None`` when no layer is singled out.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from .diagnostics import ConfigError

DEFAULT_SKIRT_CLEARANCE = 3.0


class OffsetPolicy(str, Enum):
    """Strategy used to shrink contours into shell rings.

    ``ROBUST`` uses polygon buffering and splits a ring into several
    regions when an offset pinches a contour apart.  ``FAST`` moves each
    edge along its normal and truncates the branch when the result is
    not a simple polygon any more.
    """

    ROBUST = "robust"
    FAST = "fast"


@dataclass(frozen=True)
class SlicingSettings:
    layer_thickness: float = 0.2
    shell_count: int = 2
    extrusion_width: float = 0.4
    skins_count: int = 0
    skirt_height: float = 0.0
    infill_distance: float = 2.0
    infill_rotation_degrees: float = 45.0
    infill_rotation_increment_per_layer: float = 90.0
    alternate_infill_layers: FrozenSet[int] = field(default_factory=frozenset)
    alternate_infill_distance: float = 0.4
    alternate_infill_rotation_degrees: float = 45.0
    shell_only: bool = False
    tolerance_epsilon: float = 1e-4
    skirt_distance: float = DEFAULT_SKIRT_CLEARANCE
    assembly_noise_length: Optional[float] = None
    assembly_close_tolerance: Optional[float] = None
    offset_policy: OffsetPolicy = OffsetPolicy.ROBUST

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "alternate_infill_layers",
            frozenset(int(i) for i in (self.alternate_infill_layers or ())),
        )
        object.__setattr__(self, "offset_policy", OffsetPolicy(self.offset_policy))
        if self.assembly_noise_length is None:
            object.__setattr__(self, "assembly_noise_length", float(self.extrusion_width))
        if self.assembly_close_tolerance is None:
            object.__setattr__(self, "assembly_close_tolerance", float(self.extrusion_width))

    def validate(self) -> "SlicingSettings":
        """Check the snapshot and return it unchanged.

        Raises:
            ConfigError: Listing every invalid field.
        """
        problems: List[str] = []

        def positive(name: str) -> None:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                problems.append(f"{name} must be a positive number (got {value!r})")

        def non_negative(name: str) -> None:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
                problems.append(f"{name} must be zero or positive (got {value!r})")

        def finite(name: str) -> None:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                problems.append(f"{name} must be a finite number (got {value!r})")

        for name in (
            "layer_thickness",
            "extrusion_width",
            "infill_distance",
            "alternate_infill_distance",
            "tolerance_epsilon",
            "assembly_noise_length",
            "assembly_close_tolerance",
        ):
            positive(name)
        for name in ("skirt_height", "skirt_distance"):
            non_negative(name)
        for name in (
            "infill_rotation_degrees",
            "infill_rotation_increment_per_layer",
            "alternate_infill_rotation_degrees",
        ):
            finite(name)
        if not isinstance(self.shell_count, int) or self.shell_count <= 0:
            problems.append(f"shell_count must be a positive integer (got {self.shell_count!r})")
        if not isinstance(self.skins_count, int) or self.skins_count < 0:
            problems.append(f"skins_count must be zero or a positive integer (got {self.skins_count!r})")
        if problems:
            raise ConfigError("; ".join(problems))
        return self

    def resolved_alternate_layers(self, layer_count: int) -> FrozenSet[int]:
        """Map alternate layer numbers onto ``0..layer_count-1``.

        Negative entries count down from the top layer, so ``-1`` names
        the last layer.  Entries outside the build are dropped.
        """
        resolved = set()
        for idx in self.alternate_infill_layers:
            if idx < 0:
                idx = layer_count + idx
            if 0 <= idx < layer_count:
                resolved.add(idx)
        return frozenset(resolved)

    def replace(self, **changes: Any) -> "SlicingSettings":
        """Return a new snapshot with ``changes`` applied."""
        data = asdict(self)
        data.update(changes)
        if "extrusion_width" in changes:
            # Derived thresholds follow the new width unless set explicitly
            for name in ("assembly_noise_length", "assembly_close_tolerance"):
                if name not in changes:
                    data[name] = None
        return SlicingSettings(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Return a canonical, JSON friendly mapping of every field."""
        data = asdict(self)
        data["alternate_infill_layers"] = sorted(self.alternate_infill_layers)
        data["offset_policy"] = self.offset_policy.value
        return data


_LAYER_TOKEN = re.compile(r"^[+-]?\d+$")


def parse_alternate_layers(text: Optional[str]) -> FrozenSet[int]:
    """Parse a list of layer numbers such as ``"0, 5, -1"``.

    Entries may be separated by commas, semicolons or whitespace.
    Negative numbers are kept as-is and resolved against the layer
    count at build time.

    Raises:
        ConfigError: If a token is not an integer.
    """
    if not text:
        return frozenset()
    layers = set()
    for token in re.split(r"[,;\s]+", text.strip()):
        if not token:
            continue
        if not _LAYER_TOKEN.match(token):
            raise ConfigError(f"invalid alternate infill layer {token!r}")
        layers.add(int(token))
    return frozenset(layers)
