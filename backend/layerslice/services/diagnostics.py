"""
Error taxonomy and issue records for the slicing pipeline.

Two mechanisms coexist here.  Exceptions derived from ``SliceError``
are raised where a problem aborts a unit of work (a whole build, a
layer's contour set or a single shell branch).  ``SliceIssue`` records
are what survives: every warning and every per-layer failure is
captured as an immutable record and attached to the layer or the
store so callers can inspect it after the build.

Propagation rules:

- ``GeometryWarning``: a coplanar triangle at the cutting plane.  The
  triangle is skipped and slicing continues.
- ``AssemblyWarning``: a short open chain discarded as noise, or a
  small gap that was snapped closed.
- ``AssemblyError``: a contour gap too large to close.  Fatal for that
  layer only; its shells, skirt and infill are left empty.
- ``OffsetError``: a shell or skirt offset that could not be resolved.
  The ring sequence of that branch is truncated; never fatal.
- ``ConfigError``: invalid settings.  Raised before any layer task is
  scheduled.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class SliceError(Exception):
    """Base class for all slicing failures."""


class ConfigError(SliceError, ValueError):
    """Raised when a ``SlicingSettings`` snapshot is invalid."""


class AssemblyError(SliceError):
    """Raised when segments cannot be stitched into closed contours."""

    def __init__(self, message: str, gap: float = 0.0, issues: Sequence["SliceIssue"] = ()) -> None:
        super().__init__(message)
        self.gap = gap
        # Warnings gathered before the failure, so they are not lost
        self.issues = tuple(issues)


class OffsetError(SliceError):
    """Raised when a polygon offset yields an unusable result."""


class BuildCancelled(SliceError):
    """Raised inside a build that was superseded by a newer request."""


class IssueKind(str, Enum):
    GEOMETRY_WARNING = "GeometryWarning"
    ASSEMBLY_WARNING = "AssemblyWarning"
    ASSEMBLY_ERROR = "AssemblyError"
    OFFSET_ERROR = "OffsetError"
    CONFIG_ERROR = "ConfigError"


FATAL_KINDS = frozenset({IssueKind.ASSEMBLY_ERROR, IssueKind.CONFIG_ERROR})


@dataclass(frozen=True)
class SliceIssue:
    """A warning or error recorded during a build.

    Attributes:
        kind: Category of the issue.
        message: Human readable description.
        layer: Layer index the issue belongs to, or ``None`` for
            build-level issues.
        triangle: Index of the offending triangle for geometry issues.
        ring: Shell ring index for offset issues.
    """

    kind: IssueKind
    message: str
    layer: Optional[int] = None
    triangle: Optional[int] = None
    ring: Optional[int] = None

    @property
    def is_fatal(self) -> bool:
        return self.kind in FATAL_KINDS

    def with_layer(self, layer: int) -> "SliceIssue":
        """Return a copy of this issue tagged with ``layer``."""
        return SliceIssue(
            kind=self.kind,
            message=self.message,
            layer=layer,
            triangle=self.triangle,
            ring=self.ring,
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "layer": self.layer,
            "triangle": self.triangle,
            "ring": self.ring,
        }
