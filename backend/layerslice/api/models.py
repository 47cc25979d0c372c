"""
Pydantic data models for the slicing API.

Request models mirror the engine's inputs (meshes as flat buffers and a
settings payload) and response models flatten layer geometry into
plain lists of coordinates so clients can draw them directly.
Field names are camelCase to match the frontend.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

from ..services.settings import SlicingSettings, parse_alternate_layers


class MeshPayload(BaseModel):
    """One mesh given as flat vertex and index buffers."""

    vertices: List[float] = Field(..., description="Flat list of vertex positions (x, y, z …)")
    indices: List[int] = Field(..., description="Index buffer; every three entries form a triangle")
    transform: List[float] | None = Field(
        default=None,
        description="Optional 4x4 placement matrix as 16 row-major values",
    )


class BoundsPayload(BaseModel):
    """Axis-aligned bounding box."""

    min: List[float] = Field(..., description="Minimum x, y, z coordinates")
    max: List[float] = Field(..., description="Maximum x, y, z coordinates")


class SettingsPayload(BaseModel):
    """Slicing parameters.  Omitted fields use the engine defaults.

    Values are range-checked by the engine, not here, so an invalid
    combination is reported as a single 400 listing every problem.
    """

    layerThickness: float = 0.2
    shellCount: int = 2
    extrusionWidth: float = 0.4
    skinsCount: int = 0
    skirtHeight: float = 0.0
    skirtDistance: float = 3.0
    infillDistance: float = 2.0
    infillRotationDegrees: float = 45.0
    infillRotationIncrementPerLayer: float = 90.0
    # Either a list of layer numbers or text such as "0, 5, -1"
    alternateInfillLayers: List[int] | str | None = Field(
        default=None,
        description="Layers that use the alternate infill; negative numbers count from the top",
    )
    alternateInfillDistance: float = 0.4
    alternateInfillRotationDegrees: float = 45.0
    shellOnly: bool = False
    toleranceEpsilon: float = 1e-4
    assemblyNoiseLength: float | None = Field(
        default=None, description="Open chains shorter than this are dropped (default: extrusion width)"
    )
    assemblyCloseTolerance: float | None = Field(
        default=None, description="Largest gap closed automatically (default: extrusion width)"
    )
    offsetPolicy: Literal["robust", "fast"] = "robust"

    def to_settings(self) -> SlicingSettings:
        """Convert into an engine settings snapshot.

        Raises:
            ConfigError: If ``alternateInfillLayers`` is malformed text.
        """
        layers = self.alternateInfillLayers
        if isinstance(layers, str):
            alternate = parse_alternate_layers(layers)
        else:
            alternate = frozenset(layers or ())
        return SlicingSettings(
            layer_thickness=self.layerThickness,
            shell_count=self.shellCount,
            extrusion_width=self.extrusionWidth,
            skins_count=self.skinsCount,
            skirt_height=self.skirtHeight,
            skirt_distance=self.skirtDistance,
            infill_distance=self.infillDistance,
            infill_rotation_degrees=self.infillRotationDegrees,
            infill_rotation_increment_per_layer=self.infillRotationIncrementPerLayer,
            alternate_infill_layers=alternate,
            alternate_infill_distance=self.alternateInfillDistance,
            alternate_infill_rotation_degrees=self.alternateInfillRotationDegrees,
            shell_only=self.shellOnly,
            tolerance_epsilon=self.toleranceEpsilon,
            assembly_noise_length=self.assemblyNoiseLength,
            assembly_close_tolerance=self.assemblyCloseTolerance,
            offset_policy=self.offsetPolicy,
        )


class SliceCreateRequest(BaseModel):
    """Request body for starting a slice job."""

    meshes: List[MeshPayload] = Field(..., description="Meshes on the build plate")
    settings: SettingsPayload = Field(default_factory=SettingsPayload)
    bounds: BoundsPayload | None = Field(
        default=None, description="Global bounds; defaults to the bounds of all meshes"
    )


class SliceInfo(BaseModel):
    """Returned when a slice job is accepted."""

    sliceId: str = Field(..., description="Identifier of the slice job")
    status: str = Field(..., description="Processing status (queued, running, ready, partial, failed, cancelled)")


class SliceStatusInfo(BaseModel):
    """Status and summary of a slice job."""

    sliceId: str
    status: str
    fingerprint: str | None = None
    meshCount: int = 0
    triangleCount: int = 0
    layerCount: int = 0
    failedLayers: List[int] = Field(default_factory=list)
    issues: List[Dict[str, Any]] = Field(default_factory=list)
    settings: Dict[str, Any] | None = None
    createdAt: Any = None
    updatedAt: Any = None
    errorMessage: str | None = None


class ShellRingInfo(BaseModel):
    """One concentric ring of a shell set."""

    index: int
    kind: str
    regions: List[Dict[str, Any]]
    parents: List[int]


class ShellSetInfo(BaseModel):
    contour: Dict[str, Any]
    rings: List[ShellRingInfo]
    truncated: bool


class InfillInfo(BaseModel):
    spacing: float
    angle: float
    alternate: bool
    segments: List[List[List[float]]]


class LayerResponse(BaseModel):
    """Geometry of one layer."""

    sliceId: str
    index: int
    z: float
    thickness: float
    status: str
    shells: List[ShellSetInfo] = Field(default_factory=list)
    skirt: List[List[float]] | None = None
    infill: InfillInfo | None = None
    issues: List[Dict[str, Any]] = Field(default_factory=list)
