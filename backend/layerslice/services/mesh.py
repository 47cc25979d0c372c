"""
Triangle mesh input for the layer pipeline.

Meshes arrive from the loader as flat vertex and index buffers, the
same layout the viewer consumes: ``vertices`` is ``x0, y0, z0, x1, ...``
and every three entries of ``indices`` form a triangle.  They are
unpacked once into a ``(T, 3, 3)`` NumPy array of triangle corners so
that slicing can filter triangles against a plane with vectorised
operations.

A ``Mesh`` is immutable: its arrays are flagged read-only and every
helper that changes the placement returns a new instance.  The 4x4
transform is kept separate from the local geometry and only applied
when the pipeline asks for world-space triangles.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned bounding box as two ``(x, y, z)`` tuples."""

    min: Tuple[float, float, float]
    max: Tuple[float, float, float]

    @property
    def size(self) -> Tuple[float, float, float]:
        return (
            self.max[0] - self.min[0],
            self.max[1] - self.min[1],
            self.max[2] - self.min[2],
        )

    def to_dict(self) -> dict:
        return {"min": list(self.min), "max": list(self.max)}


def _freeze(arr: np.ndarray) -> np.ndarray:
    arr = np.ascontiguousarray(arr, dtype=np.float64)
    arr.setflags(write=False)
    return arr


def _as_transform(transform: Optional[Union[Sequence[float], np.ndarray]]) -> np.ndarray:
    if transform is None:
        return np.eye(4, dtype=np.float64)
    mat = np.asarray(transform, dtype=np.float64)
    if mat.shape == (16,):
        mat = mat.reshape(4, 4)
    if mat.shape != (4, 4):
        raise ValueError(f"transform must be 4x4 or 16 values, got shape {mat.shape}")
    return mat


def translation_matrix(dx: float, dy: float, dz: float) -> np.ndarray:
    """Return a 4x4 row-major matrix translating by ``(dx, dy, dz)``."""
    mat = np.eye(4, dtype=np.float64)
    mat[:3, 3] = (dx, dy, dz)
    return mat


def compute_face_normals(triangles: np.ndarray) -> np.ndarray:
    """Return unit normals for a ``(T, 3, 3)`` triangle array.

    The normal follows the right-hand rule on the corner order.
    Degenerate triangles get a zero normal.
    """
    raw = np.cross(triangles[:, 1] - triangles[:, 0], triangles[:, 2] - triangles[:, 0])
    lengths = np.linalg.norm(raw, axis=1)
    normals = np.zeros_like(raw)
    nonzero = lengths > 0.0
    normals[nonzero] = raw[nonzero] / lengths[nonzero, None]
    return normals


@dataclass(frozen=True, eq=False)
class Mesh:
    """Immutable triangle soup with a placement transform.

    Attributes:
        triangles: ``(T, 3, 3)`` array of triangle corners in local space.
        normals: ``(T, 3)`` array of outward unit normals.
        transform: 4x4 affine matrix mapping local to world coordinates.
            Column vectors are assumed, so translation lives in the last
            column.
    """

    triangles: np.ndarray
    normals: np.ndarray
    transform: np.ndarray

    def __post_init__(self) -> None:
        tris = np.asarray(self.triangles, dtype=np.float64)
        if tris.size == 0:
            tris = tris.reshape(0, 3, 3)
        if tris.ndim != 3 or tris.shape[1:] != (3, 3):
            raise ValueError(f"triangles must have shape (T, 3, 3), got {tris.shape}")
        normals = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3)
        if normals.shape[0] != tris.shape[0]:
            raise ValueError("normals must provide one vector per triangle")
        object.__setattr__(self, "triangles", _freeze(tris))
        object.__setattr__(self, "normals", _freeze(normals))
        object.__setattr__(self, "transform", _freeze(_as_transform(self.transform)))

    @classmethod
    def from_triangles(
        cls,
        triangles: Union[np.ndarray, Sequence[Sequence[Sequence[float]]]],
        normals: Optional[Union[np.ndarray, Sequence[Sequence[float]]]] = None,
        transform: Optional[Union[Sequence[float], np.ndarray]] = None,
    ) -> "Mesh":
        tris = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
        if normals is None:
            normals = compute_face_normals(tris)
        return cls(triangles=tris, normals=np.asarray(normals, dtype=np.float64), transform=transform)

    @classmethod
    def from_buffers(
        cls,
        vertices: Sequence[float],
        indices: Sequence[int],
        transform: Optional[Union[Sequence[float], np.ndarray]] = None,
    ) -> "Mesh":
        """Build a mesh from flat vertex and index buffers.

        Args:
            vertices: Flat list of vertex coordinates (x0, y0, z0, x1, ...).
            indices: Flat list of vertex indices; every three entries
                form a triangle.  Trailing entries that do not complete
                a triangle are ignored.
            transform: Optional 4x4 matrix or 16 row-major values.

        Raises:
            ValueError: If an index references a missing vertex.
        """
        verts = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        idx = np.asarray(indices, dtype=np.int64)
        usable = (len(idx) // 3) * 3
        idx = idx[:usable].reshape(-1, 3)
        if idx.size and (idx.min() < 0 or idx.max() >= len(verts)):
            raise ValueError("index buffer references vertices outside the vertex buffer")
        tris = verts[idx] if idx.size else np.zeros((0, 3, 3), dtype=np.float64)
        return cls.from_triangles(tris, transform=transform)

    def __len__(self) -> int:
        return int(self.triangles.shape[0])

    def with_transform(self, transform: Union[Sequence[float], np.ndarray]) -> "Mesh":
        """Return a copy of this mesh placed with ``transform``."""
        return Mesh(triangles=self.triangles, normals=self.normals, transform=transform)

    def transformed_triangles(self) -> np.ndarray:
        """Return the ``(T, 3, 3)`` triangle corners in world space."""
        if len(self) == 0:
            return self.triangles
        flat = self.triangles.reshape(-1, 3)
        homogeneous = np.hstack([flat, np.ones((flat.shape[0], 1), dtype=np.float64)])
        world = homogeneous @ self.transform.T
        w = world[:, 3:4]
        world = world[:, :3] / np.where(w == 0.0, 1.0, w)
        return world.reshape(-1, 3, 3)

    def local_bounds(self) -> Bounds:
        return _bounds_of(self.triangles)

    def world_bounds(self) -> Bounds:
        return _bounds_of(self.transformed_triangles())

    def fingerprint(self) -> str:
        """Return a SHA-256 digest of the geometry and transform."""
        digest = hashlib.sha256()
        digest.update(np.ascontiguousarray(self.triangles).tobytes())
        digest.update(np.ascontiguousarray(self.transform).tobytes())
        return digest.hexdigest()


def _bounds_of(triangles: np.ndarray) -> Bounds:
    if triangles.size == 0:
        return Bounds(min=(0.0, 0.0, 0.0), max=(0.0, 0.0, 0.0))
    flat = triangles.reshape(-1, 3)
    lo = flat.min(axis=0)
    hi = flat.max(axis=0)
    return Bounds(
        min=(float(lo[0]), float(lo[1]), float(lo[2])),
        max=(float(hi[0]), float(hi[1]), float(hi[2])),
    )


def union_bounds(meshes: Iterable[Mesh]) -> Bounds:
    """Combine the world-space bounds of several meshes.

    Meshes without triangles are ignored.  When nothing remains the
    result is a zero-sized box at the origin.
    """
    mins: List[Tuple[float, float, float]] = []
    maxs: List[Tuple[float, float, float]] = []
    for mesh in meshes:
        if len(mesh) == 0:
            continue
        b = mesh.world_bounds()
        mins.append(b.min)
        maxs.append(b.max)
    if not mins:
        return Bounds(min=(0.0, 0.0, 0.0), max=(0.0, 0.0, 0.0))
    lo = np.min(np.asarray(mins), axis=0)
    hi = np.max(np.asarray(maxs), axis=0)
    return Bounds(
        min=(float(lo[0]), float(lo[1]), float(lo[2])),
        max=(float(hi[0]), float(hi[1]), float(hi[2])),
    )


# Corner indices of a unit box with outward (counter-clockwise) winding.
_BOX_VERTICES = [
    (0.0, 0.0, 0.0),  # 0
    (1.0, 0.0, 0.0),  # 1
    (1.0, 1.0, 0.0),  # 2
    (0.0, 1.0, 0.0),  # 3
    (0.0, 0.0, 1.0),  # 4
    (1.0, 0.0, 1.0),  # 5
    (1.0, 1.0, 1.0),  # 6
    (0.0, 1.0, 1.0),  # 7
]
_BOX_INDICES = [
    0, 2, 1, 0, 3, 2,  # bottom face (z=0)
    4, 5, 6, 4, 6, 7,  # top face (z=1)
    0, 1, 5, 0, 5, 4,  # front face (y=0)
    3, 7, 6, 3, 6, 2,  # back face (y=1)
    0, 4, 7, 0, 7, 3,  # left face (x=0)
    1, 2, 6, 1, 6, 5,  # right face (x=1)
]


def box_mesh(
    size: Union[float, Sequence[float]] = 1.0,
    origin: Sequence[float] = (0.0, 0.0, 0.0),
    transform: Optional[Union[Sequence[float], np.ndarray]] = None,
) -> Mesh:
    """Build an axis-aligned box with its minimum corner at ``origin``.

    Args:
        size: Edge length, or ``(sx, sy, sz)`` for a cuboid.
        origin: Minimum corner of the box in local space.
        transform: Optional placement transform.
    """
    if isinstance(size, (int, float)):
        sx = sy = sz = float(size)
    else:
        sx, sy, sz = (float(v) for v in size)
    ox, oy, oz = (float(v) for v in origin)
    verts: List[float] = []
    for x, y, z in _BOX_VERTICES:
        verts.extend((ox + x * sx, oy + y * sy, oz + z * sz))
    return Mesh.from_buffers(verts, _BOX_INDICES, transform=transform)
