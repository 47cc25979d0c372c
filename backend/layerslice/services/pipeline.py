"""
Layer pipeline: from meshes and settings to a complete layer store.

The pipeline is a pure function of its inputs.  Layer ``k`` is cut at
``z = min_z + (k + 1/2) * thickness`` and the number of layers is
``ceil((max_z - min_z + thickness / 2) / thickness)``.  Each layer only
reads the shared, read-only world-space triangle arrays and the
settings snapshot, so layers are computed independently on a thread
pool and stored by index regardless of completion order.

Per layer the stages run in sequence:

1. plane intersection (:mod:`slicing`)
2. contour assembly (:mod:`contours`)
3. shell rings per contour region (:mod:`shells`)
4. skirt for low layers (:mod:`skirt`)
5. infill inside the innermost shell regions (:mod:`infill`)

Geometry and offset problems are recorded on the layer and do not stop
it.  An ``AssemblyError`` empties that one layer and marks it failed;
sibling layers are unaffected.  Invalid settings raise ``ConfigError``
before any layer task is scheduled.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from shapely.errors import GEOSException

from .contours import ContourAssembler
from .diagnostics import AssemblyError, BuildCancelled, IssueKind, SliceIssue
from .infill import InfillGenerator
from .layers import Layer, LayerStatus, LayerStore
from .mesh import Bounds, Mesh, union_bounds
from .settings import SlicingSettings
from .shells import ShellOffsetter, ShellSet
from .skirt import SkirtBuilder
from .slicing import SliceSegment, intersect_meshes_with_plane

logger = logging.getLogger(__name__)

Intersector = Callable[[Sequence[np.ndarray], float, float], Tuple[List[SliceSegment], List[SliceIssue]]]


def layer_count(min_z: float, max_z: float, thickness: float) -> int:
    """Return the number of layers needed to cover ``[min_z, max_z]``."""
    if max_z < min_z:
        return 0
    return int(math.ceil((max_z - min_z + 0.5 * thickness) / thickness))


def layer_heights(min_z: float, max_z: float, thickness: float) -> List[float]:
    """Return the cutting heights, one per layer, bottom to top."""
    return [min_z + (k + 0.5) * thickness for k in range(layer_count(min_z, max_z, thickness))]


def default_worker_count() -> int:
    """Worker pool size from ``SLICE_WORKERS`` or the CPU count."""
    env = os.getenv("SLICE_WORKERS")
    if env:
        try:
            return max(1, int(env))
        except ValueError:
            logger.warning("ignoring invalid SLICE_WORKERS=%r", env)
    return os.cpu_count() or 1


def build_fingerprint(meshes: Sequence[Mesh], settings: SlicingSettings, bounds: Bounds) -> str:
    """Digest identifying the inputs of a build.

    Two builds with the same fingerprint produce identical stores, so
    the digest doubles as a cache key.
    """
    digest = hashlib.sha256()
    for mesh in meshes:
        digest.update(mesh.fingerprint().encode("ascii"))
    digest.update(json.dumps(settings.to_dict(), sort_keys=True).encode("utf-8"))
    digest.update(json.dumps(bounds.to_dict(), sort_keys=True).encode("utf-8"))
    return digest.hexdigest()


class LayerPipeline:
    """Compute layers for a settings snapshot.

    Args:
        settings: Settings snapshot.  Validated on construction.
        intersector: Function producing the segments of one plane.
            Replaceable so callers can feed synthetic segment sets.

    Raises:
        ConfigError: If ``settings`` is invalid.
    """

    def __init__(self, settings: SlicingSettings, intersector: Intersector = intersect_meshes_with_plane) -> None:
        self.settings = settings.validate()
        self.intersector = intersector
        self.assembler = ContourAssembler.from_settings(settings)
        self.offsetter = ShellOffsetter.from_settings(settings)
        self.skirt_builder = SkirtBuilder.from_settings(settings)
        self.infill_generator = InfillGenerator(settings)

    def slice_layer(
        self,
        index: int,
        z: float,
        triangle_sets: Sequence[np.ndarray],
        count: int,
    ) -> Layer:
        """Build one layer.  Never raises for geometry problems."""
        settings = self.settings
        thickness = settings.layer_thickness
        segments, geometry_issues = self.intersector(triangle_sets, z, settings.tolerance_epsilon)
        issues: List[SliceIssue] = list(geometry_issues)
        try:
            assembly = self.assembler.assemble(segments)
        except AssemblyError as exc:
            issues.extend(exc.issues)
            issues.append(SliceIssue(kind=IssueKind.ASSEMBLY_ERROR, message=str(exc)))
            logger.warning("layer %d (z=%.4f) failed: %s", index, z, exc)
            return Layer(
                index=index,
                z=z,
                thickness=thickness,
                status=LayerStatus.FAILED,
                issues=tuple(i.with_layer(index) for i in issues),
            )
        issues.extend(assembly.issues)
        shells: List[ShellSet] = []
        for region in assembly.regions:
            try:
                shell_set, found = self.offsetter.build(region)
            except GEOSException as exc:
                # Keep the contour so the layer still reports it
                shell_set = ShellSet(contour=region, rings=(), requested=self.offsetter.ring_total)
                found = [SliceIssue(kind=IssueKind.OFFSET_ERROR, message=f"shell offset: {exc}")]
                logger.warning("layer %d (z=%.4f) shell offset failed: %s", index, z, exc)
            shells.append(shell_set)
            issues.extend(found)
        try:
            skirt, found = self.skirt_builder.build(z, assembly.regions)
        except GEOSException as exc:
            skirt = None
            found = [SliceIssue(kind=IssueKind.OFFSET_ERROR, message=f"skirt: {exc}")]
            logger.warning("layer %d (z=%.4f) skirt failed: %s", index, z, exc)
        issues.extend(found)
        innermost = [region for shell_set in shells for region in shell_set.innermost_regions()]
        try:
            infill = self.infill_generator.generate(index, count, innermost)
        except GEOSException as exc:
            infill = None
            issues.append(SliceIssue(kind=IssueKind.OFFSET_ERROR, message=f"infill: {exc}"))
            logger.warning("layer %d (z=%.4f) infill failed: %s", index, z, exc)
        return Layer(
            index=index,
            z=z,
            thickness=thickness,
            shells=tuple(shells),
            skirt=skirt,
            infill=infill,
            status=LayerStatus.WARNINGS if issues else LayerStatus.OK,
            issues=tuple(i.with_layer(index) for i in issues),
        )

    def build(
        self,
        meshes: Sequence[Mesh],
        bounds: Optional[Bounds] = None,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> LayerStore:
        """Slice ``meshes`` into a complete layer store.

        Args:
            meshes: Meshes to slice; their transforms are applied first.
            bounds: Global bounds of the build.  Defaults to the union of
                the meshes' world bounds.
            max_workers: Worker pool size; defaults to
                :func:`default_worker_count`.
            cancel_event: When set, pending layer tasks are cancelled and
                :class:`BuildCancelled` is raised.  Tasks already
                running finish but their results are discarded.

        Returns:
            The layer store, ordered by layer index.
        """
        if bounds is None:
            bounds = union_bounds(meshes)
        settings = self.settings
        heights = layer_heights(bounds.min[2], bounds.max[2], settings.layer_thickness)
        count = len(heights)
        fingerprint = build_fingerprint(meshes, settings, bounds)
        triangle_sets = []
        for mesh in meshes:
            tris = mesh.transformed_triangles()
            tris.setflags(write=False)
            triangle_sets.append(tris)
        workers = max_workers or default_worker_count()
        logger.info(
            "slicing %d mesh(es) into %d layers (thickness=%s, workers=%d)",
            len(meshes),
            count,
            settings.layer_thickness,
            workers,
        )
        started = time.perf_counter()
        results: Dict[int, Layer] = {}
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="slice") as pool:
            pending: Dict[Future, int] = {
                pool.submit(self.slice_layer, k, z, triangle_sets, count): k
                for k, z in enumerate(heights)
            }
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    for future in pending:
                        future.cancel()
                    raise BuildCancelled(f"build {fingerprint[:12]} cancelled")
                done, _ = wait(pending, timeout=0.05, return_when=FIRST_COMPLETED)
                for future in done:
                    index = pending.pop(future)
                    try:
                        results[index] = future.result()
                    except Exception:
                        for other in pending:
                            other.cancel()
                        raise
        layers = tuple(results[k] for k in range(count))
        store = LayerStore(layers=layers, fingerprint=fingerprint, settings=settings, bounds=bounds)
        elapsed = time.perf_counter() - started
        if store.failed_layers:
            logger.warning(
                "slicing finished with %d failed layer(s) %s in %.3fs",
                len(store.failed_layers),
                list(store.failed_layers),
                elapsed,
            )
        else:
            logger.info("slicing finished: %d layers in %.3fs", count, elapsed)
        return store
