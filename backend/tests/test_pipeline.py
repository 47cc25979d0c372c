"""
End-to-end tests for the layer pipeline in pipeline.py.

A 20 mm cube sliced with 0.2 mm layers and 0.4 mm extrusion width is
the reference part.  The partial-failure test injects an intersector
that drops one segment at a single height so that exactly one layer
cannot be assembled.
"""

from __future__ import annotations

import math
import sys
import threading
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from layerslice.services.diagnostics import BuildCancelled, ConfigError, IssueKind  # type: ignore
from layerslice.services.layers import BuildStatus, LayerStatus  # type: ignore
from layerslice.services.mesh import Mesh, box_mesh  # type: ignore
from layerslice.services.pipeline import (  # type: ignore
    LayerPipeline,
    build_fingerprint,
    layer_count,
    layer_heights,
)
from layerslice.services.polygons import point_in_polygon  # type: ignore
from layerslice.services.settings import SlicingSettings  # type: ignore
from layerslice.services.slicing import SliceSegment, intersect_meshes_with_plane  # type: ignore


@pytest.fixture
def cube() -> Mesh:
    return box_mesh(size=20.0)


def square_tube(size: float = 20.0, wall: float = 5.0, height: float = 4.0) -> Mesh:
    """Closed mesh of a square tube (a frame with a square through-hole)."""
    a = 0.0
    b = wall
    c = size - wall
    d = size
    outer = [(a, a), (d, a), (d, d), (a, d)]
    inner = [(b, b), (c, b), (c, c), (b, c)]
    tris = []

    def quad(p, q, r, s):
        tris.append([p, q, r])
        tris.append([p, r, s])

    for i in range(4):
        o0, o1 = outer[i], outer[(i + 1) % 4]
        i0, i1 = inner[i], inner[(i + 1) % 4]
        # Outer wall faces outward, inner wall faces the hole
        quad((*o0, 0.0), (*o1, 0.0), (*o1, height), (*o0, height))
        quad((*i1, 0.0), (*i0, 0.0), (*i0, height), (*i1, height))
        # Bottom and top caps between the two squares
        quad((*o0, 0.0), (*i0, 0.0), (*i1, 0.0), (*o1, 0.0))
        quad((*o0, height), (*o1, height), (*i1, height), (*i0, height))
    return Mesh.from_triangles(tris)


def test_layer_count_and_heights() -> None:
    assert layer_count(0.0, 20.0, 0.2) == 101
    heights = layer_heights(0.0, 1.0, 0.2)
    assert len(heights) == 6
    assert heights[0] == pytest.approx(0.1)
    assert heights[-1] == pytest.approx(1.1)


def test_invalid_settings_raise_before_scheduling() -> None:
    calls = []

    def intersector(triangle_sets, z, eps):
        calls.append(z)
        return intersect_meshes_with_plane(triangle_sets, z, eps)

    with pytest.raises(ConfigError) as excinfo:
        LayerPipeline(SlicingSettings(layer_thickness=0.0, extrusion_width=-1.0), intersector=intersector)
    message = str(excinfo.value)
    assert "layer_thickness" in message
    assert "extrusion_width" in message
    assert calls == []


def test_cube_cross_section(cube: Mesh) -> None:
    store = LayerPipeline(SlicingSettings()).build([cube], max_workers=2)
    assert len(store) == 101
    assert store.status is BuildStatus.READY
    layer = store.layer_at_z(10.05)
    assert layer is not None
    assert len(layer.contours) == 1
    contour = layer.contours[0]
    assert contour.holes == ()
    assert contour.area == pytest.approx(400.0)
    shells = layer.shells[0]
    assert shells.ring_count == 2
    ring0 = shells.rings[0].regions[0]
    xs = [p[0] for p in ring0.outer.points]
    ys = [p[1] for p in ring0.outer.points]
    assert max(xs) - min(xs) == pytest.approx(19.6)
    assert max(ys) - min(ys) == pytest.approx(19.6)
    assert min(xs) == pytest.approx(0.2)
    # Above the part the layer is empty
    assert store[-1].is_empty


def test_cube_single_shell_is_inset_by_half_width(cube: Mesh) -> None:
    settings = SlicingSettings(shell_count=1, extrusion_width=0.4)
    store = LayerPipeline(settings).build([cube], max_workers=2)
    layer = store.layer_at_z(10.05)
    assert len(layer.contours) == 1
    minx, miny, maxx, maxy = layer.contours[0].bbox
    eps = settings.tolerance_epsilon
    assert abs((maxx - minx) - 20.0) <= eps
    assert abs((maxy - miny) - 20.0) <= eps
    rings = layer.shells[0].rings
    assert len(rings) == 1
    rminx, rminy, rmaxx, rmaxy = rings[0].regions[0].bbox
    assert rminx == pytest.approx(minx + 0.2, abs=eps)
    assert rmaxx == pytest.approx(maxx - 0.2, abs=eps)
    assert rmaxy - rminy == pytest.approx(19.6, abs=eps)


def test_determinism_across_worker_counts(cube: Mesh) -> None:
    settings = SlicingSettings(skirt_height=0.5, alternate_infill_layers=frozenset({2}))
    meshes = [cube, box_mesh(size=5.0, origin=(30.0, 0.0, 0.0))]
    serial = LayerPipeline(settings).build(meshes, max_workers=1)
    parallel = LayerPipeline(settings).build(meshes, max_workers=4)
    again = LayerPipeline(settings).build(meshes, max_workers=3)
    assert serial.fingerprint == parallel.fingerprint == again.fingerprint
    assert serial.layers == parallel.layers
    assert serial.layers == again.layers


def test_fingerprint_changes_with_settings(cube: Mesh) -> None:
    bounds = cube.world_bounds()
    a = build_fingerprint([cube], SlicingSettings(), bounds)
    b = build_fingerprint([cube], SlicingSettings(shell_count=3), bounds)
    assert a != b
    assert a == build_fingerprint([cube], SlicingSettings(), bounds)


def test_shell_rings_nest() -> None:
    settings = SlicingSettings(shell_count=3, skins_count=1)
    store = LayerPipeline(settings).build([square_tube()], max_workers=2)
    layer = store[5]
    assert layer.status is LayerStatus.OK
    shell_set = layer.shells[0]
    assert len(shell_set.contour.holes) == 1
    assert shell_set.ring_count == 4
    previous = [shell_set.contour]
    for ring in shell_set.rings:
        for region, parent in zip(ring.regions, ring.parents):
            container = previous[max(parent, 0)]
            assert region.area < container.area
            for poly in region.polygons():
                for p in poly.points:
                    assert container.contains_point(p, eps=1e-6)
        previous = list(ring.regions)


def test_infill_stays_inside_innermost_ring() -> None:
    store = LayerPipeline(SlicingSettings()).build([square_tube()], max_workers=2)
    for layer in store:
        if layer.is_empty:
            continue
        assert layer.infill is not None
        innermost = [r for s in layer.shells for r in s.innermost_regions()]
        assert len(layer.infill) > 0
        for a, b in layer.infill.segments:
            for p in (a, b, ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0)):
                assert any(r.contains_point(p, eps=1e-6) for r in innermost)


def test_alternate_infill_layers() -> None:
    settings = SlicingSettings(
        infill_distance=1.0,
        alternate_infill_layers=frozenset({3, 7}),
        alternate_infill_distance=2.0,
        alternate_infill_rotation_degrees=0.0,
    )
    store = LayerPipeline(settings).build([box_mesh(size=(20.0, 20.0, 2.0))], max_workers=2)
    for layer in store:
        if layer.is_empty:
            continue
        pattern = layer.infill
        if layer.index in (3, 7):
            assert pattern.alternate
            assert pattern.spacing == 2.0
            assert pattern.angle == 0.0
            ys = sorted({round(a[1], 6) for a, _ in pattern.segments})
            gaps = {round(ys[i + 1] - ys[i], 6) for i in range(len(ys) - 1)}
            assert gaps == {2.0}
        else:
            assert not pattern.alternate
            assert pattern.spacing == 1.0


def test_skirt_encloses_low_layers_only(cube: Mesh) -> None:
    settings = SlicingSettings(skirt_height=1.0)
    meshes = [cube, box_mesh(size=5.0, origin=(30.0, 0.0, 0.0))]
    store = LayerPipeline(settings).build(meshes, max_workers=2)
    for layer in store:
        if layer.z <= 1.0:
            assert layer.skirt is not None
            outer_area = sum(s.rings[0].regions[0].outer.area for s in layer.shells)
            assert layer.skirt.area > outer_area
            for shell_set in layer.shells:
                for ring in shell_set.rings:
                    for region in ring.regions:
                        for p in region.outer.points:
                            assert point_in_polygon(p, layer.skirt.points)
                for p in shell_set.contour.outer.points:
                    assert point_in_polygon(p, layer.skirt.points)
        else:
            assert layer.skirt is None
    assert sum(1 for layer in store if layer.skirt is not None) == 5


def test_failed_layer_does_not_affect_others(cube: Mesh) -> None:
    settings = SlicingSettings()
    heights = layer_heights(0.0, 20.0, settings.layer_thickness)
    broken_z = heights[5]

    def lossy_intersector(triangle_sets, z, eps):
        segments, issues = intersect_meshes_with_plane(triangle_sets, z, eps)
        if math.isclose(z, broken_z, abs_tol=1e-12):
            segments = segments[1:]
        return segments, issues

    reference = LayerPipeline(settings).build([cube], max_workers=2)
    store = LayerPipeline(settings, intersector=lossy_intersector).build([cube], max_workers=4)
    assert store.status is BuildStatus.PARTIAL
    assert store.failed_layers == (5,)
    failed = store[5]
    assert failed.is_empty
    assert failed.infill is None
    assert any(i.kind is IssueKind.ASSEMBLY_ERROR and i.layer == 5 for i in failed.issues)
    for k in range(len(store)):
        if k != 5:
            assert store[k] == reference[k]


def test_cancelled_build_raises(cube: Mesh) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(BuildCancelled):
        LayerPipeline(SlicingSettings()).build([cube], max_workers=2, cancel_event=cancel)


def test_layer_for_fraction(cube: Mesh) -> None:
    store = LayerPipeline(SlicingSettings(layer_thickness=1.0)).build([cube], max_workers=2)
    assert len(store) == 21
    assert store.layer_for_fraction(0.0).index == 0
    assert store.layer_for_fraction(1.0).index == 20
    assert store.layer_for_fraction(0.5).index == 10


def test_self_intersecting_loop_stays_in_its_layer() -> None:
    settings = SlicingSettings(skirt_height=5.0)
    box = box_mesh(size=(10.0, 10.0, 2.0))
    broken_z = layer_heights(0.0, 2.0, settings.layer_thickness)[2]
    bow_tie = [(40.0, 0.0), (60.0, 10.0), (60.0, 0.0), (40.0, 4.0), (40.0, 0.0)]

    def bow_tie_intersector(triangle_sets, z, eps):
        segments, issues = intersect_meshes_with_plane(triangle_sets, z, eps)
        if math.isclose(z, broken_z, abs_tol=1e-12):
            segments = list(segments) + [SliceSegment(a, b) for a, b in zip(bow_tie, bow_tie[1:])]
        return segments, issues

    reference = LayerPipeline(settings).build([box], max_workers=2)
    store = LayerPipeline(settings, intersector=bow_tie_intersector).build([box], max_workers=4)
    assert len(store) == len(reference)
    layer = store[2]
    assert not layer.failed
    assert layer.skirt is not None or any(i.kind is IssueKind.OFFSET_ERROR for i in layer.issues)
    for k in range(len(store)):
        if k != 2:
            assert store[k] == reference[k]


def test_layer_for_fraction_follows_the_cutting_height() -> None:
    store = LayerPipeline(SlicingSettings(layer_thickness=1.0)).build(
        [box_mesh(size=(4.0, 4.0, 2.0))], max_workers=1
    )
    # Layers sit at z 0.5, 1.5 and 2.5; the last one lies above the part
    assert len(store) == 3
    assert store.layer_for_fraction(0.75).index == 1
    assert store.layer_for_fraction(1.0).index == 2
    assert store.layer_for_fraction(0.0).index == 0
