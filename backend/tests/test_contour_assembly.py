"""
Tests for stitching slice segments into regions in contours.py.

Synthetic segment sets are used so that gaps, noise and nesting can be
controlled exactly.  Segments are shuffled and reversed to make sure
the assembler does not rely on input order or direction.
"""

from __future__ import annotations

import random
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from layerslice.services.contours import ContourAssembler, nest_loops  # type: ignore
from layerslice.services.diagnostics import AssemblyError, IssueKind  # type: ignore
from layerslice.services.polygons import Polygon  # type: ignore
from layerslice.services.settings import SlicingSettings  # type: ignore
from layerslice.services.slicing import SliceSegment  # type: ignore


def square_segments(x0: float, y0: float, size: float, steps: int = 1) -> list[SliceSegment]:
    """Segments around an axis-aligned square, ``steps`` per side."""
    corners = [(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)]
    points = []
    for i in range(4):
        a = corners[i]
        b = corners[(i + 1) % 4]
        for k in range(steps):
            t = k / steps
            points.append((a[0] + t * (b[0] - a[0]), a[1] + t * (b[1] - a[1])))
    return [SliceSegment(p1=points[i], p2=points[(i + 1) % len(points)]) for i in range(len(points))]


def scrambled(segments: list[SliceSegment], seed: int = 7) -> list[SliceSegment]:
    rng = random.Random(seed)
    result = []
    for seg in segments:
        if rng.random() < 0.5:
            seg = SliceSegment(p1=seg.p2, p2=seg.p1)
        result.append(seg)
    rng.shuffle(result)
    return result


@pytest.fixture
def assembler() -> ContourAssembler:
    return ContourAssembler(eps=1e-4, noise_length=0.4, close_tolerance=0.4)


def test_square_becomes_single_ccw_region(assembler: ContourAssembler) -> None:
    result = assembler.assemble(scrambled(square_segments(0.0, 0.0, 10.0, steps=3)))
    assert result.issues == ()
    assert len(result.regions) == 1
    region = result.regions[0]
    assert region.outer.is_ccw
    # Collinear split points are removed
    assert len(region.outer) == 4
    assert region.area == pytest.approx(100.0)


def test_hole_is_attached_and_wound_clockwise(assembler: ContourAssembler) -> None:
    segments = square_segments(0.0, 0.0, 10.0) + square_segments(3.0, 3.0, 4.0)
    result = assembler.assemble(scrambled(segments))
    assert len(result.regions) == 1
    region = result.regions[0]
    assert region.outer.is_ccw
    assert len(region.holes) == 1
    assert not region.holes[0].is_ccw
    assert region.area == pytest.approx(84.0)


def test_island_inside_hole_is_a_separate_region(assembler: ContourAssembler) -> None:
    segments = (
        square_segments(0.0, 0.0, 10.0)
        + square_segments(2.0, 2.0, 6.0)
        + square_segments(4.0, 4.0, 2.0)
    )
    result = assembler.assemble(scrambled(segments))
    assert len(result.regions) == 2
    by_area = sorted(result.regions, key=lambda r: r.area)
    island, frame = by_area
    assert island.holes == ()
    assert island.area == pytest.approx(4.0)
    assert len(frame.holes) == 1
    assert frame.area == pytest.approx(64.0)
    assert island.outer.is_ccw and frame.outer.is_ccw


def test_disjoint_squares_in_canonical_order(assembler: ContourAssembler) -> None:
    segments = square_segments(20.0, 0.0, 5.0) + square_segments(0.0, 0.0, 5.0)
    first = assembler.assemble(scrambled(segments, seed=1))
    second = assembler.assemble(scrambled(segments, seed=2))
    assert first.regions == second.regions
    assert [r.outer.points[0] for r in first.regions] == [(0.0, 0.0), (20.0, 0.0)]


def test_endpoints_matched_within_tolerance(assembler: ContourAssembler) -> None:
    segments = square_segments(0.0, 0.0, 10.0)
    # Nudge one endpoint by less than eps
    seg = segments[1]
    segments[1] = SliceSegment(p1=(seg.p1[0] + 5e-5, seg.p1[1]), p2=seg.p2)
    result = assembler.assemble(segments)
    assert len(result.regions) == 1
    assert result.issues == ()


def test_short_open_chain_is_discarded_with_warning(assembler: ContourAssembler) -> None:
    segments = square_segments(0.0, 0.0, 10.0) + [SliceSegment(p1=(20.0, 20.0), p2=(20.1, 20.0))]
    result = assembler.assemble(segments)
    assert len(result.regions) == 1
    assert [i.kind for i in result.issues] == [IssueKind.ASSEMBLY_WARNING]


def test_small_gap_is_force_closed_with_warning(assembler: ContourAssembler) -> None:
    segments = square_segments(0.0, 0.0, 10.0, steps=2)
    # Shorten the closing segment so the loop has a 0.3 gap
    last = segments[-1]
    segments[-1] = SliceSegment(p1=last.p1, p2=(0.0, 0.3))
    result = assembler.assemble(segments)
    assert len(result.regions) == 1
    assert result.regions[0].area == pytest.approx(100.0)
    assert [i.kind for i in result.issues] == [IssueKind.ASSEMBLY_WARNING]
    assert "force-closed" in result.issues[0].message


def test_large_gap_raises_assembly_error(assembler: ContourAssembler) -> None:
    segments = square_segments(0.0, 0.0, 10.0, steps=2)
    del segments[3]
    with pytest.raises(AssemblyError) as excinfo:
        assembler.assemble(segments)
    assert excinfo.value.gap == pytest.approx(5.0)


def test_assembler_thresholds_default_to_extrusion_width() -> None:
    settings = SlicingSettings(extrusion_width=0.5)
    assembler = ContourAssembler.from_settings(settings)
    assert assembler.noise_length == 0.5
    assert assembler.close_tolerance == 0.5
    assert assembler.eps == settings.tolerance_epsilon


def test_nest_loops_orients_regardless_of_input_winding() -> None:
    outer = Polygon.from_points([(0.0, 0.0), (0.0, 10.0), (10.0, 10.0), (10.0, 0.0)])
    hole = Polygon.from_points([(2.0, 2.0), (8.0, 2.0), (8.0, 8.0), (2.0, 8.0)])
    regions = nest_loops([hole, outer])
    assert len(regions) == 1
    assert regions[0].outer.is_ccw
    assert not regions[0].holes[0].is_ccw
