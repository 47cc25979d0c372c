"""Tests for the skirt loop built in skirt.py."""

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from layerslice.services.polygons import Polygon, Region, point_in_polygon  # type: ignore
from layerslice.services.settings import SlicingSettings  # type: ignore
from layerslice.services.skirt import SkirtBuilder  # type: ignore


def square(x0: float, y0: float, size: float) -> Region:
    return Region(
        outer=Polygon.from_points(
            [(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)]
        )
    )


def test_skirt_only_applies_up_to_skirt_height() -> None:
    builder = SkirtBuilder(skirt_height=0.5, clearance=3.0, extrusion_width=0.4)
    regions = [square(0.0, 0.0, 10.0)]
    low, issues = builder.build(0.3, regions)
    assert low is not None
    assert issues == []
    high, _ = builder.build(0.7, regions)
    assert high is None


def test_skirt_encloses_every_part_with_clearance() -> None:
    builder = SkirtBuilder(skirt_height=1.0, clearance=3.0, extrusion_width=0.4)
    regions = [square(0.0, 0.0, 10.0), square(20.0, 0.0, 10.0)]
    skirt, _ = builder.build(0.1, regions)
    assert skirt is not None
    assert skirt.is_ccw
    for region in regions:
        for p in region.outer.points:
            assert point_in_polygon(p, skirt.points)
    xs = [p[0] for p in skirt.points]
    ys = [p[1] for p in skirt.points]
    # Convex hull of both squares pushed out by clearance plus width
    assert min(xs) == pytest.approx(-3.4, abs=1e-6)
    assert max(xs) == pytest.approx(33.4, abs=1e-6)
    assert min(ys) == pytest.approx(-3.4, abs=1e-6)
    assert max(ys) == pytest.approx(13.4, abs=1e-6)


def test_no_skirt_without_contours() -> None:
    builder = SkirtBuilder(skirt_height=1.0, clearance=3.0, extrusion_width=0.4)
    skirt, issues = builder.build(0.1, [])
    assert skirt is None
    assert issues == []


def test_builder_from_settings_uses_skirt_distance() -> None:
    settings = SlicingSettings(skirt_height=0.6, skirt_distance=2.0, extrusion_width=0.5)
    builder = SkirtBuilder.from_settings(settings)
    assert builder.offset == pytest.approx(2.5)
    assert builder.applies_to(0.6)
    assert not builder.applies_to(0.61)


def test_self_intersecting_outer_still_gets_a_skirt() -> None:
    bow_tie = Region(outer=Polygon.from_points([(40.0, 0.0), (60.0, 10.0), (60.0, 0.0), (40.0, 4.0)]))
    builder = SkirtBuilder(skirt_height=1.0, clearance=3.0, extrusion_width=0.4)
    skirt, issues = builder.build(0.1, [square(0.0, 0.0, 10.0), bow_tie])
    assert skirt is not None
    assert issues == []
    for p in bow_tie.outer.points:
        assert point_in_polygon(p, skirt.points)
