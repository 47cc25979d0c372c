"""Tests for the 2D polygon helpers in polygons.py."""

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from layerslice.services.polygons import (  # type: ignore
    Polygon,
    Region,
    clean_points,
    offset_polygon_2d,
    point_in_polygon,
    polygon_area_2d,
    polygon_self_intersects,
    polygons_cross,
)

SQUARE = [(0.0, 0.0), (4.0, 0.0), (4.0, 4.0), (0.0, 4.0)]


def test_signed_area_follows_winding() -> None:
    assert polygon_area_2d(SQUARE) == pytest.approx(16.0)
    assert polygon_area_2d(list(reversed(SQUARE))) == pytest.approx(-16.0)


def test_from_points_drops_closing_duplicate() -> None:
    poly = Polygon.from_points(SQUARE + [SQUARE[0]])
    assert len(poly) == 4
    assert poly.is_ccw
    assert poly.length == pytest.approx(16.0)
    assert len(poly.closed_points()) == 5


def test_oriented_and_canonical_are_stable() -> None:
    cw = Polygon.from_points([(4.0, 4.0), (4.0, 0.0), (0.0, 0.0), (0.0, 4.0)])
    assert not cw.is_ccw
    ccw = cw.oriented(ccw=True).canonical()
    assert ccw.is_ccw
    assert ccw.points[0] == (0.0, 0.0)
    assert ccw == Polygon.from_points(SQUARE)


def test_point_in_polygon_with_boundary_tolerance() -> None:
    assert point_in_polygon((2.0, 2.0), SQUARE)
    assert not point_in_polygon((5.0, 2.0), SQUARE)
    # A point just outside the edge counts as inside once eps covers the gap
    assert not point_in_polygon((4.00001, 2.0), SQUARE)
    assert point_in_polygon((4.00001, 2.0), SQUARE, eps=1e-4)


def test_region_with_hole_excludes_hole_interior() -> None:
    hole = Polygon.from_points([(1.0, 1.0), (1.0, 3.0), (3.0, 3.0), (3.0, 1.0)])
    region = Region(outer=Polygon.from_points(SQUARE), holes=(hole,))
    assert region.area == pytest.approx(12.0)
    assert region.contains_point((0.5, 0.5))
    assert not region.contains_point((2.0, 2.0))
    # On the hole boundary is material within tolerance
    assert region.contains_point((1.0, 2.0), eps=1e-6)
    data = region.to_dict()
    assert len(data["holes"]) == 1
    assert data["area"] == pytest.approx(12.0)


def test_clean_points_removes_duplicates_and_collinear_vertices() -> None:
    noisy = [
        (0.0, 0.0),
        (2.0, 0.0),
        (2.0, 0.0),
        (4.0, 0.0),
        (4.0, 2.0),
        (4.0, 4.0),
        (0.0, 4.0),
        (0.0, 2.0000000001),
    ]
    assert clean_points(noisy, 1e-6) == SQUARE


def test_self_intersection_detection() -> None:
    bowtie = [(0.0, 0.0), (2.0, 2.0), (2.0, 0.0), (0.0, 2.0)]
    assert polygon_self_intersects(bowtie)
    assert not polygon_self_intersects(SQUARE)


def test_polygons_cross() -> None:
    shifted = [(x + 3.0, y) for x, y in SQUARE]
    far = [(x + 10.0, y) for x, y in SQUARE]
    assert polygons_cross(SQUARE, shifted)
    assert not polygons_cross(SQUARE, far)


@pytest.mark.parametrize("points", [SQUARE, list(reversed(SQUARE))])
def test_offset_sign_is_independent_of_winding(points) -> None:
    grown = offset_polygon_2d(points, 1.0)
    shrunk = offset_polygon_2d(points, -1.0)
    assert abs(polygon_area_2d(grown)) == pytest.approx(36.0)
    assert abs(polygon_area_2d(shrunk)) == pytest.approx(4.0)
    xs = sorted(p[0] for p in shrunk)
    assert xs[0] == pytest.approx(1.0)
    assert xs[-1] == pytest.approx(3.0)
