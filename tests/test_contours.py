from __future__ import annotations

import math

import numpy as np
import pytest
from pytest import approx

from cammeasure.contours import (
    ContourConfig,
    build_contour,
    convex_hull,
    extract_contours,
    hu_moments,
    polygon_area,
    polygon_perimeter,
    simplify_polygon,
    trace_boundary,
)
from cammeasure.segmentation import label_components


def _block_mask() -> np.ndarray:
    mask = np.zeros((5, 5), dtype=np.uint8)
    mask[1:4, 1:4] = 255
    return mask


def test_trace_boundary_walks_block_outline_clockwise() -> None:
    points, closed = trace_boundary(_block_mask())

    assert closed is True
    assert points == [(1, 1), (2, 1), (3, 1), (3, 2), (3, 3), (2, 3), (1, 3), (1, 2)]


def test_trace_boundary_of_empty_mask_is_empty() -> None:
    assert trace_boundary(np.zeros((4, 4), dtype=np.uint8)) == ([], False)


def test_trace_boundary_stops_at_max_points() -> None:
    points, closed = trace_boundary(_block_mask(), max_points=4)

    assert len(points) == 4
    assert closed is False


def test_simplify_with_zero_epsilon_drops_only_collinear_points() -> None:
    points, _ = trace_boundary(_block_mask())
    simplified = simplify_polygon(points, epsilon=0.0)

    assert simplified == [(1.0, 1.0), (3.0, 1.0), (3.0, 3.0), (1.0, 3.0)]
    assert simplify_polygon(simplified, epsilon=0.0) == simplified


def test_simplifying_a_traced_disk_twice_changes_nothing() -> None:
    ys, xs = np.mgrid[0:40, 0:40]
    mask = np.where((xs - 19.5) ** 2 + (ys - 19.5) ** 2 <= 12.0**2, 255, 0).astype(np.uint8)
    points, closed = trace_boundary(mask)

    once = simplify_polygon(points, epsilon=1.5)

    assert closed is True
    assert 4 < len(once) < len(points)
    assert simplify_polygon(once, epsilon=1.5) == once


@pytest.mark.parametrize("epsilon", [0.0, 0.5, 1.5, 5.0])
def test_simplify_never_adds_points(epsilon: float) -> None:
    circle = [
        (50 + 20 * math.cos(2 * math.pi * k / 64), 50 + 20 * math.sin(2 * math.pi * k / 64))
        for k in range(64)
    ]
    simplified = simplify_polygon(circle, epsilon)

    assert len(simplified) <= len(circle)
    assert set(simplified) <= {(float(x), float(y)) for x, y in circle}


def test_simplify_rejects_negative_epsilon() -> None:
    with pytest.raises(ValueError):
        simplify_polygon([(0, 0), (1, 0), (1, 1)], epsilon=-1.0)


def test_polygon_area_ignores_orientation() -> None:
    clockwise = [(0, 0), (10, 0), (10, 5), (0, 5)]
    counter_clockwise = list(reversed(clockwise))

    assert polygon_area(clockwise) == approx(50.0)
    assert polygon_area(counter_clockwise) == approx(50.0)
    assert polygon_perimeter(clockwise) == approx(30.0)
    assert polygon_perimeter(clockwise, closed=False) == approx(25.0)


def test_convex_hull_drops_interior_points() -> None:
    points = [(0, 0), (10, 0), (10, 10), (0, 10), (5, 5), (2, 7), (5, 0)]
    hull = convex_hull(points)

    assert set(hull) == {(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)}


def test_build_contour_reports_square_shape() -> None:
    contour = build_contour([(0, 0), (10, 0), (10, 10), (0, 10)])

    assert contour.area == approx(100.0)
    assert contour.perimeter == approx(40.0)
    assert contour.circularity == approx(math.pi / 4.0)
    assert contour.solidity == approx(1.0)
    assert contour.aspect_ratio == approx(1.0)
    assert 0.0 <= contour.confidence <= 1.0


def test_open_contour_confidence_is_halved() -> None:
    points = [(0, 0), (10, 0), (10, 10), (0, 10)]

    closed = build_contour(points)
    opened = build_contour(points, closed=False)

    assert opened.confidence == approx(closed.confidence / 2.0)
    assert opened.closed is False


def test_hu_moments_are_scale_invariant() -> None:
    small = [(0, 0), (20, 0), (20, 10), (0, 10)]
    large = [(0, 0), (60, 0), (60, 30), (0, 30)]

    small_hu = hu_moments(small)
    large_hu = hu_moments(large)

    assert len(small_hu) == 7
    assert small_hu[0] == approx(large_hu[0], rel=1e-6)
    assert small_hu[1] == approx(large_hu[1], rel=1e-6)


def test_hu_moments_are_rotation_invariant() -> None:
    polygon = [(0.0, 0.0), (9.0, 1.0), (12.0, 7.0), (5.0, 11.0), (-2.0, 6.0)]
    angle = math.radians(37.0)
    cos_a, sin_a = math.cos(angle), math.sin(angle)
    rotated = [(x * cos_a - y * sin_a, x * sin_a + y * cos_a) for x, y in polygon]

    original_hu = hu_moments(polygon)
    rotated_hu = hu_moments(rotated)

    assert all(value != 0.0 for value in original_hu)
    for expected, actual in zip(original_hu, rotated_hu, strict=True):
        assert actual == approx(expected, rel=1e-6, abs=1e-6)


def test_degenerate_polygon_has_zero_moments() -> None:
    collinear = [(0, 0), (5, 5), (10, 10)]

    assert polygon_area(collinear) == 0.0
    assert hu_moments(collinear) == (0.0,) * 7
    assert build_contour(collinear).circularity == 0.0


def test_extract_contours_traces_each_region() -> None:
    growth = np.zeros((40, 40), dtype=np.int32)
    growth[10:30, 10:30] = 1
    labels, regions = label_components(growth)

    contours = extract_contours(labels, regions, ContourConfig())

    assert len(contours) == 1
    contour = contours[0]
    assert contour.region_id == 1
    assert contour.closed is True
    assert set(contour.points) == {(10.0, 10.0), (29.0, 10.0), (29.0, 29.0), (10.0, 29.0)}
    assert contour.area == approx(361.0)
