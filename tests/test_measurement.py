from __future__ import annotations

import math

import pytest
from pytest import approx

from cammeasure.contours import build_contour
from cammeasure.errors import InvalidInputError
from cammeasure.measurement import (
    MeasurementConfig,
    estimate_depth,
    estimate_distance_mm,
    measure_object,
    measurement_confidence,
)
from cammeasure.models import BoundingBox, CalibrationData, Contour, Dimensions, Region


def _square() -> tuple[Region, Contour]:
    region = Region(
        id=3,
        pixel_count=10_000,
        bounding_box=BoundingBox(x=150, y=150, width=100, height=100),
        centroid=(199.5, 199.5),
    )
    contour = build_contour([(150, 150), (249, 150), (249, 249), (150, 249)], region)
    return region, contour


def test_calibrated_measurements_scale_linearly() -> None:
    region, contour = _square()

    coarse = measure_object(region, contour, CalibrationData(pixels_per_mm=10.0, is_calibrated=True))
    fine = measure_object(region, contour, CalibrationData(pixels_per_mm=20.0, is_calibrated=True))

    assert coarse.dimensions.unit == "mm"
    assert coarse.dimensions.width == approx(10.0)
    assert coarse.dimensions.area == approx(100.0)
    assert fine.dimensions.width == approx(coarse.dimensions.width / 2.0)
    assert fine.dimensions.area == approx(coarse.dimensions.area / 4.0)
    assert fine.dimensions.perimeter == approx(coarse.dimensions.perimeter / 2.0)
    assert fine.depth.volume == approx(coarse.depth.volume / 8.0)


def test_uncalibrated_measurements_stay_in_pixels() -> None:
    region, contour = _square()
    obj = measure_object(region, contour, CalibrationData.uncalibrated())

    assert obj.dimensions.unit == "px"
    assert obj.dimensions.width == 100
    assert obj.dimensions.area == 10_000
    assert obj.depth.method == "estimated"
    assert obj.depth.estimated_distance_mm is None
    assert obj.id == "object-3"
    assert obj.center == (199.5, 199.5)


def test_measure_object_without_depth() -> None:
    region, contour = _square()
    obj = measure_object(
        region,
        contour,
        CalibrationData.uncalibrated(),
        MeasurementConfig(estimate_depth=False),
        object_id="object-1",
    )

    assert obj.depth is None
    assert obj.id == "object-1"


@pytest.mark.parametrize(
    ("width", "height", "factor"),
    [(20.0, 10.0, 0.2), (10.0, 20.0, 0.4), (10.0, 10.0, 0.35)],
)
def test_depth_factor_follows_aspect_ratio(width: float, height: float, factor: float) -> None:
    dims = Dimensions(width=width, height=height, area=width * height, perimeter=2 * (width + height), unit="mm")
    depth = estimate_depth(dims, circularity=0.5, solidity=0.5, calibrated=True)

    assert depth.depth == approx(min(width, height) * factor)
    assert depth.volume == approx(width * height * depth.depth * 0.7)
    assert depth.surface_area == approx(2 * dims.area + dims.perimeter * depth.depth)


def test_depth_shape_factor_for_round_and_boxy_silhouettes() -> None:
    dims = Dimensions(width=10.0, height=10.0, area=100.0, perimeter=40.0, unit="mm")

    round_depth = estimate_depth(dims, circularity=0.9, solidity=0.95, calibrated=True)
    boxy_depth = estimate_depth(dims, circularity=0.78, solidity=0.95, calibrated=True)

    assert round_depth.volume == approx(10 * 10 * 3.5 * math.pi / 4.0)
    assert boxy_depth.volume == approx(10 * 10 * 3.5)
    assert round_depth.method == "monocular"
    assert round_depth.confidence == approx(0.85)


@pytest.mark.parametrize(
    ("size", "distance"),
    [(5.0, 600.0), (10.0, 400.0), (30.0, 250.0), (75.0, 150.0), (100.0, 100.0), (250.0, 100.0)],
)
def test_distance_buckets(size: float, distance: float) -> None:
    assert estimate_distance_mm(size) == distance


def test_confidence_is_capped_and_favours_calibration() -> None:
    assert measurement_confidence(1.0, calibrated=True) == approx(0.5 + 0.27 + 0.17)
    assert measurement_confidence(0.8, calibrated=True) > measurement_confidence(0.8, calibrated=False)

    heavy = MeasurementConfig(contour_weight=1.0)
    assert measurement_confidence(1.0, calibrated=True, config=heavy) == approx(0.99)
    assert measurement_confidence(0.0, calibrated=False) >= 0.0


def test_invalid_calibration_is_rejected_before_measuring() -> None:
    with pytest.raises(InvalidInputError):
        CalibrationData(pixels_per_mm=-2.0, is_calibrated=True)
