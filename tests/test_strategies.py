from __future__ import annotations

import sys

import numpy as np
import pytest
from pytest import approx

from cammeasure.errors import ExternalEngineUnavailable
from cammeasure.models import BoundingBox, CalibrationData, FrameBuffer
from cammeasure.strategies import MaskModelStrategy, OpenCVContourStrategy, PlaceholderStrategy
from cammeasure.synthetic import SyntheticSceneConfig, generate_synthetic_scene


def _square_frame() -> FrameBuffer:
    return generate_synthetic_scene(SyntheticSceneConfig(width=200, height=200, object_size=50)).frame


def _square_probabilities(rgba: np.ndarray) -> np.ndarray:
    return (rgba[:, :, 0] > 127).astype(np.float64)


def test_placeholder_box_sits_near_frame_centre() -> None:
    frame = FrameBuffer.from_array(np.zeros((100, 200), dtype=np.uint8))

    objects = PlaceholderStrategy().detect(frame, CalibrationData.uncalibrated())

    assert len(objects) == 1
    obj = objects[0]
    assert obj.id == "placeholder-0"
    assert obj.strategy == "placeholder"
    assert obj.bounding_box == BoundingBox(x=90, y=45, width=30, height=15)
    assert obj.confidence == approx(0.3)
    assert obj.dimensions.unit == "px"
    assert obj.dimensions.perimeter == approx(90.0)
    assert 0.0 < obj.geometric_properties.circularity <= 1.0
    assert len(obj.contour) == 4
    assert obj.depth is None


def test_placeholder_uses_calibration_scale() -> None:
    frame = FrameBuffer.from_array(np.zeros((100, 200), dtype=np.uint8))

    obj = PlaceholderStrategy().detect(frame, CalibrationData(pixels_per_mm=2.0, is_calibrated=True))[0]

    assert obj.dimensions.unit == "mm"
    assert obj.dimensions.width == approx(15.0)
    assert obj.dimensions.area == approx(112.5)


def test_mask_model_strategy_measures_predicted_region() -> None:
    strategy = MaskModelStrategy(predict=_square_probabilities)

    objects = strategy.detect(_square_frame(), CalibrationData(pixels_per_mm=5.0, is_calibrated=True))

    assert objects is not None and len(objects) == 1
    obj = objects[0]
    assert obj.strategy == "mask-model"
    assert obj.bounding_box == BoundingBox(x=75, y=75, width=50, height=50)
    assert obj.dimensions.width == approx(10.0)
    assert obj.dimensions.area == approx(100.0)


def test_mask_model_strategy_returns_none_for_empty_mask() -> None:
    strategy = MaskModelStrategy(predict=lambda rgba: np.zeros(rgba.shape[:2]))
    assert strategy.detect(_square_frame(), CalibrationData.uncalibrated()) is None


def test_mask_model_errors_are_reported_as_unavailable() -> None:
    def broken(rgba: np.ndarray) -> np.ndarray:
        raise RuntimeError("model weights missing")

    with pytest.raises(ExternalEngineUnavailable, match="model weights missing"):
        MaskModelStrategy(predict=broken).detect(_square_frame(), CalibrationData.uncalibrated())


def test_mask_model_shape_mismatch_is_reported_as_unavailable() -> None:
    strategy = MaskModelStrategy(predict=lambda rgba: np.ones((3, 3)))
    with pytest.raises(ExternalEngineUnavailable):
        strategy.detect(_square_frame(), CalibrationData.uncalibrated())


def test_opencv_strategy_without_opencv_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "cv2", None)

    with pytest.raises(ExternalEngineUnavailable, match="opencv-python-headless"):
        OpenCVContourStrategy().detect(_square_frame(), CalibrationData.uncalibrated())


def test_opencv_strategy_finds_square() -> None:
    pytest.importorskip("cv2")

    objects = OpenCVContourStrategy().detect(_square_frame(), CalibrationData.uncalibrated())

    assert objects is not None and len(objects) == 1
    obj = objects[0]
    assert obj.strategy == "opencv"
    assert obj.bounding_box.width == approx(50, abs=4)
    assert obj.center == approx((99.5, 99.5), abs=2.0)
