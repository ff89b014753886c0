from __future__ import annotations

import numpy as np
import pytest
from pytest import approx

from cammeasure.edges import (
    EdgeDetectionConfig,
    EdgePass,
    adaptive_thresholds,
    canny,
    compute_gradients,
    detect_edges,
    hysteresis,
)
from cammeasure.preprocess import preprocess_frame
from cammeasure.synthetic import SyntheticSceneConfig, generate_synthetic_scene


def _square_image() -> np.ndarray:
    image = np.zeros((80, 80), dtype=np.uint8)
    image[20:60, 20:60] = 255
    return image


@pytest.mark.parametrize(("operator", "size"), [("sobel", 3), ("sobel", 5), ("scharr", 3)])
def test_unit_ramp_gives_magnitude_two_for_every_operator(operator: str, size: int) -> None:
    ramp = np.tile(np.arange(24, dtype=np.float64), (24, 1))
    gx, gy, magnitude, _ = compute_gradients(ramp, operator, size)

    assert gx[12, 12] == approx(2.0)
    assert gy[12, 12] == approx(0.0)
    assert magnitude[12, 12] == approx(2.0)


def test_flat_frame_yields_no_edge_pixels() -> None:
    scene = generate_synthetic_scene(SyntheticSceneConfig(scene="flat", width=100, height=100))
    prepared = preprocess_frame(scene.frame)
    result = detect_edges(prepared.denoised)

    assert result.edge_pixels == 0
    assert not result.edge_map.any()


def test_flat_frame_with_adaptive_thresholds_yields_no_edges() -> None:
    flat = np.full((50, 50), 128, dtype=np.uint8)
    result = canny(flat, sigma=1.0, low_threshold=0, high_threshold=0)

    assert not result.edges.any()
    assert (result.low_threshold, result.high_threshold) == (0.0, 0.0)


def test_square_edges_hug_the_square_border() -> None:
    result = detect_edges(_square_image())

    assert result.edge_pixels > 0
    assert set(np.unique(result.edge_map)) <= {0, 255}
    ys, xs = np.nonzero(result.edge_map)
    distance_to_border = np.minimum(
        np.minimum(np.abs(xs - 19.5), np.abs(xs - 59.5)),
        np.minimum(np.abs(ys - 19.5), np.abs(ys - 59.5)),
    )
    assert distance_to_border.max() <= 3


def test_adaptive_thresholds_follow_low_ratio() -> None:
    magnitude = np.linspace(0.0, 100.0, 1001).reshape(11, 91)
    low, high = adaptive_thresholds(magnitude, high_fraction=0.1, low_ratio=0.4)

    assert 80.0 <= high <= 100.0
    assert low == approx(0.4 * high)
    assert adaptive_thresholds(np.zeros((4, 4))) == (0.0, 0.0)


def test_hysteresis_keeps_weak_pixels_connected_to_strong_ones() -> None:
    suppressed = np.zeros((7, 7))
    suppressed[1, 1] = 50.0
    suppressed[2, 2] = 15.0
    suppressed[3, 3] = 15.0
    suppressed[5, 5] = 15.0

    edges = hysteresis(suppressed, low=10.0, high=30.0)

    assert edges[1, 1] == 255
    assert edges[2, 2] == 255
    assert edges[3, 3] == 255
    assert edges[5, 5] == 0


def test_or_fusion_is_a_superset_of_majority_fusion() -> None:
    image = _square_image()
    passes = (
        EdgePass(method="canny", sigma=1.0),
        EdgePass(method="canny", sigma=2.0, operator="scharr"),
        EdgePass(method="laplacian", sigma=1.0, high_threshold=20.0),
    )
    majority = detect_edges(image, EdgeDetectionConfig(passes=passes, fusion="majority"))
    union = detect_edges(image, EdgeDetectionConfig(passes=passes, fusion="or"))

    assert union.edge_pixels >= majority.edge_pixels
    assert np.all(union.edge_map[majority.edge_map > 0] == 255)
    assert len(union.pass_maps) == 3
    assert union.confidence.min() >= 0.0
    assert union.confidence.max() <= 1.0


def test_unknown_fusion_mode_is_rejected() -> None:
    with pytest.raises(ValueError):
        detect_edges(_square_image(), EdgeDetectionConfig(fusion="and"))
