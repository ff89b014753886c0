from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

import numpy as np

from .kernels import SUPPORTED_GRADIENT_OPERATORS, KernelCache
from .preprocess import correlate_separable, smooth

SUPPORTED_EDGE_METHODS = ("canny", "gradient", "laplacian")
SUPPORTED_FUSION_MODES = ("or", "majority")

NEIGHBORS_8: tuple[tuple[int, int], ...] = (
    (-1, -1),
    (-1, 0),
    (-1, 1),
    (0, -1),
    (0, 1),
    (1, -1),
    (1, 0),
    (1, 1),
)


@dataclass(frozen=True)
class EdgePass:
    """One edge-detection pass; thresholds of 0 select adaptive thresholds."""

    method: str = "canny"
    sigma: float = 1.0
    operator: str = "sobel"
    kernel_size: int = 3
    low_threshold: float = 10.0
    high_threshold: float = 30.0


@dataclass(frozen=True)
class EdgeDetectionConfig:
    passes: tuple[EdgePass, ...] = (
        EdgePass(method="canny", sigma=1.0, operator="sobel"),
        EdgePass(method="canny", sigma=1.4, operator="sobel"),
        EdgePass(method="canny", sigma=2.0, operator="scharr"),
    )
    fusion: str = "majority"
    adaptive_high_fraction: float = 0.1
    adaptive_low_ratio: float = 0.4


@dataclass(frozen=True)
class CannyResult:
    edges: np.ndarray
    magnitude: np.ndarray
    direction: np.ndarray
    low_threshold: float
    high_threshold: float


@dataclass(frozen=True)
class EdgeDetectionResult:
    edge_map: np.ndarray
    confidence: np.ndarray
    edge_pixels: int
    pass_maps: tuple[np.ndarray, ...] = field(default_factory=tuple)


def compute_gradients(
    image: np.ndarray,
    operator: str = "sobel",
    kernel_size: int = 3,
    kernels: KernelCache | None = None,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Return (gx, gy, magnitude, direction) for a separable Sobel/Scharr operator."""

    if operator not in SUPPORTED_GRADIENT_OPERATORS:
        raise ValueError(f"unsupported gradient operator: {operator}")

    cache = kernels or KernelCache()
    smooth_taps, deriv_taps = cache.gradient_taps(operator, kernel_size)
    gx = correlate_separable(image, deriv_taps, smooth_taps)
    gy = correlate_separable(image, smooth_taps, deriv_taps)
    magnitude = np.hypot(gx, gy)
    direction = np.arctan2(gy, gx)
    return gx, gy, magnitude, direction


def laplacian_response(image: np.ndarray) -> np.ndarray:
    padded = np.pad(image.astype(np.float64, copy=False), 1, mode="edge")
    center = padded[1:-1, 1:-1]
    return (
        4.0 * center
        - padded[:-2, 1:-1]
        - padded[2:, 1:-1]
        - padded[1:-1, :-2]
        - padded[1:-1, 2:]
    )


def laplacian_edges(image: np.ndarray, threshold: float) -> np.ndarray:
    response = np.abs(laplacian_response(image))
    edges = (response > 0) & (response >= threshold)
    return np.where(edges, 255, 0).astype(np.uint8)


def _shift(values: np.ndarray, dy: int, dx: int) -> np.ndarray:
    """Value of the neighbour at (y + dy, x + dx); zero outside the frame."""

    padded = np.pad(values, 1, mode="constant")
    height, width = values.shape
    return padded[1 + dy : 1 + dy + height, 1 + dx : 1 + dx + width]


def non_maximum_suppression(magnitude: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """Keep gradient magnitudes that are local maxima across the edge.

    Directions are quantised to 0/45/90/135 degrees.
    """

    angle = np.degrees(direction) % 180.0
    horizontal = (angle < 22.5) | (angle >= 157.5)
    diagonal_down = (angle >= 22.5) & (angle < 67.5)
    vertical = (angle >= 67.5) & (angle < 112.5)

    first = np.where(
        horizontal,
        _shift(magnitude, 0, -1),
        np.where(
            diagonal_down,
            _shift(magnitude, -1, -1),
            np.where(vertical, _shift(magnitude, -1, 0), _shift(magnitude, -1, 1)),
        ),
    )
    second = np.where(
        horizontal,
        _shift(magnitude, 0, 1),
        np.where(
            diagonal_down,
            _shift(magnitude, 1, 1),
            np.where(vertical, _shift(magnitude, 1, 0), _shift(magnitude, 1, -1)),
        ),
    )

    keep = (magnitude > 0) & (magnitude >= first) & (magnitude >= second)
    return np.where(keep, magnitude, 0.0)


def adaptive_thresholds(
    magnitude: np.ndarray,
    high_fraction: float = 0.1,
    low_ratio: float = 0.4,
) -> tuple[float, float]:
    """Derive (low, high) from the histogram of non-zero gradient magnitudes."""

    if not 0 < high_fraction < 1:
        raise ValueError("high_fraction must be in (0, 1)")
    values = magnitude[magnitude > 0]
    if values.size == 0:
        return 0.0, 0.0

    peak = float(values.max())
    bins = np.minimum((values / peak * 255.0).astype(int), 255)
    histogram = np.bincount(bins, minlength=256)

    target = high_fraction * values.size
    cumulative = 0
    high_bin = 0
    for level in range(255, -1, -1):
        cumulative += int(histogram[level])
        if cumulative >= target:
            high_bin = level
            break

    high = max(high_bin, 1) / 255.0 * peak
    return low_ratio * high, high


def hysteresis(suppressed: np.ndarray, low: float, high: float) -> np.ndarray:
    """Grow strong edges (>= high) through 8-connected weak pixels (>= low)."""

    height, width = suppressed.shape
    candidate = (suppressed > 0) & (suppressed >= low)
    strong = candidate & (suppressed >= high)

    kept = strong.copy()
    queue: deque[tuple[int, int]] = deque(
        (int(y), int(x)) for y, x in zip(*np.nonzero(strong), strict=True)
    )
    while queue:
        y, x = queue.popleft()
        for dy, dx in NEIGHBORS_8:
            ny = y + dy
            nx = x + dx
            if 0 <= ny < height and 0 <= nx < width and candidate[ny, nx] and not kept[ny, nx]:
                kept[ny, nx] = True
                queue.append((ny, nx))

    return np.where(kept, 255, 0).astype(np.uint8)


def canny(
    image: np.ndarray,
    sigma: float = 1.0,
    low_threshold: float = 10.0,
    high_threshold: float = 30.0,
    operator: str = "sobel",
    kernel_size: int = 3,
    kernels: KernelCache | None = None,
    adaptive_high_fraction: float = 0.1,
    adaptive_low_ratio: float = 0.4,
) -> CannyResult:
    smoothed = smooth(image, sigma, kernels)
    _, _, magnitude, direction = compute_gradients(smoothed, operator, kernel_size, kernels)
    suppressed = non_maximum_suppression(magnitude, direction)

    low, high = low_threshold, high_threshold
    if low <= 0 or high <= 0:
        low, high = adaptive_thresholds(magnitude, adaptive_high_fraction, adaptive_low_ratio)
    if low > high:
        low, high = high, low

    edges = hysteresis(suppressed, low, high)
    return CannyResult(
        edges=edges,
        magnitude=magnitude,
        direction=direction,
        low_threshold=low,
        high_threshold=high,
    )


def _run_pass(
    image: np.ndarray,
    edge_pass: EdgePass,
    config: EdgeDetectionConfig,
    kernels: KernelCache,
) -> np.ndarray:
    if edge_pass.method == "canny":
        return canny(
            image,
            sigma=edge_pass.sigma,
            low_threshold=edge_pass.low_threshold,
            high_threshold=edge_pass.high_threshold,
            operator=edge_pass.operator,
            kernel_size=edge_pass.kernel_size,
            kernels=kernels,
            adaptive_high_fraction=config.adaptive_high_fraction,
            adaptive_low_ratio=config.adaptive_low_ratio,
        ).edges

    smoothed = smooth(image, edge_pass.sigma, kernels)
    if edge_pass.method == "gradient":
        _, _, magnitude, _ = compute_gradients(
            smoothed, edge_pass.operator, edge_pass.kernel_size, kernels
        )
        threshold = edge_pass.high_threshold
        if threshold <= 0:
            _, threshold = adaptive_thresholds(
                magnitude, config.adaptive_high_fraction, config.adaptive_low_ratio
            )
        edges = (magnitude > 0) & (magnitude >= threshold)
        return np.where(edges, 255, 0).astype(np.uint8)

    if edge_pass.method == "laplacian":
        return laplacian_edges(smoothed, edge_pass.high_threshold)

    raise ValueError(f"unsupported edge method: {edge_pass.method}")


def detect_edges(
    image: np.ndarray,
    config: EdgeDetectionConfig | None = None,
    kernels: KernelCache | None = None,
) -> EdgeDetectionResult:
    """Run every configured pass and fuse them into one binary edge map.

    ``confidence`` holds the per-pixel fraction of passes that voted for an
    edge. An all-zero map is a valid result.
    """

    cfg = config or EdgeDetectionConfig()
    if not cfg.passes:
        raise ValueError("at least one edge pass is required")
    if cfg.fusion not in SUPPORTED_FUSION_MODES:
        raise ValueError(f"unsupported fusion mode: {cfg.fusion}")

    cache = kernels or KernelCache()
    pass_maps = tuple(_run_pass(image, edge_pass, cfg, cache) for edge_pass in cfg.passes)

    votes = np.zeros(image.shape, dtype=np.int32)
    for pass_map in pass_maps:
        votes += pass_map > 0

    pass_count = len(pass_maps)
    if cfg.fusion == "or":
        fused = votes > 0
    else:
        fused = votes * 2 > pass_count

    edge_map = np.where(fused, 255, 0).astype(np.uint8)
    return EdgeDetectionResult(
        edge_map=edge_map,
        confidence=(votes / pass_count).astype(np.float32),
        edge_pixels=int(np.count_nonzero(edge_map)),
        pass_maps=pass_maps,
    )
