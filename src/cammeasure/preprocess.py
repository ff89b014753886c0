from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .errors import InvalidInputError
from .kernels import KernelCache
from .models import FrameBuffer

LUMINANCE_WEIGHTS: dict[str, tuple[float, float, float]] = {
    "bt709": (0.2126, 0.7152, 0.0722),
    "bt601": (0.299, 0.587, 0.114),
}


@dataclass(frozen=True)
class PreprocessConfig:
    """Configuration for grayscale conversion, contrast enhancement and denoising."""

    luminance: str = "bt709"
    enable_clahe: bool = True
    clahe_clip_limit: float = 4.0
    clahe_tile_grid: tuple[int, int] = (8, 8)
    denoise_sigma: float = 0.8
    bilateral: bool = False
    bilateral_diameter: int = 5
    bilateral_sigma_color: float = 25.0
    bilateral_sigma_space: float = 2.0


@dataclass(frozen=True)
class PreprocessedFrame:
    """Frame-local intermediate buffers, all HxW."""

    gray: np.ndarray
    enhanced: np.ndarray
    denoised: np.ndarray

    @property
    def shape(self) -> tuple[int, int]:
        return self.gray.shape


def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def to_grayscale(rgba: np.ndarray, weights: str = "bt709") -> np.ndarray:
    if weights not in LUMINANCE_WEIGHTS:
        raise ValueError(f"unsupported luminance weights: {weights}")
    if rgba.ndim != 3 or rgba.shape[2] < 3:
        raise InvalidInputError("expected an HxWx4 RGBA array")

    w_r, w_g, w_b = LUMINANCE_WEIGHTS[weights]
    channels = rgba.astype(np.float64)
    luma = w_r * channels[:, :, 0] + w_g * channels[:, :, 1] + w_b * channels[:, :, 2]
    return _to_uint8(luma)


def correlate_1d(image: np.ndarray, taps: np.ndarray, axis: int) -> np.ndarray:
    """Correlate along one axis with edge-replicated borders."""

    radius = len(taps) // 2
    pad_width = [(0, 0), (0, 0)]
    pad_width[axis] = (radius, radius)
    padded = np.pad(image.astype(np.float64, copy=False), pad_width, mode="edge")

    length = image.shape[axis]
    result = np.zeros(image.shape, dtype=np.float64)
    for index, tap in enumerate(taps):
        if tap == 0:
            continue
        window = [slice(None), slice(None)]
        window[axis] = slice(index, index + length)
        result += tap * padded[tuple(window)]
    return result


def correlate_separable(image: np.ndarray, row_taps: np.ndarray, col_taps: np.ndarray) -> np.ndarray:
    """Apply ``row_taps`` along x then ``col_taps`` along y."""

    return correlate_1d(correlate_1d(image, row_taps, axis=1), col_taps, axis=0)


def smooth(image: np.ndarray, sigma: float, kernels: KernelCache | None = None) -> np.ndarray:
    """Separable Gaussian smoothing returning float64 samples."""

    if sigma <= 0:
        return image.astype(np.float64)
    cache = kernels or KernelCache()
    taps = cache.gaussian(sigma)
    return correlate_separable(image, taps, taps)


def gaussian_blur(gray: np.ndarray, sigma: float, kernels: KernelCache | None = None) -> np.ndarray:
    return _to_uint8(smooth(gray, sigma, kernels))


def bilateral_filter(
    gray: np.ndarray,
    diameter: int = 5,
    sigma_color: float = 25.0,
    sigma_space: float = 2.0,
) -> np.ndarray:
    """Edge-preserving smoothing with spatial x range Gaussian weights."""

    if diameter < 1:
        raise ValueError("diameter must be positive")
    if sigma_color <= 0 or sigma_space <= 0:
        raise ValueError("bilateral sigmas must be positive")

    radius = diameter // 2
    height, width = gray.shape
    source = gray.astype(np.float64)
    padded = np.pad(source, radius, mode="edge")

    weighted_sum = np.zeros_like(source)
    weight_total = np.zeros_like(source)
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            distance_sq = dx * dx + dy * dy
            if distance_sq > radius * radius:
                continue
            spatial = np.exp(-distance_sq / (2.0 * sigma_space * sigma_space))
            shifted = padded[radius + dy : radius + dy + height, radius + dx : radius + dx + width]
            difference = shifted - source
            weight = spatial * np.exp(-(difference * difference) / (2.0 * sigma_color * sigma_color))
            weighted_sum += weight * shifted
            weight_total += weight

    return _to_uint8(weighted_sum / weight_total)


def _tile_edges(length: int, tiles: int) -> np.ndarray:
    return np.linspace(0, length, tiles + 1).round().astype(int)


def _interpolation_axis(edges: np.ndarray, length: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    tiles = len(edges) - 1
    centers = (edges[:-1] + edges[1:] - 1) / 2.0
    position = np.interp(np.arange(length), centers, np.arange(tiles, dtype=np.float64))
    lower = np.floor(position).astype(int)
    upper = np.minimum(lower + 1, tiles - 1)
    weight = position - lower
    return lower, upper, weight


def apply_clahe(
    gray: np.ndarray,
    clip_limit: float = 4.0,
    tile_grid: tuple[int, int] = (8, 8),
) -> np.ndarray:
    """Contrast limited adaptive histogram equalisation.

    The frame is partitioned into ``tile_grid`` (rows, cols) tiles. Each tile
    gets a clipped-histogram CDF look-up table; every output pixel blends the
    tables of the four nearest tile centres bilinearly so tile borders do not
    show seams.
    """

    if gray.ndim != 2:
        raise InvalidInputError("CLAHE expects a 2-D grayscale buffer")
    tiles_y = max(1, min(int(tile_grid[0]), gray.shape[0]))
    tiles_x = max(1, min(int(tile_grid[1]), gray.shape[1]))
    height, width = gray.shape

    y_edges = _tile_edges(height, tiles_y)
    x_edges = _tile_edges(width, tiles_x)

    luts = np.empty((tiles_y, tiles_x, 256), dtype=np.float64)
    for ty in range(tiles_y):
        for tx in range(tiles_x):
            tile = gray[y_edges[ty] : y_edges[ty + 1], x_edges[tx] : x_edges[tx + 1]]
            count = tile.size
            histogram = np.bincount(tile.ravel(), minlength=256).astype(np.float64)
            if clip_limit > 0:
                limit = clip_limit * count / 256.0
                excess = float(np.maximum(histogram - limit, 0.0).sum())
                histogram = np.minimum(histogram, limit) + excess / 256.0
            luts[ty, tx] = np.cumsum(histogram) * 255.0 / count

    y_lo, y_hi, y_w = _interpolation_axis(y_edges, height)
    x_lo, x_hi, x_w = _interpolation_axis(x_edges, width)

    rows_lo = y_lo[:, None]
    rows_hi = y_hi[:, None]
    wy = y_w[:, None]
    wx = x_w[None, :]

    top = luts[rows_lo, x_lo[None, :], gray] * (1.0 - wx) + luts[rows_lo, x_hi[None, :], gray] * wx
    bottom = luts[rows_hi, x_lo[None, :], gray] * (1.0 - wx) + luts[rows_hi, x_hi[None, :], gray] * wx
    return _to_uint8(top * (1.0 - wy) + bottom * wy)


def preprocess_frame(
    frame: FrameBuffer,
    config: PreprocessConfig | None = None,
    kernels: KernelCache | None = None,
) -> PreprocessedFrame:
    if not isinstance(frame, FrameBuffer):
        raise InvalidInputError("frame must be a FrameBuffer")

    cfg = config or PreprocessConfig()
    gray = to_grayscale(frame.as_array(), cfg.luminance)

    enhanced = gray
    if cfg.enable_clahe:
        enhanced = apply_clahe(gray, cfg.clahe_clip_limit, cfg.clahe_tile_grid)

    if cfg.bilateral:
        denoised = bilateral_filter(
            enhanced,
            diameter=cfg.bilateral_diameter,
            sigma_color=cfg.bilateral_sigma_color,
            sigma_space=cfg.bilateral_sigma_space,
        )
    elif cfg.denoise_sigma > 0:
        denoised = gaussian_blur(enhanced, cfg.denoise_sigma, kernels)
    else:
        denoised = enhanced

    return PreprocessedFrame(gray=gray, enhanced=enhanced, denoised=denoised)
