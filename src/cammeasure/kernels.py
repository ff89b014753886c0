from __future__ import annotations

import numpy as np

SUPPORTED_ELEMENT_SHAPES = ("disk", "cross")
SUPPORTED_GRADIENT_OPERATORS = ("sobel", "scharr")

# Smoothing taps are normalised to unit sum and derivative taps so that a unit
# intensity ramp produces a response of 2, matching a central difference.
_GRADIENT_TAPS: dict[tuple[str, int], tuple[tuple[float, ...], tuple[float, ...]]] = {
    ("sobel", 3): ((1.0, 2.0, 1.0), (-1.0, 0.0, 1.0)),
    ("sobel", 5): ((1.0, 4.0, 6.0, 4.0, 1.0), (-1.0, -2.0, 0.0, 2.0, 1.0)),
    ("scharr", 3): ((3.0, 10.0, 3.0), (-1.0, 0.0, 1.0)),
}


def round_odd(value: float, minimum: int = 3) -> int:
    size = int(round(value))
    if size % 2 == 0:
        size += 1
    return max(minimum, size)


def _frozen(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


class KernelCache:
    """Precomputed kernel tables keyed by (shape, size, sigma).

    Owned by one pipeline instance; the cached arrays are read-only so they can
    be shared between runs.
    """

    def __init__(self) -> None:
        self._tables: dict[tuple[str, int, float], np.ndarray] = {}

    def __len__(self) -> int:
        return len(self._tables)

    def gaussian(self, sigma: float) -> np.ndarray:
        if sigma <= 0:
            raise ValueError("sigma must be positive")
        size = round_odd(6.0 * sigma)
        key = ("gaussian", size, float(sigma))
        kernel = self._tables.get(key)
        if kernel is None:
            radius = size // 2
            offsets = np.arange(-radius, radius + 1, dtype=np.float64)
            kernel = np.exp(-(offsets**2) / (2.0 * sigma * sigma))
            kernel /= kernel.sum()
            kernel = _frozen(kernel)
            self._tables[key] = kernel
        return kernel

    def structuring_element(self, shape: str, size: int) -> np.ndarray:
        if shape not in SUPPORTED_ELEMENT_SHAPES:
            raise ValueError(f"unsupported structuring element: {shape}")
        if size < 1 or size % 2 == 0:
            raise ValueError("structuring element size must be a positive odd integer")

        key = (shape, size, 0.0)
        element = self._tables.get(key)
        if element is None:
            radius = size // 2
            ys, xs = np.mgrid[-radius : radius + 1, -radius : radius + 1]
            if shape == "disk":
                element = xs * xs + ys * ys <= radius * radius
            else:
                element = (xs == 0) | (ys == 0)
            element = _frozen(element.astype(bool))
            self._tables[key] = element
        return element

    def gradient_taps(self, operator: str, size: int) -> tuple[np.ndarray, np.ndarray]:
        """Return (smoothing, derivative) 1-D taps for a separable operator."""

        if (operator, size) not in _GRADIENT_TAPS:
            raise ValueError(f"unsupported gradient operator: {operator} {size}x{size}")

        smooth_key = (f"{operator}_smooth", size, 0.0)
        deriv_key = (f"{operator}_deriv", size, 0.0)
        if smooth_key not in self._tables:
            smooth_taps, deriv_taps = _GRADIENT_TAPS[(operator, size)]
            smooth = np.asarray(smooth_taps, dtype=np.float64)
            smooth /= smooth.sum()
            deriv = np.asarray(deriv_taps, dtype=np.float64)
            ramp_response = float(np.sum(deriv * np.arange(len(deriv))))
            deriv *= 2.0 / ramp_response
            self._tables[smooth_key] = _frozen(smooth)
            self._tables[deriv_key] = _frozen(deriv)
        return self._tables[smooth_key], self._tables[deriv_key]
