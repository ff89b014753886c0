from __future__ import annotations

from collections import deque
from dataclasses import dataclass

import numpy as np

from .kernels import KernelCache


@dataclass(frozen=True)
class MorphologyConfig:
    """Configuration for turning an edge map into a filled foreground mask."""

    close_size: int = 5
    open_size: int = 0
    element_shape: str = "disk"
    fill_holes: bool = True


def _binary(mask: np.ndarray) -> np.ndarray:
    return np.asarray(mask) > 0


def _to_mask(values: np.ndarray) -> np.ndarray:
    return np.where(values, 255, 0).astype(np.uint8)


def _offsets(element: np.ndarray) -> list[tuple[int, int]]:
    radius = element.shape[0] // 2
    return [(int(dy) - radius, int(dx) - radius) for dy, dx in zip(*np.nonzero(element), strict=True)]


def dilate(
    mask: np.ndarray,
    size: int = 3,
    shape: str = "disk",
    kernels: KernelCache | None = None,
) -> np.ndarray:
    cache = kernels or KernelCache()
    element = cache.structuring_element(shape, size)
    radius = size // 2
    source = np.pad(_binary(mask), radius, mode="constant", constant_values=False)
    height, width = mask.shape

    result = np.zeros((height, width), dtype=bool)
    for dy, dx in _offsets(element):
        result |= source[radius + dy : radius + dy + height, radius + dx : radius + dx + width]
    return _to_mask(result)


def erode(
    mask: np.ndarray,
    size: int = 3,
    shape: str = "disk",
    kernels: KernelCache | None = None,
) -> np.ndarray:
    """Erode with the frame outside treated as foreground."""

    cache = kernels or KernelCache()
    element = cache.structuring_element(shape, size)
    radius = size // 2
    source = np.pad(_binary(mask), radius, mode="constant", constant_values=True)
    height, width = mask.shape

    result = np.ones((height, width), dtype=bool)
    for dy, dx in _offsets(element):
        result &= source[radius + dy : radius + dy + height, radius + dx : radius + dx + width]
    return _to_mask(result)


def close_mask(
    mask: np.ndarray,
    size: int = 5,
    shape: str = "disk",
    kernels: KernelCache | None = None,
) -> np.ndarray:
    return erode(dilate(mask, size, shape, kernels), size, shape, kernels)


def open_mask(
    mask: np.ndarray,
    size: int = 3,
    shape: str = "disk",
    kernels: KernelCache | None = None,
) -> np.ndarray:
    return dilate(erode(mask, size, shape, kernels), size, shape, kernels)


def fill_holes(mask: np.ndarray) -> np.ndarray:
    """Fill background pockets that cannot be reached from the frame border.

    Background is flooded with 4-connectivity so that 8-connected outlines
    enclose their interior.
    """

    foreground = _binary(mask)
    height, width = foreground.shape
    background = (~foreground).ravel().tolist()
    reached = bytearray(height * width)

    queue: deque[int] = deque()
    border = set(range(width))
    border.update(range((height - 1) * width, height * width))
    border.update(row * width for row in range(height))
    border.update(row * width + width - 1 for row in range(height))
    for index in sorted(border):
        if background[index]:
            reached[index] = 1
            queue.append(index)

    while queue:
        index = queue.popleft()
        y, x = divmod(index, width)
        neighbors = []
        if x > 0:
            neighbors.append(index - 1)
        if x < width - 1:
            neighbors.append(index + 1)
        if y > 0:
            neighbors.append(index - width)
        if y < height - 1:
            neighbors.append(index + width)
        for neighbor in neighbors:
            if background[neighbor] and not reached[neighbor]:
                reached[neighbor] = 1
                queue.append(neighbor)

    outside = np.frombuffer(bytes(reached), dtype=np.uint8).reshape(height, width) > 0
    return _to_mask(~outside)


def edges_to_mask(
    edge_map: np.ndarray,
    config: MorphologyConfig | None = None,
    kernels: KernelCache | None = None,
) -> np.ndarray:
    """Close gaps in an edge map, fill enclosed interiors and optionally open."""

    cfg = config or MorphologyConfig()
    mask = _to_mask(_binary(edge_map))
    if cfg.close_size > 1:
        mask = close_mask(mask, cfg.close_size, cfg.element_shape, kernels)
    if cfg.fill_holes:
        mask = fill_holes(mask)
    if cfg.open_size > 1:
        mask = open_mask(mask, cfg.open_size, cfg.element_shape, kernels)
    return mask
