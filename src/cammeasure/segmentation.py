from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from .edges import NEIGHBORS_8
from .kernels import KernelCache
from .models import BoundingBox, Region
from .morphology import MorphologyConfig, edges_to_mask, open_mask

log = logging.getLogger("cammeasure.segmentation")

_DIAGONAL = math.sqrt(2.0)


@dataclass(frozen=True)
class SegmentationConfig:
    """Configuration for marker-based region growing and region filtering."""

    min_marker_distance: float = 5.0
    max_intensity_step: float = 30.0
    min_area_fraction: float = 0.001
    max_area_fraction: float = 0.8
    min_aspect_ratio: float = 0.1
    max_aspect_ratio: float = 10.0
    min_solidity: float = 0.3
    otsu_fallback: bool = True


@dataclass(frozen=True)
class SegmentationResult:
    labels: np.ndarray
    regions: tuple[Region, ...]
    kept: tuple[Region, ...]
    markers: tuple[tuple[int, int], ...] = field(default_factory=tuple)
    source: str = "edges"


def _binary(mask: np.ndarray) -> np.ndarray:
    return np.asarray(mask) > 0


def distance_transform(mask: np.ndarray) -> np.ndarray:
    """Two-pass chamfer distance (1 axial, sqrt(2) diagonal) to the background.

    The frame outside counts as background, so a mask that fills the whole
    frame still gets finite distances.
    """

    foreground = np.pad(_binary(mask), 1, mode="constant", constant_values=False)
    height, width = foreground.shape
    distance = np.where(foreground, np.inf, 0.0)
    index = np.arange(width, dtype=np.float64)

    for y in range(1, height):
        above = distance[y - 1]
        row = np.minimum(distance[y], above + 1.0)
        row[1:] = np.minimum(row[1:], above[:-1] + _DIAGONAL)
        row[:-1] = np.minimum(row[:-1], above[1:] + _DIAGONAL)
        distance[y] = index + np.minimum.accumulate(row - index)

    for y in range(height - 2, -1, -1):
        below = distance[y + 1]
        row = np.minimum(distance[y], below + 1.0)
        row[1:] = np.minimum(row[1:], below[:-1] + _DIAGONAL)
        row[:-1] = np.minimum(row[:-1], below[1:] + _DIAGONAL)
        distance[y] = np.minimum.accumulate((row + index)[::-1])[::-1] - index

    return distance[1:-1, 1:-1]


def find_markers(
    distance: np.ndarray,
    mask: np.ndarray,
    min_distance: float = 5.0,
) -> tuple[tuple[int, int], ...]:
    """Local distance maxima above ``min_distance`` as (y, x), deepest first."""

    height, width = distance.shape
    padded = np.pad(distance, 1, mode="constant", constant_values=0.0)
    peak = _binary(mask) & (distance > min_distance)
    for dy, dx in NEIGHBORS_8:
        peak &= distance >= padded[1 + dy : 1 + dy + height, 1 + dx : 1 + dx + width]

    ys, xs = np.nonzero(peak)
    if ys.size == 0:
        return ()
    order = np.lexsort((xs, ys, -distance[ys, xs]))
    return tuple((int(ys[i]), int(xs[i])) for i in order)


def grow_regions(
    mask: np.ndarray,
    intensity: np.ndarray,
    markers: Sequence[tuple[int, int]],
    max_step: float = 30.0,
) -> np.ndarray:
    """Grow one label per marker through foreground with bounded intensity steps.

    Markers are processed in the given order; a marker already covered by an
    earlier region is skipped. Without markers every foreground pixel gets
    label 1.
    """

    foreground = _binary(mask)
    height, width = foreground.shape
    if not markers:
        return np.where(foreground, 1, 0).astype(np.int32)

    inside = foreground.ravel().tolist()
    values = np.asarray(intensity, dtype=np.float64).ravel().tolist()
    labels = [0] * (height * width)

    next_label = 0
    for marker_y, marker_x in markers:
        start = marker_y * width + marker_x
        if not inside[start] or labels[start]:
            continue
        next_label += 1
        labels[start] = next_label
        queue: deque[int] = deque([start])
        while queue:
            index = queue.popleft()
            y, x = divmod(index, width)
            base = values[index]
            for dy, dx in NEIGHBORS_8:
                ny = y + dy
                nx = x + dx
                if not (0 <= ny < height and 0 <= nx < width):
                    continue
                neighbor = ny * width + nx
                if inside[neighbor] and not labels[neighbor] and abs(values[neighbor] - base) <= max_step:
                    labels[neighbor] = next_label
                    queue.append(neighbor)

    return np.asarray(labels, dtype=np.int32).reshape(height, width)


def label_components(labels: np.ndarray) -> tuple[np.ndarray, tuple[Region, ...]]:
    """Split a label map into 8-connected components of equal label.

    Returns the component map (0 = unlabelled) and one ``Region`` per
    component in raster order of first pixel.
    """

    height, width = labels.shape
    source = np.asarray(labels).ravel().tolist()
    components = [0] * (height * width)
    regions: list[Region] = []

    for start in range(height * width):
        label = source[start]
        if label == 0 or components[start]:
            continue

        component_id = len(regions) + 1
        components[start] = component_id
        queue: deque[int] = deque([start])
        count = 0
        sum_x = 0
        sum_y = 0
        min_x = min_y = None
        max_x = max_y = 0
        while queue:
            index = queue.popleft()
            y, x = divmod(index, width)
            count += 1
            sum_x += x
            sum_y += y
            min_x = x if min_x is None else min(min_x, x)
            min_y = y if min_y is None else min(min_y, y)
            max_x = max(max_x, x)
            max_y = max(max_y, y)
            for dy, dx in NEIGHBORS_8:
                ny = y + dy
                nx = x + dx
                if not (0 <= ny < height and 0 <= nx < width):
                    continue
                neighbor = ny * width + nx
                if source[neighbor] == label and not components[neighbor]:
                    components[neighbor] = component_id
                    queue.append(neighbor)

        regions.append(
            Region(
                id=component_id,
                pixel_count=count,
                bounding_box=BoundingBox(
                    x=min_x,
                    y=min_y,
                    width=max_x - min_x + 1,
                    height=max_y - min_y + 1,
                ),
                centroid=(sum_x / count, sum_y / count),
            )
        )

    return np.asarray(components, dtype=np.int32).reshape(height, width), tuple(regions)


def filter_regions(
    regions: Sequence[Region],
    width: int,
    height: int,
    config: SegmentationConfig | None = None,
) -> tuple[Region, ...]:
    cfg = config or SegmentationConfig()
    image_area = width * height
    min_area = cfg.min_area_fraction * image_area
    max_area = cfg.max_area_fraction * image_area

    kept: list[Region] = []
    for region in regions:
        if region.pixel_count < min_area or region.pixel_count > max_area:
            continue
        aspect = region.bounding_box.aspect_ratio
        if aspect < cfg.min_aspect_ratio or aspect > cfg.max_aspect_ratio:
            continue
        if region.solidity < cfg.min_solidity:
            continue
        kept.append(region)
    return tuple(kept)


def otsu_threshold(gray: np.ndarray) -> int | None:
    """Return the Otsu level, or ``None`` when the frame holds a single level."""

    histogram = np.bincount(np.asarray(gray, dtype=np.uint8).ravel(), minlength=256).astype(np.float64)
    if np.count_nonzero(histogram) < 2:
        return None

    total = histogram.sum()
    levels = np.arange(256, dtype=np.float64)
    omega = np.cumsum(histogram) / total
    mu = np.cumsum(histogram * levels) / total
    mu_total = mu[-1]

    denominator = omega * (1.0 - omega)
    between = np.zeros(256, dtype=np.float64)
    valid = denominator > 0
    between[valid] = (mu_total * omega[valid] - mu[valid]) ** 2 / denominator[valid]
    return int(np.argmax(between))


def otsu_mask(gray: np.ndarray) -> np.ndarray:
    """Otsu foreground whose polarity touches the frame border least."""

    threshold = otsu_threshold(gray)
    if threshold is None:
        return np.zeros(gray.shape, dtype=np.uint8)

    bright = np.asarray(gray) > threshold
    border = np.concatenate([bright[0, :], bright[-1, :], bright[:, 0], bright[:, -1]])
    bright_on_border = int(np.count_nonzero(border))
    foreground = bright if bright_on_border * 2 <= border.size else ~bright
    return np.where(foreground, 255, 0).astype(np.uint8)


def segment(
    mask: np.ndarray,
    intensity: np.ndarray,
    config: SegmentationConfig | None = None,
    source: str = "edges",
) -> SegmentationResult:
    cfg = config or SegmentationConfig()
    height, width = mask.shape
    distance = distance_transform(mask)
    markers = find_markers(distance, mask, cfg.min_marker_distance)
    growth = grow_regions(mask, intensity, markers, cfg.max_intensity_step)
    labels, regions = label_components(growth)
    kept = filter_regions(regions, width, height, cfg)
    log.debug(
        "segmented %s mask: markers=%d regions=%d kept=%d",
        source,
        len(markers),
        len(regions),
        len(kept),
    )
    return SegmentationResult(
        labels=labels,
        regions=regions,
        kept=kept,
        markers=markers,
        source=source,
    )


def segment_frame(
    edge_map: np.ndarray,
    intensity: np.ndarray,
    morphology: MorphologyConfig | None = None,
    config: SegmentationConfig | None = None,
    kernels: KernelCache | None = None,
) -> SegmentationResult:
    """Segment from the edge map, retrying on an Otsu mask when nothing survives."""

    cfg = config or SegmentationConfig()
    morph = morphology or MorphologyConfig()
    result = segment(edges_to_mask(edge_map, morph, kernels), intensity, cfg)
    if result.kept or not cfg.otsu_fallback:
        return result

    fallback_mask = otsu_mask(intensity)
    if not fallback_mask.any():
        return result
    if morph.open_size > 1:
        fallback_mask = open_mask(fallback_mask, morph.open_size, morph.element_shape, kernels)
    log.debug("no region survived filtering; retrying with Otsu mask")
    return segment(fallback_mask, intensity, cfg, source="otsu")
