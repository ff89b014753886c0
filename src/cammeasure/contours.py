from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from .models import Contour, Region

Point = tuple[float, float]

# Clockwise from north in image coordinates (y grows downwards), as (dx, dy).
MOORE_DIRECTIONS: tuple[tuple[int, int], ...] = (
    (0, -1),
    (1, -1),
    (1, 0),
    (1, 1),
    (0, 1),
    (-1, 1),
    (-1, 0),
    (-1, -1),
)

_HU_ZERO = 1e-20


@dataclass(frozen=True)
class ContourConfig:
    """Configuration for boundary tracing and polygon simplification."""

    epsilon: float = 1.5
    max_points: int = 10000
    min_trace_points: int = 3


def trace_boundary(mask: np.ndarray, max_points: int = 10000) -> tuple[list[tuple[int, int]], bool]:
    """Moore-neighbour trace of the outer boundary of the first foreground blob.

    Starts at the top-most, left-most foreground pixel heading north and, at
    every step, scans clockwise starting one quarter turn left of the current
    heading. Returns the ordered (x, y) pixels and whether the trace returned
    to its seed.
    """

    if max_points < 1:
        raise ValueError("max_points must be positive")

    foreground = np.asarray(mask) > 0
    ys, xs = np.nonzero(foreground)
    if ys.size == 0:
        return [], False

    height, width = foreground.shape
    seed = (int(xs[0]), int(ys[0]))
    points = [seed]
    visited = {seed}
    current = seed
    heading = 0

    while len(points) < max_points:
        step = None
        for turn in range(8):
            direction = (heading + 6 + turn) % 8
            dx, dy = MOORE_DIRECTIONS[direction]
            nx = current[0] + dx
            ny = current[1] + dy
            if not (0 <= nx < width and 0 <= ny < height) or not foreground[ny, nx]:
                continue
            candidate = (nx, ny)
            if candidate == seed:
                if len(points) >= 3:
                    return points, True
                continue
            if candidate in visited:
                continue
            step = (candidate, direction)
            break

        if step is None:
            return points, False

        current, heading = step
        points.append(current)
        visited.add(current)

    return points, False


def _point_segment_distance(point: Point, start: Point, end: Point) -> float:
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    length = math.hypot(dx, dy)
    if length == 0:
        return math.hypot(point[0] - start[0], point[1] - start[1])
    return abs(dy * (point[0] - start[0]) - dx * (point[1] - start[1])) / length


def _simplify_chain(points: Sequence[Point], epsilon: float) -> list[Point]:
    count = len(points)
    if count < 3:
        return list(points)

    keep = [False] * count
    keep[0] = True
    keep[-1] = True
    stack = [(0, count - 1)]
    while stack:
        start, end = stack.pop()
        farthest = -1
        max_distance = -1.0
        for index in range(start + 1, end):
            distance = _point_segment_distance(points[index], points[start], points[end])
            if distance > max_distance:
                max_distance = distance
                farthest = index
        if farthest > 0 and max_distance > epsilon:
            keep[farthest] = True
            stack.append((start, farthest))
            stack.append((farthest, end))

    return [point for point, flag in zip(points, keep, strict=True) if flag]


def simplify_polygon(points: Sequence[Point], epsilon: float = 1.5, closed: bool = True) -> list[Point]:
    """Douglas-Peucker simplification.

    A closed polygon is split at its first point and the point farthest from
    it, and both chains are simplified separately.
    """

    if epsilon < 0:
        raise ValueError("epsilon must be non-negative")
    pts = [(float(x), float(y)) for x, y in points]
    if len(pts) < 3:
        return pts
    if not closed:
        return _simplify_chain(pts, epsilon)

    origin = pts[0]
    split = 0
    max_distance = -1.0
    for index, point in enumerate(pts):
        distance = math.hypot(point[0] - origin[0], point[1] - origin[1])
        if distance > max_distance:
            max_distance = distance
            split = index
    if split == 0:
        return [origin]

    first = _simplify_chain(pts[: split + 1], epsilon)
    second = _simplify_chain(pts[split:] + [origin], epsilon)
    return first[:-1] + second[:-1]


def polygon_area(points: Sequence[Point]) -> float:
    if len(points) < 3:
        return 0.0
    xs = np.asarray([p[0] for p in points], dtype=np.float64)
    ys = np.asarray([p[1] for p in points], dtype=np.float64)
    return float(abs(np.dot(xs, np.roll(ys, -1)) - np.dot(ys, np.roll(xs, -1))) / 2.0)


def polygon_perimeter(points: Sequence[Point], closed: bool = True) -> float:
    if len(points) < 2:
        return 0.0
    total = 0.0
    for index in range(1, len(points)):
        total += math.dist(points[index - 1], points[index])
    if closed:
        total += math.dist(points[-1], points[0])
    return total


def _cross(origin: Point, a: Point, b: Point) -> float:
    return (a[0] - origin[0]) * (b[1] - origin[1]) - (a[1] - origin[1]) * (b[0] - origin[0])


def convex_hull(points: Sequence[Point]) -> list[Point]:
    """Graham scan; collinear boundary points are dropped."""

    unique = sorted({(float(x), float(y)) for x, y in points})
    if len(unique) < 3:
        return unique

    pivot = min(unique, key=lambda p: (p[1], p[0]))
    rest = [p for p in unique if p != pivot]
    rest.sort(
        key=lambda p: (
            math.atan2(p[1] - pivot[1], p[0] - pivot[0]),
            (p[0] - pivot[0]) ** 2 + (p[1] - pivot[1]) ** 2,
        )
    )

    hull = [pivot]
    for point in rest:
        while len(hull) >= 2 and _cross(hull[-2], hull[-1], point) <= 0:
            hull.pop()
        hull.append(point)
    return hull


def _raw_moments(points: Sequence[Point]) -> dict[str, float]:
    x0 = np.asarray([p[0] for p in points], dtype=np.float64)
    y0 = np.asarray([p[1] for p in points], dtype=np.float64)
    x1 = np.roll(x0, -1)
    y1 = np.roll(y0, -1)
    a = x0 * y1 - x1 * y0

    moments = {
        "m00": a.sum() / 2.0,
        "m10": (a * (x0 + x1)).sum() / 6.0,
        "m01": (a * (y0 + y1)).sum() / 6.0,
        "m20": (a * (x0 * x0 + x0 * x1 + x1 * x1)).sum() / 12.0,
        "m02": (a * (y0 * y0 + y0 * y1 + y1 * y1)).sum() / 12.0,
        "m11": (a * (2 * x0 * y0 + x0 * y1 + x1 * y0 + 2 * x1 * y1)).sum() / 24.0,
        "m30": (a * (x0**3 + x0 * x0 * x1 + x0 * x1 * x1 + x1**3)).sum() / 20.0,
        "m03": (a * (y0**3 + y0 * y0 * y1 + y0 * y1 * y1 + y1**3)).sum() / 20.0,
        "m21": (
            a * (x0 * x0 * (3 * y0 + y1) + 2 * x0 * x1 * (y0 + y1) + x1 * x1 * (y0 + 3 * y1))
        ).sum()
        / 60.0,
        "m12": (
            a * (y0 * y0 * (3 * x0 + x1) + 2 * y0 * y1 * (x0 + x1) + y1 * y1 * (x0 + 3 * x1))
        ).sum()
        / 60.0,
    }
    # Clockwise vertex order flips every sign.
    orientation = -1.0 if moments["m00"] < 0 else 1.0
    return {key: float(value) * orientation for key, value in moments.items()}


def _log_scale(value: float) -> float:
    if abs(value) < _HU_ZERO:
        return 0.0
    return -math.copysign(1.0, value) * math.log10(abs(value))


def hu_moments(points: Sequence[Point]) -> tuple[float, ...]:
    """Seven log-scaled Hu invariants of a polygon."""

    if len(points) < 3:
        return (0.0,) * 7
    m = _raw_moments(points)
    m00 = m["m00"]
    if m00 <= 0:
        return (0.0,) * 7

    cx = m["m10"] / m00
    cy = m["m01"] / m00
    mu20 = m["m20"] - cx * m["m10"]
    mu02 = m["m02"] - cy * m["m01"]
    mu11 = m["m11"] - cx * m["m01"]
    mu30 = m["m30"] - 3 * cx * m["m20"] + 2 * cx * cx * m["m10"]
    mu03 = m["m03"] - 3 * cy * m["m02"] + 2 * cy * cy * m["m01"]
    mu21 = m["m21"] - 2 * cx * m["m11"] - cy * m["m20"] + 2 * cx * cx * m["m01"]
    mu12 = m["m12"] - 2 * cy * m["m11"] - cx * m["m02"] + 2 * cy * cy * m["m10"]

    second = m00**2.0
    third = m00**2.5
    n20 = mu20 / second
    n02 = mu02 / second
    n11 = mu11 / second
    n30 = mu30 / third
    n03 = mu03 / third
    n21 = mu21 / third
    n12 = mu12 / third

    a = n30 + n12
    b = n21 + n03
    h1 = n20 + n02
    h2 = (n20 - n02) ** 2 + 4 * n11 * n11
    h3 = (n30 - 3 * n12) ** 2 + (3 * n21 - n03) ** 2
    h4 = a * a + b * b
    h5 = (n30 - 3 * n12) * a * (a * a - 3 * b * b) + (3 * n21 - n03) * b * (3 * a * a - b * b)
    h6 = (n20 - n02) * (a * a - b * b) + 4 * n11 * a * b
    h7 = (3 * n21 - n03) * a * (a * a - 3 * b * b) - (n30 - 3 * n12) * b * (3 * a * a - b * b)
    return tuple(_log_scale(value) for value in (h1, h2, h3, h4, h5, h6, h7))


def build_contour(
    points: Sequence[Point],
    region: Region | None = None,
    closed: bool = True,
) -> Contour:
    pts = tuple((float(x), float(y)) for x, y in points)
    area = polygon_area(pts)
    perimeter = polygon_perimeter(pts, closed=True)
    circularity = min(1.0, 4.0 * math.pi * area / (perimeter * perimeter)) if perimeter > 0 else 0.0

    hull_area = polygon_area(convex_hull(pts))
    solidity = min(1.0, area / hull_area) if hull_area > 0 else 0.0

    if pts:
        xs = [p[0] for p in pts]
        ys = [p[1] for p in pts]
        extent_x = max(xs) - min(xs)
        extent_y = max(ys) - min(ys)
        aspect_ratio = extent_x / extent_y if extent_y > 0 else 0.0
    else:
        aspect_ratio = 0.0

    if region is not None and region.pixel_count > 0 and area > 0:
        agreement = 1.0 - abs(area - region.pixel_count) / max(area, float(region.pixel_count))
    else:
        agreement = solidity
    confidence = 0.6 * solidity + 0.4 * agreement
    if not closed:
        confidence *= 0.5

    return Contour(
        points=pts,
        area=area,
        perimeter=perimeter,
        circularity=circularity,
        solidity=solidity,
        aspect_ratio=aspect_ratio,
        hu_moments=hu_moments(pts),
        confidence=max(0.0, min(1.0, confidence)),
        region_id=region.id if region is not None else None,
        closed=closed,
    )


def extract_contours(
    labels: np.ndarray,
    regions: Sequence[Region],
    config: ContourConfig | None = None,
) -> tuple[Contour, ...]:
    """Trace, simplify and measure the outer boundary of every region."""

    cfg = config or ContourConfig()
    contours: list[Contour] = []
    for region in regions:
        box = region.bounding_box
        window = labels[box.y : box.y + box.height, box.x : box.x + box.width] == region.id
        window = np.pad(window, 1, mode="constant", constant_values=False)

        traced, closed = trace_boundary(window, cfg.max_points)
        if len(traced) < max(3, cfg.min_trace_points):
            continue

        offset = [(x + box.x - 1, y + box.y - 1) for x, y in traced]
        simplified = simplify_polygon(offset, cfg.epsilon, closed=True)
        if len(simplified) < 3:
            continue
        contours.append(build_contour(simplified, region, closed))
    return tuple(contours)
