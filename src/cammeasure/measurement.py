from __future__ import annotations

import math
from dataclasses import dataclass

from .models import (
    CalibrationData,
    Contour,
    DepthEstimate,
    DetectedObject,
    Dimensions,
    GeometricProperties,
    Region,
)


@dataclass(frozen=True)
class MeasurementConfig:
    """Configuration for calibrated measurement and the confidence blend."""

    estimate_depth: bool = True
    algorithm_uncertainty: float = 0.15
    calibrated_confidence: float = 0.9
    heuristic_confidence: float = 0.3
    contour_weight: float = 0.5
    calibration_weight: float = 0.3
    algorithm_weight: float = 0.2
    max_confidence: float = 0.99


def scale_factor(calibration: CalibrationData) -> tuple[float, str]:
    """Return (units per pixel, unit label) for ``calibration``."""

    if calibration.is_calibrated:
        return 1.0 / float(calibration.pixels_per_mm), "mm"
    return 1.0, "px"


def estimate_distance_mm(average_size_mm: float) -> float:
    """Camera distance guess from the apparent size of a calibrated object."""

    if average_size_mm < 10:
        return 600.0
    if average_size_mm < 25:
        return 400.0
    if average_size_mm < 50:
        return 250.0
    if average_size_mm < 100:
        return 150.0
    return 100.0


def estimate_depth(
    dimensions: Dimensions,
    circularity: float,
    solidity: float,
    calibrated: bool,
) -> DepthEstimate:
    """Single-view depth, volume and surface area.

    The silhouette is treated as a uniform extrusion whose depth is a fraction
    of its smaller side. This is a heuristic, not a reconstruction.
    """

    width = dimensions.width
    height = dimensions.height
    ratio = width / height if height > 0 else 1.0
    if ratio > 1.5:
        depth_factor = 0.2
    elif ratio < 0.7:
        depth_factor = 0.4
    else:
        depth_factor = 0.35
    depth = min(width, height) * depth_factor

    if circularity >= 0.85:
        shape_factor = math.pi / 4.0
    elif 0.9 <= ratio <= 1.1 and solidity >= 0.9:
        shape_factor = 1.0
    else:
        shape_factor = 0.7

    volume = width * height * depth * shape_factor
    surface_area = 2.0 * dimensions.area + dimensions.perimeter * depth

    distance = None
    if calibrated:
        distance = estimate_distance_mm((width + height) / 2.0)

    return DepthEstimate(
        depth=depth,
        volume=volume,
        surface_area=surface_area,
        unit=dimensions.unit,
        method="monocular" if calibrated else "estimated",
        confidence=0.85 if calibrated else 0.6,
        estimated_distance_mm=distance,
    )


def measurement_confidence(
    contour_confidence: float,
    calibrated: bool,
    config: MeasurementConfig | None = None,
) -> float:
    cfg = config or MeasurementConfig()
    calibration_term = cfg.calibrated_confidence if calibrated else cfg.heuristic_confidence
    confidence = (
        cfg.contour_weight * contour_confidence
        + cfg.calibration_weight * calibration_term
        + cfg.algorithm_weight * (1.0 - cfg.algorithm_uncertainty)
    )
    return max(0.0, min(cfg.max_confidence, confidence))


def measure_object(
    region: Region,
    contour: Contour,
    calibration: CalibrationData,
    config: MeasurementConfig | None = None,
    object_id: str | None = None,
    strategy: str = "geometric",
) -> DetectedObject:
    """Convert one region and its contour into a ``DetectedObject``.

    Width and height come from the region bounding box, area from the region
    pixel count and perimeter from the simplified contour. Calibrated frames
    report millimetres (area squared, volume cubed); otherwise raw pixels.
    """

    cfg = config or MeasurementConfig()
    scale, unit = scale_factor(calibration)
    box = region.bounding_box

    dimensions = Dimensions(
        width=box.width * scale,
        height=box.height * scale,
        area=region.pixel_count * scale * scale,
        perimeter=contour.perimeter * scale,
        unit=unit,
    )

    perimeter_sq = contour.perimeter * contour.perimeter
    properties = GeometricProperties(
        aspect_ratio=box.aspect_ratio,
        solidity=contour.solidity,
        circularity=contour.circularity,
        extent=region.pixel_count / float(box.area) if box.area else 0.0,
        compactness=contour.area / perimeter_sq if perimeter_sq > 0 else 0.0,
        hu_moments=tuple(contour.hu_moments),
    )

    depth = None
    if cfg.estimate_depth:
        depth = estimate_depth(
            dimensions,
            circularity=contour.circularity,
            solidity=contour.solidity,
            calibrated=calibration.is_calibrated,
        )

    return DetectedObject(
        id=object_id or f"object-{region.id}",
        bounding_box=box,
        center=(float(region.centroid[0]), float(region.centroid[1])),
        dimensions=dimensions,
        confidence=measurement_confidence(contour.confidence, calibration.is_calibrated, cfg),
        geometric_properties=properties,
        contour=tuple(contour.points),
        depth=depth,
        strategy=strategy,
    )
