from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from .errors import InvalidInputError


@dataclass(frozen=True)
class FrameBuffer:
    """Single RGBA camera frame, interleaved 8-bit samples, owned by the caller."""

    width: int
    height: int
    pixels: bytes | bytearray | memoryview | np.ndarray

    def __post_init__(self) -> None:
        if not isinstance(self.width, int) or isinstance(self.width, bool) or self.width <= 0:
            raise InvalidInputError("frame width must be a positive integer")
        if not isinstance(self.height, int) or isinstance(self.height, bool) or self.height <= 0:
            raise InvalidInputError("frame height must be a positive integer")

        expected = self.width * self.height * 4
        if isinstance(self.pixels, np.ndarray):
            if self.pixels.dtype != np.uint8:
                raise InvalidInputError("frame pixels must be uint8 samples")
            actual = int(self.pixels.size)
        elif isinstance(self.pixels, (bytes, bytearray, memoryview)):
            actual = len(self.pixels)
        else:
            raise InvalidInputError("frame pixels must be bytes or a uint8 array")

        if actual != expected:
            raise InvalidInputError(
                f"frame pixels must hold width*height*4={expected} samples, got {actual}"
            )

    @classmethod
    def from_array(cls, image: np.ndarray) -> FrameBuffer:
        """Wrap an HxWx4 (RGBA), HxWx3 (RGB) or HxW (gray) uint8 array."""

        array = np.asarray(image)
        if array.dtype != np.uint8:
            raise InvalidInputError("image array must be uint8")
        if array.ndim == 2:
            array = np.repeat(array[:, :, None], 3, axis=2)
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise InvalidInputError("image array must be HxW, HxWx3 or HxWx4")
        if array.shape[2] == 3:
            alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
            array = np.concatenate([array, alpha], axis=2)

        height, width = array.shape[:2]
        return cls(width=int(width), height=int(height), pixels=np.ascontiguousarray(array))

    def as_array(self) -> np.ndarray:
        """Return an HxWx4 uint8 view of the samples."""

        if isinstance(self.pixels, np.ndarray):
            flat = self.pixels.reshape(-1)
        else:
            flat = np.frombuffer(bytes(self.pixels), dtype=np.uint8)
        return flat.reshape(self.height, self.width, 4)

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class CalibrationData:
    """Pixel-to-millimetre scale supplied by the calibration workflow."""

    pixels_per_mm: float = 1.0
    is_calibrated: bool = False

    def __post_init__(self) -> None:
        value = self.pixels_per_mm
        if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
            raise InvalidInputError("pixels_per_mm must be a number")
        if not math.isfinite(float(value)) or float(value) <= 0:
            raise InvalidInputError("pixels_per_mm must be a positive finite number")

    @classmethod
    def uncalibrated(cls) -> CalibrationData:
        return cls(pixels_per_mm=1.0, is_calibrated=False)


@dataclass(frozen=True)
class BoundingBox:
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0


@dataclass(frozen=True)
class Region:
    """Connected component produced by segmentation."""

    id: int
    pixel_count: int
    bounding_box: BoundingBox
    centroid: tuple[float, float]

    @property
    def solidity(self) -> float:
        bbox_area = self.bounding_box.area
        return self.pixel_count / bbox_area if bbox_area else 0.0


@dataclass(frozen=True)
class Contour:
    """Closed boundary of one region plus derived shape scalars."""

    points: tuple[tuple[float, float], ...]
    area: float
    perimeter: float
    circularity: float
    solidity: float
    aspect_ratio: float
    hu_moments: tuple[float, ...]
    confidence: float
    region_id: int | None = None
    closed: bool = True

    @property
    def is_valid(self) -> bool:
        return len(self.points) >= 3


@dataclass(frozen=True)
class Dimensions:
    width: float
    height: float
    area: float
    perimeter: float
    unit: str


@dataclass(frozen=True)
class GeometricProperties:
    aspect_ratio: float
    solidity: float
    circularity: float
    extent: float
    compactness: float
    hu_moments: tuple[float, ...]


@dataclass(frozen=True)
class DepthEstimate:
    """Single-view heuristic depth; assumes the silhouette is a uniform extrusion."""

    depth: float
    volume: float
    surface_area: float
    unit: str
    method: str
    confidence: float
    estimated_distance_mm: float | None = None


@dataclass(frozen=True)
class DetectedObject:
    id: str
    bounding_box: BoundingBox
    center: tuple[float, float]
    dimensions: Dimensions
    confidence: float
    geometric_properties: GeometricProperties
    contour: tuple[tuple[float, float], ...]
    depth: DepthEstimate | None = None
    strategy: str = "geometric"


@dataclass
class DetectionTelemetry:
    """Per-run counters exposed to rendering and debugging collaborators."""

    edge_pixels: int = 0
    regions_found: int = 0
    regions_kept: int = 0
    contours_found: int = 0
    contours_kept: int = 0
    average_confidence: float = 0.0
    elapsed_ms: float = 0.0
    strategy: str = "geometric"
    outcome: str = "pending"
    fallback_reason: str | None = None
    states: list[str] = field(default_factory=list)


def _round_point(point: tuple[float, float]) -> list[float]:
    return [round(float(point[0]), 3), round(float(point[1]), 3)]


def bounding_box_to_dict(box: BoundingBox) -> dict[str, int]:
    return {"x": box.x, "y": box.y, "width": box.width, "height": box.height}


def detected_object_to_dict(obj: DetectedObject) -> dict[str, object]:
    depth: dict[str, object] | None = None
    if obj.depth is not None:
        depth = {
            "depth": obj.depth.depth,
            "volume": obj.depth.volume,
            "surface_area": obj.depth.surface_area,
            "unit": obj.depth.unit,
            "method": obj.depth.method,
            "confidence": obj.depth.confidence,
            "estimated_distance_mm": obj.depth.estimated_distance_mm,
        }

    props = obj.geometric_properties
    return {
        "id": obj.id,
        "strategy": obj.strategy,
        "bounding_box": bounding_box_to_dict(obj.bounding_box),
        "center": _round_point(obj.center),
        "dimensions": {
            "width": obj.dimensions.width,
            "height": obj.dimensions.height,
            "area": obj.dimensions.area,
            "perimeter": obj.dimensions.perimeter,
            "unit": obj.dimensions.unit,
        },
        "confidence": obj.confidence,
        "geometric_properties": {
            "aspect_ratio": props.aspect_ratio,
            "solidity": props.solidity,
            "circularity": props.circularity,
            "extent": props.extent,
            "compactness": props.compactness,
            "hu_moments": list(props.hu_moments),
        },
        "contour": [_round_point(point) for point in obj.contour],
        "depth": depth,
    }


def telemetry_to_dict(telemetry: DetectionTelemetry) -> dict[str, object]:
    return {
        "edge_pixels": telemetry.edge_pixels,
        "regions_found": telemetry.regions_found,
        "regions_kept": telemetry.regions_kept,
        "contours_found": telemetry.contours_found,
        "contours_kept": telemetry.contours_kept,
        "average_confidence": telemetry.average_confidence,
        "elapsed_ms": telemetry.elapsed_ms,
        "strategy": telemetry.strategy,
        "outcome": telemetry.outcome,
        "fallback_reason": telemetry.fallback_reason,
        "states": list(telemetry.states),
    }
