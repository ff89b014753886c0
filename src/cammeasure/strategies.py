from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from .contours import ContourConfig, build_contour, extract_contours
from .errors import ExternalEngineUnavailable
from .features import ScoringWeights, score_candidates, select_central_object
from .measurement import MeasurementConfig, measure_object, scale_factor
from .models import (
    BoundingBox,
    CalibrationData,
    Contour,
    DetectedObject,
    Dimensions,
    FrameBuffer,
    GeometricProperties,
    Region,
)
from .segmentation import SegmentationConfig, filter_regions, label_components

log = logging.getLogger("cammeasure.strategies")


class DetectionStrategy(Protocol):
    """Alternative detector interchangeable with the core pipeline.

    ``detect`` returns objects shaped like the core's own output, or ``None``
    (or an empty list) for "no result".
    """

    name: str

    def detect(
        self, frame: FrameBuffer, calibration: CalibrationData
    ) -> list[DetectedObject] | None: ...


def _best_object(
    regions: Sequence[Region],
    contours: Sequence[Contour],
    frame: FrameBuffer,
    calibration: CalibrationData,
    weights: ScoringWeights | None,
    measurement: MeasurementConfig | None,
    strategy: str,
) -> list[DetectedObject] | None:
    ranked = score_candidates(regions, contours, frame.width, frame.height, weights)
    best = select_central_object(ranked)
    if best is None:
        return None
    return [
        measure_object(
            best.region,
            best.contour,
            calibration,
            measurement,
            object_id=f"{strategy}-{best.region.id}",
            strategy=strategy,
        )
    ]


@dataclass
class OpenCVContourStrategy:
    """Canny + external contours through OpenCV (``pip install -e '.[vision]'``)."""

    name: str = "opencv"
    canny_low: int = 50
    canny_high: int = 150
    blur_size: int = 5
    close_size: int = 5
    epsilon: float = 1.5
    segmentation: SegmentationConfig | None = None
    weights: ScoringWeights | None = None
    measurement: MeasurementConfig | None = None

    def detect(self, frame: FrameBuffer, calibration: CalibrationData) -> list[DetectedObject] | None:
        try:
            import cv2
        except ModuleNotFoundError as error:
            raise ExternalEngineUnavailable(
                "opencv-python-headless is required for the OpenCV strategy. "
                "Install with: pip install -e '.[vision]'"
            ) from error

        try:
            gray = cv2.cvtColor(np.ascontiguousarray(frame.as_array()), cv2.COLOR_RGBA2GRAY)
            blurred = cv2.GaussianBlur(gray, (self.blur_size, self.blur_size), 0)
            edges = cv2.Canny(blurred, self.canny_low, self.canny_high)
            kernel = cv2.getStructuringElement(
                cv2.MORPH_ELLIPSE, (self.close_size, self.close_size)
            )
            closed = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel)
            found, _ = cv2.findContours(closed, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)

            regions: list[Region] = []
            contours: list[Contour] = []
            for index, raw in enumerate(found, start=1):
                filled = np.zeros(gray.shape, dtype=np.uint8)
                cv2.drawContours(filled, [raw], -1, 255, thickness=-1)
                pixel_count = int(cv2.countNonZero(filled))
                if pixel_count == 0:
                    continue
                x, y, w, h = cv2.boundingRect(raw)
                moments = cv2.moments(filled, binaryImage=True)
                region = Region(
                    id=index,
                    pixel_count=pixel_count,
                    bounding_box=BoundingBox(x=int(x), y=int(y), width=int(w), height=int(h)),
                    centroid=(moments["m10"] / moments["m00"], moments["m01"] / moments["m00"]),
                )
                approx = cv2.approxPolyDP(raw, self.epsilon, True).reshape(-1, 2)
                if len(approx) < 3:
                    continue
                regions.append(region)
                contours.append(build_contour([(float(px), float(py)) for px, py in approx], region))
        except cv2.error as error:
            raise ExternalEngineUnavailable(f"OpenCV detection failed: {error}") from error

        kept = filter_regions(regions, frame.width, frame.height, self.segmentation)
        return _best_object(
            kept, contours, frame, calibration, self.weights, self.measurement, self.name
        )


@dataclass
class MaskModelStrategy:
    """Segmentation-model backend.

    ``predict`` receives the HxWx4 RGBA array and returns an HxW foreground
    probability (or 0/1) map; pixels at or above ``threshold`` are foreground.
    """

    predict: Callable[[np.ndarray], np.ndarray]
    name: str = "mask-model"
    threshold: float = 0.5
    segmentation: SegmentationConfig | None = None
    contours: ContourConfig | None = None
    weights: ScoringWeights | None = None
    measurement: MeasurementConfig | None = None

    def detect(self, frame: FrameBuffer, calibration: CalibrationData) -> list[DetectedObject] | None:
        try:
            probabilities = np.asarray(self.predict(frame.as_array()), dtype=np.float64)
        except Exception as error:
            raise ExternalEngineUnavailable(f"mask model failed: {error}") from error

        if probabilities.shape != (frame.height, frame.width):
            raise ExternalEngineUnavailable(
                f"mask model returned shape {probabilities.shape}, "
                f"expected {(frame.height, frame.width)}"
            )

        foreground = (probabilities >= self.threshold).astype(np.int32)
        labels, regions = label_components(foreground)
        kept = filter_regions(regions, frame.width, frame.height, self.segmentation)
        if not kept:
            return None
        contours = extract_contours(labels, kept, self.contours)
        return _best_object(
            kept, contours, frame, calibration, self.weights, self.measurement, self.name
        )


@dataclass
class PlaceholderStrategy:
    """Low-confidence centre box for callers that always want an answer."""

    name: str = "placeholder"
    offset_fraction: float = 0.45
    size_fraction: float = 0.15
    confidence: float = 0.3

    def detect(self, frame: FrameBuffer, calibration: CalibrationData) -> list[DetectedObject] | None:
        x = int(round(frame.width * self.offset_fraction))
        y = int(round(frame.height * self.offset_fraction))
        width = max(1, int(round(frame.width * self.size_fraction)))
        height = max(1, int(round(frame.height * self.size_fraction)))
        box = BoundingBox(x=x, y=y, width=width, height=height)

        scale, unit = scale_factor(calibration)
        corners = (
            (float(x), float(y)),
            (float(x + width), float(y)),
            (float(x + width), float(y + height)),
            (float(x), float(y + height)),
        )
        log.debug("placeholder box %s for %dx%d frame", box, frame.width, frame.height)
        return [
            DetectedObject(
                id=f"{self.name}-0",
                bounding_box=box,
                center=(x + width / 2.0, y + height / 2.0),
                dimensions=Dimensions(
                    width=width * scale,
                    height=height * scale,
                    area=width * height * scale * scale,
                    perimeter=2.0 * (width + height) * scale,
                    unit=unit,
                ),
                confidence=self.confidence,
                geometric_properties=GeometricProperties(
                    aspect_ratio=box.aspect_ratio,
                    solidity=1.0,
                    circularity=math.pi * width * height / (width + height) ** 2,
                    extent=1.0,
                    compactness=width * height / (4.0 * (width + height) ** 2),
                    hu_moments=(0.0,) * 7,
                ),
                contour=corners,
                strategy=self.name,
            )
        ]
