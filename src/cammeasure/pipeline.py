from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path

from .contours import ContourConfig, extract_contours
from .edges import EdgeDetectionConfig, EdgePass, detect_edges
from .errors import ExternalEngineUnavailable, InvalidInputError, ProcessingDegraded, StageTimeout
from .features import ScoringWeights, score_candidates, select_central_object
from .kernels import KernelCache
from .measurement import MeasurementConfig, measure_object
from .models import (
    CalibrationData,
    DetectedObject,
    DetectionTelemetry,
    FrameBuffer,
    detected_object_to_dict,
    telemetry_to_dict,
)
from .morphology import MorphologyConfig
from .preprocess import PreprocessConfig, preprocess_frame
from .segmentation import SegmentationConfig, segment_frame
from .strategies import DetectionStrategy

log = logging.getLogger("cammeasure.pipeline")


class PipelineState(str, Enum):
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    EDGE_DETECTING = "edge_detecting"
    SEGMENTING = "segmenting"
    CONTOUR_EXTRACTING = "contour_extracting"
    SCORING = "scoring"
    MEASURING = "measuring"
    FALLBACK = "fallback"
    DONE = "done"


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for one silhouette measurement pipeline instance."""

    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    edges: EdgeDetectionConfig = field(default_factory=EdgeDetectionConfig)
    morphology: MorphologyConfig = field(default_factory=MorphologyConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    contours: ContourConfig = field(default_factory=ContourConfig)
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    measurement: MeasurementConfig = field(default_factory=MeasurementConfig)
    min_confidence: float = 0.5
    max_objects: int = 1
    timeout_s: float | None = None


@dataclass
class PipelineRun:
    """Objects returned by one run plus the counters collected on the way."""

    objects: list[DetectedObject]
    telemetry: DetectionTelemetry


def _section(payload: Mapping[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, Mapping):
        raise ValueError(f"{key} must be an object")
    return dict(value)


def _build_section(cls: type, key: str, values: dict[str, object]) -> object:
    allowed = {item.name for item in fields(cls)}
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise ValueError(f"unknown {key} keys: {', '.join(unknown)}")
    return cls(**values)


def pipeline_config_from_dict(payload: Mapping[str, object]) -> PipelineConfig:
    """Build a ``PipelineConfig`` from a JSON-style profile; unknown keys are rejected."""

    sections = {
        "preprocess": PreprocessConfig,
        "edges": EdgeDetectionConfig,
        "morphology": MorphologyConfig,
        "segmentation": SegmentationConfig,
        "contours": ContourConfig,
        "scoring": ScoringWeights,
        "measurement": MeasurementConfig,
    }
    scalars = {"min_confidence", "max_objects", "timeout_s"}
    unknown = sorted(set(payload) - set(sections) - scalars)
    if unknown:
        raise ValueError(f"unknown pipeline config keys: {', '.join(unknown)}")

    values = {key: _section(payload, key) for key in sections}

    preprocess = values["preprocess"]
    if "clahe_tile_grid" in preprocess:
        grid = preprocess["clahe_tile_grid"]
        if not isinstance(grid, Sequence) or len(grid) != 2:
            raise ValueError("preprocess.clahe_tile_grid must be a pair of integers")
        preprocess["clahe_tile_grid"] = (int(grid[0]), int(grid[1]))

    edges = values["edges"]
    if "passes" in edges:
        raw_passes = edges["passes"]
        if not isinstance(raw_passes, Sequence) or not raw_passes:
            raise ValueError("edges.passes must be a non-empty list")
        passes = []
        for item in raw_passes:
            if not isinstance(item, Mapping):
                raise ValueError("edges.passes entries must be objects")
            passes.append(_build_section(EdgePass, "edges.passes", dict(item)))
        edges["passes"] = tuple(passes)

    built = {key: _build_section(cls, key, values[key]) for key, cls in sections.items()}

    max_objects = int(payload.get("max_objects", 1))
    if max_objects < 1:
        raise ValueError("max_objects must be at least 1")
    min_confidence = float(payload.get("min_confidence", 0.5))
    if not 0.0 <= min_confidence <= 1.0:
        raise ValueError("min_confidence must be in [0, 1]")
    timeout_s = payload.get("timeout_s")
    if timeout_s is not None:
        timeout_s = float(timeout_s)
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")

    return PipelineConfig(
        **built,
        min_confidence=min_confidence,
        max_objects=max_objects,
        timeout_s=timeout_s,
    )


def load_pipeline_config(path: str | Path) -> PipelineConfig:
    """Load a pipeline profile from a JSON or YAML file."""

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(config_path)

    raw_text = config_path.read_text(encoding="utf-8")
    if config_path.suffix.strip().lower() == ".json":
        payload = json.loads(raw_text)
    else:
        try:
            import yaml
        except ModuleNotFoundError as error:
            raise ModuleNotFoundError(
                "PyYAML is required for YAML pipeline profiles. Install with: pip install -e '.[yaml]'"
            ) from error
        payload = yaml.safe_load(raw_text)

    if payload is None:
        return PipelineConfig()
    if not isinstance(payload, dict):
        raise ValueError("pipeline config must be an object")
    return pipeline_config_from_dict(payload)


def pipeline_run_to_dict(run: PipelineRun) -> dict[str, object]:
    return {
        "objects": [detected_object_to_dict(obj) for obj in run.objects],
        "telemetry": telemetry_to_dict(run.telemetry),
    }


def _by_confidence(objects: Sequence[DetectedObject]) -> list[DetectedObject]:
    return sorted(objects, key=lambda obj: obj.confidence, reverse=True)


class SilhouettePipeline:
    """Frame -> central-object silhouette -> calibrated measurements.

    An instance owns its configuration, its kernel cache and an ordered list
    of fallback strategies. Runs are synchronous; share an instance only
    between callers that serialise their calls (see ``FrameScheduler``).
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        fallbacks: Sequence[DetectionStrategy] = (),
    ) -> None:
        self.config = config or PipelineConfig()
        self.fallbacks = tuple(fallbacks)
        self.kernels = KernelCache()

    def detect(
        self, frame: FrameBuffer, calibration: CalibrationData | None = None
    ) -> list[DetectedObject]:
        return self.run(frame, calibration).objects

    def run(self, frame: FrameBuffer, calibration: CalibrationData | None = None) -> PipelineRun:
        if not isinstance(frame, FrameBuffer):
            raise InvalidInputError("frame must be a FrameBuffer")
        if calibration is None:
            calibration = CalibrationData.uncalibrated()
        if not isinstance(calibration, CalibrationData):
            raise InvalidInputError("calibration must be CalibrationData")

        telemetry = DetectionTelemetry()
        telemetry.states.append(PipelineState.IDLE.value)
        started = time.perf_counter()
        deadline = started + self.config.timeout_s if self.config.timeout_s else None

        objects: list[DetectedObject] = []
        try:
            objects = self._run_core(frame, calibration, telemetry, deadline)
        except InvalidInputError:
            raise
        except ProcessingDegraded as degraded:
            objects = self._run_fallbacks(frame, calibration, telemetry, degraded.reason)
        except Exception as error:
            stage = telemetry.states[-1]
            log.warning("stage %s failed: %s", stage, error, exc_info=True)
            objects = self._run_fallbacks(frame, calibration, telemetry, f"stage_error:{stage}")
        else:
            telemetry.strategy = "geometric"
            if objects and objects[0].confidence < self.config.min_confidence:
                alternative = self._run_fallbacks(frame, calibration, telemetry, "low_confidence")
                if alternative and alternative[0].confidence > objects[0].confidence:
                    objects = alternative
                else:
                    # _run_fallbacks recorded the weaker alternative's name.
                    telemetry.strategy = "geometric"

        telemetry.states.append(PipelineState.DONE.value)
        telemetry.elapsed_ms = (time.perf_counter() - started) * 1000.0
        if objects:
            telemetry.average_confidence = sum(obj.confidence for obj in objects) / len(objects)
            telemetry.outcome = "detected" if telemetry.strategy == "geometric" else "fallback"
        else:
            telemetry.strategy = "none"
            telemetry.outcome = "no_object"

        log.info(
            "run finished: outcome=%s strategy=%s objects=%d elapsed_ms=%.1f",
            telemetry.outcome,
            telemetry.strategy,
            len(objects),
            telemetry.elapsed_ms,
        )
        return PipelineRun(objects=objects, telemetry=telemetry)

    def _enter(
        self,
        state: PipelineState,
        telemetry: DetectionTelemetry,
        deadline: float | None,
    ) -> None:
        if deadline is not None and time.perf_counter() > deadline:
            raise StageTimeout(f"timeout:{state.value}")
        telemetry.states.append(state.value)

    def _run_core(
        self,
        frame: FrameBuffer,
        calibration: CalibrationData,
        telemetry: DetectionTelemetry,
        deadline: float | None,
    ) -> list[DetectedObject]:
        cfg = self.config

        self._enter(PipelineState.PREPROCESSING, telemetry, deadline)
        prepared = preprocess_frame(frame, cfg.preprocess, self.kernels)

        self._enter(PipelineState.EDGE_DETECTING, telemetry, deadline)
        edges = detect_edges(prepared.denoised, cfg.edges, self.kernels)
        telemetry.edge_pixels = edges.edge_pixels
        log.debug("edge pixels: %d", edges.edge_pixels)
        if edges.edge_pixels == 0:
            raise ProcessingDegraded("no_edges")

        self._enter(PipelineState.SEGMENTING, telemetry, deadline)
        segmentation = segment_frame(
            edges.edge_map,
            prepared.enhanced,
            cfg.morphology,
            cfg.segmentation,
            self.kernels,
        )
        telemetry.regions_found = len(segmentation.regions)
        telemetry.regions_kept = len(segmentation.kept)
        if not segmentation.kept:
            raise ProcessingDegraded("no_regions")

        self._enter(PipelineState.CONTOUR_EXTRACTING, telemetry, deadline)
        contours = extract_contours(segmentation.labels, segmentation.kept, cfg.contours)
        telemetry.contours_found = len(contours)
        log.debug("contours: %d from %d regions", len(contours), len(segmentation.kept))
        if not contours:
            raise ProcessingDegraded("no_contours")

        self._enter(PipelineState.SCORING, telemetry, deadline)
        ranked = score_candidates(
            segmentation.kept,
            contours,
            frame.width,
            frame.height,
            cfg.scoring,
            intensity=prepared.enhanced,
            labels=segmentation.labels,
        )
        telemetry.contours_kept = len(ranked)
        if select_central_object(ranked) is None:
            raise ProcessingDegraded("no_object")

        self._enter(PipelineState.MEASURING, telemetry, deadline)
        objects = [
            measure_object(
                candidate.region,
                candidate.contour,
                calibration,
                cfg.measurement,
                object_id=f"object-{rank}",
            )
            for rank, candidate in enumerate(ranked[: cfg.max_objects], start=1)
        ]
        return _by_confidence(objects)

    def _run_fallbacks(
        self,
        frame: FrameBuffer,
        calibration: CalibrationData,
        telemetry: DetectionTelemetry,
        reason: str,
    ) -> list[DetectedObject]:
        telemetry.states.append(PipelineState.FALLBACK.value)
        telemetry.fallback_reason = reason
        log.warning("core detection degraded (%s); trying %d fallback(s)", reason, len(self.fallbacks))

        for strategy in self.fallbacks:
            name = getattr(strategy, "name", type(strategy).__name__)
            try:
                result = strategy.detect(frame, calibration)
            except ExternalEngineUnavailable as error:
                log.warning("fallback %s unavailable: %s", name, error)
                continue
            except Exception as error:
                log.warning("fallback %s failed: %s", name, error, exc_info=True)
                continue
            if result:
                telemetry.strategy = name
                return _by_confidence(result)[: self.config.max_objects]

        return []
