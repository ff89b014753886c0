"""Central-object silhouette detection and calibrated measurement for camera frames."""

from .contours import (
    ContourConfig,
    build_contour,
    convex_hull,
    extract_contours,
    hu_moments,
    polygon_area,
    polygon_perimeter,
    simplify_polygon,
    trace_boundary,
)
from .edges import EdgeDetectionConfig, EdgeDetectionResult, EdgePass, canny, detect_edges
from .errors import (
    CammeasureError,
    ExternalEngineUnavailable,
    InvalidInputError,
    ProcessingDegraded,
    StageTimeout,
)
from .features import (
    ScoredCandidate,
    ScoringWeights,
    geometric_features,
    score_candidates,
    select_central_object,
    texture_features,
)
from .kernels import KernelCache
from .measurement import MeasurementConfig, estimate_depth, measure_object
from .models import (
    BoundingBox,
    CalibrationData,
    Contour,
    DepthEstimate,
    DetectedObject,
    DetectionTelemetry,
    Dimensions,
    FrameBuffer,
    GeometricProperties,
    Region,
    detected_object_to_dict,
    telemetry_to_dict,
)
from .morphology import MorphologyConfig, close_mask, dilate, erode, fill_holes, open_mask
from .pipeline import (
    PipelineConfig,
    PipelineRun,
    PipelineState,
    SilhouettePipeline,
    load_pipeline_config,
    pipeline_config_from_dict,
    pipeline_run_to_dict,
)
from .preprocess import PreprocessConfig, apply_clahe, gaussian_blur, preprocess_frame, to_grayscale
from .scheduler import FrameScheduler, JobResult, SchedulerConfig, SchedulerStats
from .segmentation import (
    SegmentationConfig,
    SegmentationResult,
    distance_transform,
    otsu_mask,
    segment,
)
from .strategies import (
    DetectionStrategy,
    MaskModelStrategy,
    OpenCVContourStrategy,
    PlaceholderStrategy,
)
from .synthetic import SyntheticScene, SyntheticSceneConfig, generate_synthetic_scene

__all__ = [
    "BoundingBox",
    "CalibrationData",
    "CammeasureError",
    "Contour",
    "ContourConfig",
    "DepthEstimate",
    "DetectedObject",
    "DetectionStrategy",
    "DetectionTelemetry",
    "Dimensions",
    "EdgeDetectionConfig",
    "EdgeDetectionResult",
    "EdgePass",
    "ExternalEngineUnavailable",
    "FrameBuffer",
    "FrameScheduler",
    "GeometricProperties",
    "InvalidInputError",
    "JobResult",
    "KernelCache",
    "MaskModelStrategy",
    "MeasurementConfig",
    "MorphologyConfig",
    "OpenCVContourStrategy",
    "PipelineConfig",
    "PipelineRun",
    "PipelineState",
    "PlaceholderStrategy",
    "PreprocessConfig",
    "ProcessingDegraded",
    "Region",
    "SchedulerConfig",
    "SchedulerStats",
    "ScoredCandidate",
    "ScoringWeights",
    "SegmentationConfig",
    "SegmentationResult",
    "SilhouettePipeline",
    "StageTimeout",
    "SyntheticScene",
    "SyntheticSceneConfig",
    "apply_clahe",
    "build_contour",
    "canny",
    "close_mask",
    "convex_hull",
    "detect_edges",
    "detected_object_to_dict",
    "dilate",
    "distance_transform",
    "erode",
    "estimate_depth",
    "extract_contours",
    "fill_holes",
    "gaussian_blur",
    "generate_synthetic_scene",
    "geometric_features",
    "hu_moments",
    "load_pipeline_config",
    "measure_object",
    "open_mask",
    "otsu_mask",
    "pipeline_config_from_dict",
    "pipeline_run_to_dict",
    "polygon_area",
    "polygon_perimeter",
    "preprocess_frame",
    "score_candidates",
    "segment",
    "select_central_object",
    "simplify_polygon",
    "telemetry_to_dict",
    "texture_features",
    "to_grayscale",
    "trace_boundary",
]
