from __future__ import annotations

import base64
import binascii
import threading
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .errors import InvalidInputError
from .models import CalibrationData, FrameBuffer, detected_object_to_dict, telemetry_to_dict
from .pipeline import PipelineConfig, SilhouettePipeline
from .strategies import DetectionStrategy


class CalibrationPayload(BaseModel):
    pixels_per_mm: float = Field(default=1.0, gt=0)
    is_calibrated: bool = False


class DetectRequest(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    pixels_b64: str = Field(min_length=1)
    calibration: CalibrationPayload = Field(default_factory=CalibrationPayload)


class TelemetryResponse(BaseModel):
    edge_pixels: int
    regions_found: int
    regions_kept: int
    contours_found: int
    contours_kept: int
    average_confidence: float
    elapsed_ms: float
    strategy: str
    outcome: str
    fallback_reason: str | None = None
    states: list[str]


class DetectResponse(BaseModel):
    objects: list[dict[str, Any]]
    telemetry: TelemetryResponse


def _decode_frame(payload: DetectRequest) -> FrameBuffer:
    try:
        pixels = base64.b64decode(payload.pixels_b64, validate=True)
    except (binascii.Error, ValueError) as error:
        raise HTTPException(status_code=422, detail=f"pixels_b64 is not valid base64: {error}") from error
    try:
        return FrameBuffer(width=payload.width, height=payload.height, pixels=pixels)
    except InvalidInputError as error:
        raise HTTPException(status_code=422, detail=str(error)) from error


def create_measurement_app(
    config: PipelineConfig | None = None,
    fallbacks: list[DetectionStrategy] | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Camera Measurement API",
        version="0.1.0",
        description="Central-object silhouette detection and calibrated measurement.",
    )
    app.state.pipeline = SilhouettePipeline(config, fallbacks or ())
    app.state.pipeline_lock = threading.Lock()
    app.state.last_telemetry = None

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/v1/detect", response_model=DetectResponse)
    def detect(payload: DetectRequest) -> DetectResponse:
        frame = _decode_frame(payload)
        pipeline: SilhouettePipeline = app.state.pipeline
        try:
            calibration = CalibrationData(
                pixels_per_mm=payload.calibration.pixels_per_mm,
                is_calibrated=payload.calibration.is_calibrated,
            )
            with app.state.pipeline_lock:
                run = pipeline.run(frame, calibration)
        except InvalidInputError as error:
            raise HTTPException(status_code=422, detail=str(error)) from error

        telemetry = telemetry_to_dict(run.telemetry)
        app.state.last_telemetry = telemetry
        return DetectResponse(
            objects=[detected_object_to_dict(obj) for obj in run.objects],
            telemetry=TelemetryResponse(**telemetry),
        )

    @app.get("/api/v1/telemetry/last", response_model=TelemetryResponse)
    def last_telemetry() -> TelemetryResponse:
        telemetry = app.state.last_telemetry
        if telemetry is None:
            raise HTTPException(status_code=404, detail="no frame has been processed yet")
        return TelemetryResponse(**telemetry)

    return app
