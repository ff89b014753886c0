from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path

import numpy as np

from .errors import InvalidInputError
from .models import CalibrationData, FrameBuffer, bounding_box_to_dict
from .pipeline import (
    PipelineConfig,
    SilhouettePipeline,
    load_pipeline_config,
    pipeline_run_to_dict,
)
from .strategies import DetectionStrategy, OpenCVContourStrategy, PlaceholderStrategy
from .synthetic import SyntheticSceneConfig, available_scenes, generate_synthetic_scene

FALLBACK_CHOICES = ("opencv", "placeholder")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_image(path: Path) -> np.ndarray:
    if path.suffix.lower() == ".npy":
        return np.load(path, allow_pickle=False)

    try:
        import cv2
    except ModuleNotFoundError as error:
        raise RuntimeError(
            "opencv-python-headless is required to read image files. "
            "Install with: pip install -e '.[vision]' or pass a .npy array"
        ) from error

    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise RuntimeError(f"failed to read image: {path}")
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    return image


def _build_fallbacks(names: list[str] | None) -> list[DetectionStrategy]:
    fallbacks: list[DetectionStrategy] = []
    for name in names or []:
        if name == "opencv":
            fallbacks.append(OpenCVContourStrategy())
        elif name == "placeholder":
            fallbacks.append(PlaceholderStrategy())
    return fallbacks


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Camera-frame silhouette detection and measurement")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    detect = subparsers.add_parser(
        "detect-frame",
        help="Detect the central object in one frame and measure it.",
    )
    detect.add_argument("input_path", help="Image file (needs the vision extra) or .npy array.")
    detect.add_argument(
        "--pixels-per-mm",
        type=float,
        default=None,
        help="Calibration scale; omit for pixel units.",
    )
    detect.add_argument(
        "--config",
        type=str,
        default=None,
        help="Pipeline config profile (.json, or YAML with the yaml extra).",
    )
    detect.add_argument("--min-confidence", type=float, default=None)
    detect.add_argument("--max-objects", type=int, default=None)
    detect.add_argument(
        "--fallback",
        action="append",
        choices=FALLBACK_CHOICES,
        default=None,
        help="Fallback strategy to try in order; may be repeated.",
    )
    detect.add_argument("--output-json", type=str, default=None)

    synth = subparsers.add_parser(
        "generate-synthetic-frame",
        help="Render a deterministic synthetic test frame.",
    )
    synth.add_argument("--scene", choices=available_scenes(), default="square")
    synth.add_argument("--width", type=int, default=400)
    synth.add_argument("--height", type=int, default=400)
    synth.add_argument("--object-size", type=int, default=100)
    synth.add_argument("--noise-sigma", type=float, default=0.0)
    synth.add_argument("--seed", type=int, default=42)
    synth.add_argument("--output-npy", type=str, required=True, help="Path to write the RGBA array.")
    synth.add_argument(
        "--output-json",
        type=str,
        default=None,
        help="Optional path for the ground-truth boxes.",
    )

    return parser


def _handle_detect_frame(args: argparse.Namespace) -> int:
    input_path = Path(args.input_path)
    if not input_path.exists():
        print(f"ERROR: input not found: {input_path}")
        return 1

    try:
        config = load_pipeline_config(args.config) if args.config else PipelineConfig()
        if args.pixels_per_mm is not None:
            calibration = CalibrationData(pixels_per_mm=args.pixels_per_mm, is_calibrated=True)
        else:
            calibration = CalibrationData.uncalibrated()
    except (FileNotFoundError, ModuleNotFoundError, ValueError) as error:
        print(f"ERROR: {error}")
        return 1

    if args.min_confidence is not None:
        config = replace(config, min_confidence=args.min_confidence)
    if args.max_objects is not None:
        config = replace(config, max_objects=args.max_objects)

    pipeline = SilhouettePipeline(config, fallbacks=_build_fallbacks(args.fallback))
    try:
        frame = FrameBuffer.from_array(_load_image(input_path))
        run = pipeline.run(frame, calibration)
    except (InvalidInputError, RuntimeError) as error:
        print(f"ERROR: {error}")
        return 1

    payload = pipeline_run_to_dict(run)
    payload["input_path"] = str(input_path)
    if args.output_json:
        output_json = Path(args.output_json)
        output_json.parent.mkdir(parents=True, exist_ok=True)
        output_json.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    print(f"Frame analyzed: {input_path}")
    print(f"Outcome: {run.telemetry.outcome} ({run.telemetry.strategy})")
    print(f"Objects: {len(run.objects)}")
    for obj in run.objects:
        dims = obj.dimensions
        print(
            f"{obj.id}: {dims.width:.2f} x {dims.height:.2f} {dims.unit}, "
            f"area {dims.area:.2f} {dims.unit}^2, confidence {obj.confidence:.2f}"
        )
    if args.output_json:
        print(f"Result JSON: {args.output_json}")
    return 0


def _handle_generate_synthetic_frame(args: argparse.Namespace) -> int:
    config = SyntheticSceneConfig(
        scene=args.scene,
        width=args.width,
        height=args.height,
        object_size=args.object_size,
        noise_sigma=args.noise_sigma,
        seed=args.seed,
    )
    try:
        scene = generate_synthetic_scene(config)
    except ValueError as error:
        print(f"ERROR: {error}")
        return 1

    output_npy = Path(args.output_npy)
    output_npy.parent.mkdir(parents=True, exist_ok=True)
    np.save(output_npy, scene.frame.as_array())

    if args.output_json:
        output_json = Path(args.output_json)
        output_json.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "scene": config.scene,
            "width": config.width,
            "height": config.height,
            "boxes": [bounding_box_to_dict(box) for box in scene.boxes],
        }
        output_json.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    print(f"Synthetic frame generated: scene={config.scene}, {config.width}x{config.height}")
    print(f"Frame array: {output_npy}")
    if args.output_json:
        print(f"Ground truth JSON: {args.output_json}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "detect-frame":
        return _handle_detect_frame(args)
    if args.command == "generate-synthetic-frame":
        return _handle_generate_synthetic_frame(args)

    parser.error(f"unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
