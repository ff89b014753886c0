from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .models import BoundingBox, FrameBuffer

SUPPORTED_SCENES = ("flat", "square", "two_squares", "disk", "rectangle")


@dataclass(frozen=True)
class SyntheticSceneConfig:
    """Configuration for deterministic synthetic camera frames."""

    scene: str = "square"
    width: int = 400
    height: int = 400
    object_size: int = 100
    secondary_size: int = 20
    margin: int = 10
    aspect: float = 1.6
    foreground: int = 255
    background: int = 0
    flat_level: int = 128
    noise_sigma: float = 0.0
    seed: int = 42


@dataclass(frozen=True)
class SyntheticScene:
    """Rendered frame plus the ground-truth boxes of every drawn object."""

    frame: FrameBuffer
    gray: np.ndarray
    boxes: tuple[BoundingBox, ...]


def _centered_box(width: int, height: int, box_width: int, box_height: int) -> BoundingBox:
    return BoundingBox(
        x=(width - box_width) // 2,
        y=(height - box_height) // 2,
        width=box_width,
        height=box_height,
    )


def _fill(gray: np.ndarray, box: BoundingBox, value: int) -> None:
    gray[box.y : box.y + box.height, box.x : box.x + box.width] = value


def _draw(config: SyntheticSceneConfig) -> tuple[np.ndarray, list[BoundingBox]]:
    width, height = config.width, config.height
    if config.scene == "flat":
        return np.full((height, width), config.flat_level, dtype=np.float64), []

    gray = np.full((height, width), config.background, dtype=np.float64)
    size = config.object_size

    if config.scene == "square":
        box = _centered_box(width, height, size, size)
        _fill(gray, box, config.foreground)
        return gray, [box]

    if config.scene == "two_squares":
        central = _centered_box(width, height, size, size)
        corner = BoundingBox(
            x=config.margin,
            y=config.margin,
            width=config.secondary_size,
            height=config.secondary_size,
        )
        _fill(gray, central, config.foreground)
        _fill(gray, corner, config.foreground)
        return gray, [central, corner]

    if config.scene == "rectangle":
        box = _centered_box(width, height, int(round(size * config.aspect)), size)
        _fill(gray, box, config.foreground)
        return gray, [box]

    if config.scene == "disk":
        radius = size / 2.0
        center_x = (width - 1) / 2.0
        center_y = (height - 1) / 2.0
        ys, xs = np.mgrid[0:height, 0:width]
        inside = (xs - center_x) ** 2 + (ys - center_y) ** 2 <= radius * radius
        gray[inside] = config.foreground
        rows = np.nonzero(inside.any(axis=1))[0]
        cols = np.nonzero(inside.any(axis=0))[0]
        box = BoundingBox(
            x=int(cols[0]),
            y=int(rows[0]),
            width=int(cols[-1] - cols[0] + 1),
            height=int(rows[-1] - rows[0] + 1),
        )
        return gray, [box]

    raise ValueError(f"unsupported scene: {config.scene}")


def generate_synthetic_scene(config: SyntheticSceneConfig | None = None) -> SyntheticScene:
    cfg = config or SyntheticSceneConfig()
    if cfg.scene not in SUPPORTED_SCENES:
        raise ValueError(f"unsupported scene: {cfg.scene}")
    if cfg.width <= 0 or cfg.height <= 0:
        raise ValueError("width and height must be positive")
    if cfg.scene != "flat":
        if cfg.object_size <= 0 or cfg.object_size > min(cfg.width, cfg.height):
            raise ValueError("object_size must fit inside the frame")
        if cfg.scene == "rectangle" and not 1 <= int(round(cfg.object_size * cfg.aspect)) <= cfg.width:
            raise ValueError("object_size * aspect must fit inside the frame width")
        if cfg.scene == "two_squares" and cfg.margin + cfg.secondary_size > min(cfg.width, cfg.height):
            raise ValueError("secondary square must fit inside the frame")
    if cfg.noise_sigma < 0:
        raise ValueError("noise_sigma must be non-negative")

    values, boxes = _draw(cfg)
    if cfg.noise_sigma > 0:
        rng = np.random.default_rng(cfg.seed)
        values = values + rng.normal(0.0, cfg.noise_sigma, size=values.shape)

    gray = np.clip(np.rint(values), 0, 255).astype(np.uint8)
    return SyntheticScene(frame=FrameBuffer.from_array(gray), gray=gray, boxes=tuple(boxes))


def available_scenes() -> tuple[str, ...]:
    return SUPPORTED_SCENES
