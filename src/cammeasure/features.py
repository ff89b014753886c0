from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from .models import Contour, Region


@dataclass(frozen=True)
class ScoringWeights:
    """Weights for ranking candidate silhouettes; size and centrality dominate."""

    size: float = 0.35
    centrality: float = 0.30
    shape: float = 0.15
    confidence: float = 0.20
    target_relative_area: float = 0.1


@dataclass(frozen=True)
class GeometricFeatures:
    relative_area: float
    aspect_ratio: float
    solidity: float
    circularity: float
    extent: float
    compactness: float
    center_distance: float


@dataclass(frozen=True)
class TextureFeatures:
    mean: float
    std: float
    entropy: float
    contrast: float
    uniformity: float


@dataclass(frozen=True)
class ScoredCandidate:
    region: Region
    contour: Contour
    geometric: GeometricFeatures
    shape: tuple[float, ...]
    size_score: float
    centrality_score: float
    shape_score: float
    score: float
    texture: TextureFeatures | None = None


def geometric_features(region: Region, contour: Contour, width: int, height: int) -> GeometricFeatures:
    """Scale-free descriptors of one candidate within a ``width`` x ``height`` frame.

    ``center_distance`` is the centroid offset from the frame centre divided by
    the half diagonal, so it lies in [0, 1].
    """

    if width <= 0 or height <= 0:
        raise ValueError("frame width and height must be positive")

    box = region.bounding_box
    center_x = (width - 1) / 2.0
    center_y = (height - 1) / 2.0
    half_diagonal = math.hypot(width, height) / 2.0
    offset = math.hypot(region.centroid[0] - center_x, region.centroid[1] - center_y)

    perimeter_sq = contour.perimeter * contour.perimeter
    return GeometricFeatures(
        relative_area=region.pixel_count / float(width * height),
        aspect_ratio=box.aspect_ratio,
        solidity=contour.solidity,
        circularity=contour.circularity,
        extent=region.pixel_count / float(box.area) if box.area else 0.0,
        compactness=contour.area / perimeter_sq if perimeter_sq > 0 else 0.0,
        center_distance=min(1.0, offset / half_diagonal),
    )


def shape_features(contour: Contour) -> tuple[float, ...]:
    return tuple(contour.hu_moments)


def texture_features(intensity: np.ndarray, region_mask: np.ndarray) -> TextureFeatures:
    inside = np.asarray(region_mask) > 0
    values = np.asarray(intensity, dtype=np.float64)
    samples = values[inside]
    if samples.size == 0:
        return TextureFeatures(mean=0.0, std=0.0, entropy=0.0, contrast=0.0, uniformity=0.0)

    bins = np.minimum(samples.astype(np.int64) // 16, 15)
    probabilities = np.bincount(bins, minlength=16) / samples.size
    nonzero = probabilities[probabilities > 0]
    entropy = float(-(nonzero * np.log2(nonzero)).sum() / 4.0)

    horizontal = inside[:, 1:] & inside[:, :-1]
    vertical = inside[1:, :] & inside[:-1, :]
    differences = np.concatenate(
        [
            np.abs(values[:, 1:] - values[:, :-1])[horizontal],
            np.abs(values[1:, :] - values[:-1, :])[vertical],
        ]
    )
    contrast = float(differences.mean()) if differences.size else 0.0

    return TextureFeatures(
        mean=float(samples.mean()),
        std=float(samples.std()),
        entropy=entropy,
        contrast=contrast,
        uniformity=float((probabilities * probabilities).sum()),
    )


def score_candidate(
    region: Region,
    contour: Contour,
    width: int,
    height: int,
    weights: ScoringWeights | None = None,
    texture: TextureFeatures | None = None,
) -> ScoredCandidate:
    w = weights or ScoringWeights()
    if w.target_relative_area <= 0:
        raise ValueError("target_relative_area must be positive")

    geometric = geometric_features(region, contour, width, height)
    size_score = min(1.0, geometric.relative_area / w.target_relative_area)
    centrality_score = 1.0 - geometric.center_distance
    shape_score = (geometric.circularity + geometric.solidity) / 2.0
    score = (
        w.size * size_score
        + w.centrality * centrality_score
        + w.shape * shape_score
        + w.confidence * contour.confidence
    )
    return ScoredCandidate(
        region=region,
        contour=contour,
        geometric=geometric,
        shape=shape_features(contour),
        size_score=size_score,
        centrality_score=centrality_score,
        shape_score=shape_score,
        score=score,
        texture=texture,
    )


def _ranking_key(candidate: ScoredCandidate) -> tuple[float, int, int]:
    return (-candidate.score, -candidate.region.pixel_count, candidate.region.id)


def score_candidates(
    regions: Sequence[Region],
    contours: Sequence[Contour],
    width: int,
    height: int,
    weights: ScoringWeights | None = None,
    intensity: np.ndarray | None = None,
    labels: np.ndarray | None = None,
) -> tuple[ScoredCandidate, ...]:
    """Score every region that has a contour and rank best first.

    Ties go to the larger region, then to the lower region id. Texture
    descriptors are attached when ``intensity`` and ``labels`` are given.
    """

    by_id = {region.id: region for region in regions}
    scored: list[ScoredCandidate] = []
    for contour in contours:
        region = by_id.get(contour.region_id) if contour.region_id is not None else None
        if region is None:
            continue
        texture = None
        if intensity is not None and labels is not None:
            texture = texture_features(intensity, labels == region.id)
        scored.append(score_candidate(region, contour, width, height, weights, texture))
    return tuple(sorted(scored, key=_ranking_key))


def select_central_object(candidates: Sequence[ScoredCandidate]) -> ScoredCandidate | None:
    """Best-ranked candidate, or ``None`` when nothing qualifies."""

    if not candidates:
        return None
    return min(candidates, key=_ranking_key)
