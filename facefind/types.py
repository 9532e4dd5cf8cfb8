"""Common dataclasses and type aliases used across the facefind package."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np

# Detector box order: x1, y1, x2, y2 (pixel coordinates)
XYXY = Tuple[float, float, float, float]


@dataclass(frozen=True)
class BoundingBox:
    """Face box in pixel coordinates of the source image."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xyxy(cls, box: XYXY, image_shape: Optional[Tuple[int, ...]] = None) -> Optional["BoundingBox"]:
        """Clip a detector box to the image; ``None`` when nothing is left."""
        x1, y1, x2, y2 = (float(v) for v in box)
        x1 = max(0.0, x1)
        y1 = max(0.0, y1)
        if image_shape is not None:
            height, width = image_shape[:2]
            x2 = min(float(width), x2)
            y2 = min(float(height), y2)
        if x2 <= x1 or y2 <= y1:
            return None
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class FaceDetection:
    """One face found in one image; ``embedding`` is None when the recognizer produced none."""

    bbox: BoundingBox
    embedding: Optional[np.ndarray] = field(repr=False)
    det_score: float = 1.0


@dataclass(frozen=True)
class Frame:
    """A sampled still written by the frame sampler."""

    index: int
    timestamp_seconds: float
    path: Path


@dataclass(frozen=True)
class Match:
    """A detected face whose similarity to the reference cleared the threshold."""

    timestamp_seconds: float
    confidence: float
    bbox: BoundingBox
    frame_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp_seconds,
            "confidence": self.confidence,
            "bbox": self.bbox.to_dict(),
        }


@dataclass(frozen=True)
class AnalysisSummary:
    total_frames: int
    total_detections: int
    total_faces_found: int
    max_similarity: float
    message: str
    failed_frames: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFrames": self.total_frames,
            "totalDetections": self.total_detections,
            "totalFacesFound": self.total_faces_found,
            "maxSimilarity": self.max_similarity,
            "message": self.message,
            "failedFrames": self.failed_frames,
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of a successful run; matches are ordered by timestamp."""

    matches: Tuple[Match, ...]
    summary: AnalysisSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches": [match.to_dict() for match in self.matches],
            "summary": self.summary.to_dict(),
        }


def l2_normalize(vec: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """L2-normalize the input vector."""
    norm = np.linalg.norm(vec)
    if norm < eps:
        return vec
    return vec / norm


def freeze_embedding(raw: Any) -> np.ndarray:
    """Return a flat, L2-normalized, read-only float32 copy of ``raw``."""
    vec = l2_normalize(np.asarray(raw, dtype=np.float32).reshape(-1)).astype(np.float32, copy=True)
    vec.setflags(write=False)
    return vec
