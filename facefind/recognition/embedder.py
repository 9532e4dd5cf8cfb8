"""Face detection + embedding extraction on still images."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Union

import cv2
import numpy as np

from facefind.errors import FaceFindError, InferenceError
from facefind.recognition.registry import ModelRegistry
from facefind.types import BoundingBox, FaceDetection, freeze_embedding

LOGGER = logging.getLogger("facefind.recognition.embedder")

ImageInput = Union[np.ndarray, Path, str]


def load_image(path: Path) -> np.ndarray:
    """Decode an image file into a BGR array."""
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise InferenceError(f"Unable to decode image: {path}")
    return image


def _as_bgr(image: ImageInput) -> np.ndarray:
    if isinstance(image, (str, Path)):
        return load_image(Path(image))
    if not isinstance(image, np.ndarray) or image.size == 0:
        raise InferenceError("Image data is empty or not an array")
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise InferenceError(f"Unsupported image shape {image.shape}")
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


class FaceEmbedder:
    """Turns images into ``FaceDetection`` records using a loaded registry."""

    def __init__(self, registry: ModelRegistry) -> None:
        self.registry = registry

    def detect_all(self, image: ImageInput) -> List[FaceDetection]:
        """Every face the detector returned; empty when there is none."""
        bgr = _as_bgr(image)
        try:
            faces = self.registry.analyze(bgr)
        except FaceFindError:
            raise
        except Exception as exc:
            raise InferenceError(f"Face analysis failed: {exc}") from exc
        return [self._to_detection(face, bgr.shape) for face in faces]

    def detect_single(self, image: ImageInput) -> Optional[FaceDetection]:
        """The most confident face with an embedding, or ``None`` when there is none."""
        detections = [det for det in self.detect_all(image) if det.embedding is not None]
        if not detections:
            return None
        if len(detections) > 1:
            LOGGER.info("Reference image has %d faces; using the most confident one", len(detections))
        return max(detections, key=lambda det: (det.det_score, det.bbox.area))

    @staticmethod
    def _to_detection(face: Any, image_shape) -> FaceDetection:
        x1, y1, x2, y2 = (float(v) for v in face.bbox[:4])
        bbox = BoundingBox.from_xyxy((x1, y1, x2, y2), image_shape)
        if bbox is None:
            LOGGER.debug("Face box %s lies outside the image; keeping it unclipped", face.bbox)
            bbox = BoundingBox(x=x1, y=y1, width=max(0.0, x2 - x1), height=max(0.0, y2 - y1))
        raw_embedding = getattr(face, "embedding", None)
        if raw_embedding is None:
            LOGGER.warning("Recognizer produced no embedding for face at %s", bbox.to_dict())
        return FaceDetection(
            bbox=bbox,
            embedding=None if raw_embedding is None else freeze_embedding(raw_embedding),
            det_score=float(getattr(face, "det_score", 1.0)),
        )
