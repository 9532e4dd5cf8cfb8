"""Process-lifetime holder for the InsightFace detector/landmark/recognizer models."""

from __future__ import annotations

import logging
import os
import platform
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from facefind.errors import ModelLoadError, NotReadyError

LOGGER = logging.getLogger("facefind.recognition.registry")

# Detector, 2D landmarks and recognizer out of the model pack; age/gender and
# 3D landmarks are never consulted.
ALLOWED_MODULES = ("detection", "landmark_2d_106", "recognition")
DEFAULT_MODEL_ROOT = "~/.insightface"

AnalysisFactory = Callable[..., Any]


def _default_providers() -> Tuple[str, ...]:
    """Choose default ONNX providers based on platform."""
    system = platform.system()
    machine = platform.machine().lower()
    if system == "Darwin" and machine in {"arm64", "aarch64"}:
        return ("CoreMLExecutionProvider", "CPUExecutionProvider")
    return ("CPUExecutionProvider",)


def _insightface_factory(name: str, root: str, providers: List[str], allowed_modules: List[str]) -> Any:
    try:
        from insightface.app import FaceAnalysis
    except ImportError as exc:  # pragma: no cover - import guard
        raise RuntimeError(
            "insightface is required for ModelRegistry. "
            "Install it via `pip install insightface`."
        ) from exc
    return FaceAnalysis(name=name, root=root, allowed_modules=allowed_modules, providers=providers)


class ModelRegistry:
    """Loads the face models once and exposes inference to the pipeline.

    Instances are passed explicitly to the orchestrator. ``load()`` may be
    called any number of times; only the first successful call does work.
    After loading the models are read-only and may be shared across runs.
    """

    def __init__(
        self,
        model_name: str = "buffalo_l",
        model_root: Optional[str] = None,
        providers: Optional[Sequence[str]] = None,
        det_size: Tuple[int, int] = (640, 640),
        det_thresh: float = 0.5,
        threads: int = 2,
        analysis_factory: Optional[AnalysisFactory] = None,
    ) -> None:
        self.model_name = model_name
        self.model_root = str(Path(model_root or DEFAULT_MODEL_ROOT).expanduser())
        self.providers: Tuple[str, ...] = _default_providers() if providers is None else tuple(providers)
        self.det_size = det_size
        self.det_thresh = det_thresh
        self.threads = max(1, int(threads))
        self._factory = analysis_factory or _insightface_factory
        self._app: Any = None
        self._lock = threading.Lock()
        self.backend: Optional[str] = None

    @classmethod
    def from_config(cls, config, **kwargs: Any) -> "ModelRegistry":
        return cls(
            model_name=config.model_name,
            model_root=config.model_root,
            providers=config.providers,
            det_size=config.det_size,
            det_thresh=config.det_thresh,
            threads=config.threads,
            **kwargs,
        )

    @property
    def is_ready(self) -> bool:
        return self._app is not None

    def load(self) -> "ModelRegistry":
        if self._app is not None:
            return self
        with self._lock:
            if self._app is not None:
                return self
            threads = str(self.threads)
            os.environ.setdefault("OMP_NUM_THREADS", threads)
            os.environ.setdefault("MKL_NUM_THREADS", threads)
            os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", threads)
            LOGGER.info(
                "Loading face models %s from %s providers=%s det_size=%s",
                self.model_name,
                self.model_root,
                self.providers,
                self.det_size,
            )
            try:
                app = self._factory(
                    name=self.model_name,
                    root=self.model_root,
                    providers=list(self.providers),
                    allowed_modules=list(ALLOWED_MODULES),
                )
                app.prepare(ctx_id=0, det_thresh=self.det_thresh, det_size=self.det_size)
            except Exception as exc:
                raise ModelLoadError(f"Unable to load face models {self.model_name!r}: {exc}") from exc

            models = getattr(app, "models", None) or {}
            missing = [name for name in ("detection", "recognition") if name not in models]
            if missing:
                raise ModelLoadError(
                    f"Model pack {self.model_name!r} under {self.model_root} lacks required models: {missing}"
                )
            try:
                self.backend = models["recognition"].session.get_providers()[0]
            except Exception:  # pragma: no cover - provider introspection best-effort
                self.backend = None
            self._app = app
            LOGGER.info("Face models ready (modules=%s backend=%s)", sorted(models), self.backend)
        return self

    def analyze(self, image: np.ndarray) -> List[Any]:
        """Detect faces and compute their embeddings on a BGR image."""
        app = self._app
        if app is None:
            raise NotReadyError()
        return list(app.get(image))
