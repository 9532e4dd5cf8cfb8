"""Analysis configuration: dataclass defaults, YAML loading and CLI overrides."""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from facefind.io_utils import load_yaml
from facefind.recognition.matcher import MATCH_THRESHOLD

LOGGER = logging.getLogger("facefind.config")

DEFAULT_SAMPLE_INTERVAL_SECONDS = 3.0
DEFAULT_TIMEOUT_SECONDS = 300.0


@dataclass
class AnalysisConfig:
    # Sampling
    sample_interval_seconds: float = DEFAULT_SAMPLE_INTERVAL_SECONDS
    max_frames: Optional[int] = None
    ffmpeg_path: str = "ffmpeg"
    # Matching
    match_threshold: float = MATCH_THRESHOLD
    # Models
    model_name: str = "buffalo_l"
    model_root: Optional[str] = None
    providers: Optional[Tuple[str, ...]] = None
    det_size: Tuple[int, int] = (640, 640)
    det_thresh: float = 0.5
    threads: int = 2
    # Run control
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    score_workers: int = 1
    workspace_root: Optional[str] = None
    progress: bool = True

    def validate(self) -> "AnalysisConfig":
        if not self.sample_interval_seconds > 0:
            raise ValueError(f"sample_interval_seconds must be > 0, got {self.sample_interval_seconds}")
        if not math.isfinite(self.match_threshold):
            raise ValueError(f"match_threshold must be finite, got {self.match_threshold}")
        if not self.timeout_seconds > 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.score_workers < 1:
            raise ValueError(f"score_workers must be >= 1, got {self.score_workers}")
        if self.max_frames is not None and self.max_frames < 1:
            raise ValueError(f"max_frames must be >= 1 when set, got {self.max_frames}")
        return self


_FIELD_NAMES = {f.name for f in dataclasses.fields(AnalysisConfig)}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in {"sample_interval_seconds", "match_threshold", "det_thresh", "timeout_seconds"}:
        return float(value)
    if name in {"max_frames", "threads", "score_workers"}:
        return int(value)
    if name == "det_size":
        if isinstance(value, (int, float)):
            return (int(value), int(value))
        width, height = value
        return (int(width), int(height))
    if name == "providers":
        if isinstance(value, str):
            return (value,)
        return tuple(str(v) for v in value)
    if name == "progress":
        return bool(value)
    return value


def config_from_mapping(data: Mapping[str, Any], base: Optional[AnalysisConfig] = None) -> AnalysisConfig:
    """Build a config from a mapping, ignoring (and warning about) unknown keys."""
    config = base or AnalysisConfig()
    updates: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in _FIELD_NAMES:
            LOGGER.warning("Ignoring unknown config key %r", key)
            continue
        updates[key] = _coerce(key, value)
    return dataclasses.replace(config, **updates).validate()


def load_config(path: Optional[Path] = None) -> AnalysisConfig:
    """Load ``AnalysisConfig`` from YAML; defaults when ``path`` is None.

    A top-level ``analysis:`` section is honored so the settings can live in a
    larger pipeline file.
    """
    if path is None:
        return AnalysisConfig().validate()
    data = load_yaml(Path(path))
    section = data.get("analysis", data)
    if not isinstance(section, Mapping):
        raise ValueError(f"'analysis' section in {path} must be a mapping")
    config = config_from_mapping(section)
    LOGGER.info("Loaded analysis config from %s", path)
    return config


def apply_overrides(config: AnalysisConfig, **overrides: Any) -> AnalysisConfig:
    """Apply CLI overrides; ``None`` means "not given" and keeps the config value."""
    present = {key: value for key, value in overrides.items() if value is not None}
    if not present:
        return config
    return config_from_mapping(present, base=config)
