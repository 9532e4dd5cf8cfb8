"""Persist analysis results for downstream consumers (e.g. a highlight renderer)."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from facefind.io_utils import dump_json, ensure_dir
from facefind.types import AnalysisResult

LOGGER = logging.getLogger("facefind.pipeline.export")

MATCH_COLUMNS = ["frame_index", "timestamp_s", "confidence", "x", "y", "width", "height"]


def matches_frame(result: AnalysisResult) -> pd.DataFrame:
    """One row per match, ordered by timestamp."""
    rows = [
        {
            "frame_index": match.frame_index,
            "timestamp_s": match.timestamp_seconds,
            "confidence": match.confidence,
            "x": match.bbox.x,
            "y": match.bbox.y,
            "width": match.bbox.width,
            "height": match.bbox.height,
        }
        for match in result.matches
    ]
    return pd.DataFrame(rows, columns=MATCH_COLUMNS)


def write_matches_csv(result: AnalysisResult, path: Path) -> Path:
    ensure_dir(path.parent)
    matches_frame(result).to_csv(path, index=False)
    LOGGER.info("Wrote %d matches to %s", len(result.matches), path)
    return path


def write_result_json(result: AnalysisResult, path: Path) -> Path:
    ensure_dir(path.parent)
    dump_json(path, result.to_dict())
    return path
