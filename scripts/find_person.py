#!/usr/bin/env python3
"""CLI for locating a person in a video from one reference photo."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml

from facefind.config import AnalysisConfig, apply_overrides, load_config
from facefind.errors import ConfigError, FaceFindError
from facefind.io_utils import setup_logging
from facefind.pipeline.analysis import AnalysisOrchestrator, AnalysisRequest, run_with_timeout
from facefind.pipeline.export import write_matches_csv, write_result_json
from facefind.recognition.registry import ModelRegistry


LOGGER = logging.getLogger("scripts.find_person")

EXIT_USER_ERROR = 2
EXIT_FAILURE = 1


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find where the person in a reference photo appears in a video")
    parser.add_argument("video", type=Path, help="Path to the input video file")
    parser.add_argument("reference", type=Path, help="Photo showing the person to look for")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config (see configs/analysis.yaml); CLI flags take precedence",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between sampled frames (default 3.0)",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Similarity a face must exceed to count as a match (default 0.4)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Abandon the run after this many seconds (default 300)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Frames scored concurrently (default 1)",
    )
    parser.add_argument(
        "--max-frames",
        type=int,
        default=None,
        help="Stop sampling after this many frames",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="Execution providers for ONNXRuntime (e.g. CUDAExecutionProvider)",
    )
    parser.add_argument("--model-name", type=str, default=None, help="InsightFace model pack (default buffalo_l)")
    parser.add_argument("--model-root", type=str, default=None, help="Directory holding InsightFace model packs")
    parser.add_argument("--ffmpeg", type=str, default=None, help="Path to the ffmpeg binary")
    parser.add_argument(
        "--workspace-root",
        type=str,
        default=None,
        help="Where per-run working directories are created (default: system temp)",
    )
    parser.add_argument("--output", type=Path, default=None, help="Write the result JSON here instead of stdout")
    parser.add_argument("--matches-csv", type=Path, default=None, help="Also write one CSV row per match")
    parser.add_argument("--no-progress", action="store_true", help="Disable the frame progress bar")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log per-face similarities")
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> AnalysisConfig:
    """Defaults < YAML config < CLI flags; bad settings raise ``ConfigError``."""
    try:
        config = load_config(args.config)
        config = apply_overrides(
            config,
            sample_interval_seconds=args.interval,
            match_threshold=args.threshold,
            timeout_seconds=args.timeout,
            score_workers=args.workers,
            max_frames=args.max_frames,
            providers=args.providers or None,
            model_name=args.model_name,
            model_root=args.model_root,
            ffmpeg_path=args.ffmpeg,
            workspace_root=args.workspace_root,
        )
        if args.no_progress:
            config = apply_overrides(config, progress=False)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    return config


def _emit(payload: Dict[str, Any], output: Optional[Path]) -> None:
    if output is None:
        json.dump(payload, sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = resolve_config(args)
        registry = ModelRegistry.from_config(config).load()
        orchestrator = AnalysisOrchestrator(registry, config=config)
        result = run_with_timeout(orchestrator, AnalysisRequest(video=args.video, reference=args.reference))
    except FaceFindError as exc:
        LOGGER.error("Analysis failed: %s", exc)
        _emit(exc.to_dict(), None)
        return EXIT_USER_ERROR if exc.user_correctable else EXIT_FAILURE

    if args.output is not None:
        write_result_json(result, args.output)
        LOGGER.info("Result written to %s", args.output)
    _emit(result.to_dict(), args.output)
    if args.matches_csv is not None:
        write_matches_csv(result, args.matches_csv)
    LOGGER.info(result.summary.message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
