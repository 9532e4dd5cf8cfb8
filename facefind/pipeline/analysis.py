"""End-to-end analysis: reference face → sampled frames → scored matches → summary."""

from __future__ import annotations

import logging
import math
import shutil
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

import cv2
import numpy as np
from tqdm import tqdm

from facefind.config import AnalysisConfig
from facefind.errors import (
    AnalysisCancelledError,
    AnalysisTimeoutError,
    FaceFindError,
    InferenceError,
    InvalidInputError,
    NoReferenceFaceError,
)
from facefind.recognition.embedder import FaceEmbedder
from facefind.recognition.matcher import is_match, similarity, summary_message
from facefind.recognition.registry import ModelRegistry
from facefind.sampling.frames import FrameSampler, probe_video
from facefind.pipeline.workspace import RunWorkspace, new_run_id, run_dir_for, run_workspace
from facefind.types import AnalysisResult, AnalysisSummary, Frame, Match

LOGGER = logging.getLogger("facefind.pipeline.analysis")

Payload = Union[bytes, bytearray, Path, str]


class AnalysisStage(str, Enum):
    IDLE = "idle"
    VALIDATING_INPUT = "validating_input"
    EXTRACTING_REFERENCE = "extracting_reference"
    SAMPLING_FRAMES = "sampling_frames"
    SCORING_FRAMES = "scoring_frames"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"


StageCallback = Callable[[str, AnalysisStage], None]


@dataclass
class AnalysisRequest:
    """A video and a reference photo, each as raw bytes or a file path."""

    video: Optional[Payload]
    reference: Optional[Payload]
    video_suffix: str = ".mp4"


@dataclass
class FrameScore:
    frame: Frame
    faces_found: int = 0
    best_similarity: float = float("-inf")
    matches: List[Match] = field(default_factory=list)
    failed: bool = False


def _is_missing(payload: Optional[Payload]) -> bool:
    if payload is None:
        return True
    if isinstance(payload, (bytes, bytearray)):
        return len(payload) == 0
    return not Path(payload).is_file()


def _decode_reference(payload: Payload) -> Union[np.ndarray, Path]:
    if isinstance(payload, (bytes, bytearray)):
        buffer = np.frombuffer(bytes(payload), dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if image is None:
            raise InferenceError("Unable to decode reference image payload")
        return image
    return Path(payload)


def score_frame(embedder: FaceEmbedder, frame: Frame, reference: np.ndarray, threshold: float) -> FrameScore:
    """Detect faces in one frame and score each against the reference.

    An inference fault degrades the frame to zero detections.
    """
    try:
        detections = embedder.detect_all(frame.path)
    except InferenceError as exc:
        LOGGER.warning(
            "Frame %d (t=%.1fs): inference failed, counting zero faces: %s",
            frame.index,
            frame.timestamp_seconds,
            exc,
        )
        return FrameScore(frame=frame, failed=True)

    result = FrameScore(frame=frame, faces_found=len(detections))
    for face_idx, detection in enumerate(detections):
        if detection.embedding is None:
            LOGGER.debug("  Frame %d face %d: no embedding, not scored", frame.index, face_idx + 1)
            continue
        score = similarity(reference, detection.embedding)
        LOGGER.debug("  Frame %d face %d: similarity = %.1f%%", frame.index, face_idx + 1, score * 100.0)
        result.best_similarity = max(result.best_similarity, score)
        if is_match(score, threshold):
            result.matches.append(
                Match(
                    timestamp_seconds=frame.timestamp_seconds,
                    confidence=score,
                    bbox=detection.bbox,
                    frame_index=frame.index,
                )
            )
    LOGGER.debug(
        "Frame %d (t=%.1fs): %d matches (%d faces detected)",
        frame.index,
        frame.timestamp_seconds,
        len(result.matches),
        result.faces_found,
    )
    return result


def aggregate(frame_scores: Iterable[FrameScore], total_frames: int) -> AnalysisResult:
    """Reduce per-frame scores into the final result; independent of input order."""
    scores = list(frame_scores)
    matches = sorted(
        (match for score in scores for match in score.matches),
        key=lambda m: (m.timestamp_seconds, m.frame_index),
    )
    faces_found = sum(score.faces_found for score in scores)
    best = max((score.best_similarity for score in scores), default=float("-inf"))
    # 0.0 when no face could be scored
    max_similarity = best if math.isfinite(best) else 0.0
    summary = AnalysisSummary(
        total_frames=total_frames,
        total_detections=len(matches),
        total_faces_found=faces_found,
        max_similarity=max_similarity,
        message=summary_message(len(matches), faces_found, max_similarity),
        failed_frames=sum(1 for score in scores if score.failed),
    )
    return AnalysisResult(matches=tuple(matches), summary=summary)


class AnalysisOrchestrator:
    """Drives one analysis run per ``run()`` call.

    The orchestrator holds no per-run state, so one instance (and its loaded
    registry) can serve concurrent runs.
    """

    def __init__(
        self,
        registry: Optional[ModelRegistry],
        config: Optional[AnalysisConfig] = None,
        sampler: Optional[FrameSampler] = None,
        embedder: Optional[FaceEmbedder] = None,
        on_stage: Optional[StageCallback] = None,
    ) -> None:
        if registry is None and embedder is None:
            raise ValueError("AnalysisOrchestrator needs a ModelRegistry or a FaceEmbedder")
        self.config = (config or AnalysisConfig()).validate()
        self.registry = registry
        self.embedder = embedder or FaceEmbedder(registry)
        self.sampler = sampler or FrameSampler(
            ffmpeg_path=self.config.ffmpeg_path,
            max_frames=self.config.max_frames,
        )
        self.on_stage = on_stage

    @property
    def workspace_root(self) -> Optional[Path]:
        if self.config.workspace_root is None:
            return None
        return Path(self.config.workspace_root).expanduser()

    def _enter(self, run_id: str, stage: AnalysisStage, cancel_event: Optional[threading.Event] = None) -> AnalysisStage:
        if cancel_event is not None and cancel_event.is_set() and stage not in (AnalysisStage.DONE, AnalysisStage.FAILED):
            raise AnalysisCancelledError()
        LOGGER.debug("Run %s -> %s", run_id, stage.value)
        if self.on_stage is not None:
            self.on_stage(run_id, stage)
        return stage

    def run(
        self,
        request: AnalysisRequest,
        *,
        run_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalysisResult:
        run_id = run_id or new_run_id()
        stage = self._enter(run_id, AnalysisStage.IDLE)
        try:
            stage = self._enter(run_id, AnalysisStage.VALIDATING_INPUT, cancel_event)
            missing = [name for name in ("video", "reference") if _is_missing(getattr(request, name))]
            if missing:
                raise InvalidInputError(f"Video and reference image are required (missing: {', '.join(missing)})")

            stage = self._enter(run_id, AnalysisStage.EXTRACTING_REFERENCE, cancel_event)
            reference = self.embedder.detect_single(_decode_reference(request.reference))
            if reference is None:
                raise NoReferenceFaceError()
            LOGGER.info("Run %s: reference face found (score=%.2f)", run_id, reference.det_score)

            with run_workspace(self.workspace_root, run_id) as workspace:
                stage = self._enter(run_id, AnalysisStage.SAMPLING_FRAMES, cancel_event)
                frames = self._sample(workspace, request, cancel_event)

                stage = self._enter(run_id, AnalysisStage.SCORING_FRAMES, cancel_event)
                scores = self._score_frames(frames, reference.embedding, cancel_event)

                stage = self._enter(run_id, AnalysisStage.AGGREGATING, cancel_event)
                result = aggregate(scores, total_frames=len(frames))
        except FaceFindError as exc:
            exc.stage = stage.value
            exc.run_id = run_id
            self._enter(run_id, AnalysisStage.FAILED)
            LOGGER.error("Run %s failed during %s: %s", run_id, stage.value, exc)
            raise
        except Exception:
            self._enter(run_id, AnalysisStage.FAILED)
            LOGGER.exception("Run %s failed during %s", run_id, stage.value)
            raise

        self._enter(run_id, AnalysisStage.DONE)
        summary = result.summary
        LOGGER.info(
            "Run %s complete: frames=%d faces=%d matches=%d best=%.1f%%",
            run_id,
            summary.total_frames,
            summary.total_faces_found,
            summary.total_detections,
            summary.max_similarity * 100.0,
        )
        return result

    def _sample(
        self,
        workspace: RunWorkspace,
        request: AnalysisRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Frame]:
        video = request.video
        if isinstance(video, (bytes, bytearray)):
            video_path = workspace.write_payload(f"video{request.video_suffix}", bytes(video))
        else:
            video_path = Path(video)
        info = probe_video(video_path)
        if info is not None:
            LOGGER.info(
                "Video %s: %dx%d fps=%.2f duration=%s",
                video_path.name,
                info.width,
                info.height,
                info.fps,
                f"{info.duration_seconds:.1f}s" if info.duration_seconds is not None else "unknown",
            )
        return self.sampler.extract(
            video_path,
            workspace.frames_dir,
            self.config.sample_interval_seconds,
            cancel_event=cancel_event,
        )

    def _score_frames(
        self,
        frames: Sequence[Frame],
        reference: np.ndarray,
        cancel_event: Optional[threading.Event],
    ) -> List[FrameScore]:
        threshold = self.config.match_threshold
        LOGGER.info("Processing %d frames (threshold=%.2f)", len(frames), threshold)

        def _score(frame: Frame) -> FrameScore:
            if cancel_event is not None and cancel_event.is_set():
                raise AnalysisCancelledError()
            return score_frame(self.embedder, frame, reference, threshold)

        progress = dict(total=len(frames), desc="Scoring frames", unit="frame", disable=not self.config.progress)
        workers = min(self.config.score_workers, len(frames))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="facefind-score") as pool:
                return list(tqdm(pool.map(_score, frames), **progress))
        return [_score(frame) for frame in tqdm(frames, **progress)]


def run_with_timeout(
    orchestrator: AnalysisOrchestrator,
    request: AnalysisRequest,
    timeout_seconds: Optional[float] = None,
) -> AnalysisResult:
    """Run one analysis under a wall-clock budget.

    The run executes on a daemon thread, so an abandoned run never keeps the
    process alive. On timeout cancellation is signalled (stopping the decoder
    or the scoring loop), the run's working storage is removed right away and
    ``AnalysisTimeoutError`` is raised. A frame already inside the model
    finishes in the background.
    """
    timeout = orchestrator.config.timeout_seconds if timeout_seconds is None else float(timeout_seconds)
    run_id = new_run_id()
    cancel_event = threading.Event()
    future: Future = Future()

    def _target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = orchestrator.run(request, run_id=run_id, cancel_event=cancel_event)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    worker = threading.Thread(target=_target, name=f"facefind-run-{run_id[:8]}", daemon=True)
    worker.start()
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError:
        cancel_event.set()
        shutil.rmtree(run_dir_for(run_id, orchestrator.workspace_root), ignore_errors=True)
        LOGGER.error("Run %s abandoned after %.0fs timeout", run_id, timeout)
        error = AnalysisTimeoutError(timeout)
        error.run_id = run_id
        raise error from None
