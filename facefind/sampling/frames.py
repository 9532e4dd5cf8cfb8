"""Fixed-interval frame extraction through an external ffmpeg process."""

from __future__ import annotations

import logging
import re
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import cv2

from facefind.errors import AnalysisCancelledError, ExtractionError
from facefind.io_utils import list_images
from facefind.types import Frame

LOGGER = logging.getLogger("facefind.sampling.frames")

FRAME_PATTERN = "frame_%05d.jpg"
FRAME_NAME_RE = re.compile(r"frame_(\d+)\.jpg")
STDERR_TAIL_CHARS = 2000
CANCEL_POLL_SECONDS = 0.2
TERMINATE_GRACE_SECONDS = 5.0


@dataclass
class VideoInfo:
    fps: float
    frame_count: int
    width: int
    height: int

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.fps <= 0 or self.frame_count <= 0:
            return None
        return self.frame_count / self.fps


def probe_video(video_path: Path) -> Optional[VideoInfo]:
    """Read basic stream properties; ``None`` when OpenCV cannot open the file."""
    cap = cv2.VideoCapture(str(video_path))
    try:
        if not cap.isOpened():
            return None
        return VideoInfo(
            fps=float(cap.get(cv2.CAP_PROP_FPS) or 0.0),
            frame_count=int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0),
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
        )
    finally:
        cap.release()


def _format_rate(interval_seconds: float) -> str:
    text = f"{interval_seconds:.6f}".rstrip("0").rstrip(".")
    return f"1/{text}"


def _frame_number(path: Path) -> int:
    return int(FRAME_NAME_RE.fullmatch(path.name).group(1))


def sorted_frame_paths(output_dir: Path) -> List[Path]:
    """Decoder output ordered by sequence number (``frame_100000`` after ``frame_99999``)."""
    paths = [path for path in list_images(output_dir) if FRAME_NAME_RE.fullmatch(path.name)]
    return sorted(paths, key=_frame_number)


def run_decoder(
    cmd: Sequence[str],
    cancel_event: Optional[threading.Event] = None,
    poll_seconds: float = CANCEL_POLL_SECONDS,
) -> subprocess.CompletedProcess:
    """Run ``cmd`` to completion, killing it as soon as ``cancel_event`` is set."""
    with subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True) as proc:
        while True:
            try:
                _, stderr = proc.communicate(timeout=poll_seconds)
            except subprocess.TimeoutExpired:
                if cancel_event is None or not cancel_event.is_set():
                    continue
                LOGGER.warning("Stopping decoder pid=%d: run cancelled", proc.pid)
                proc.terminate()
                try:
                    proc.communicate(timeout=TERMINATE_GRACE_SECONDS)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.communicate()
                raise AnalysisCancelledError("Frame extraction cancelled")
            return subprocess.CompletedProcess(list(cmd), proc.returncode, "", stderr)


class FrameSampler:
    """Writes one still every ``interval_seconds`` of video, starting at t=0."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        max_frames: Optional[int] = None,
        runner: Callable[..., subprocess.CompletedProcess] = run_decoder,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.max_frames = max_frames
        self._run = runner

    def build_command(self, video_path: Path, output_dir: Path, interval_seconds: float) -> List[str]:
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(video_path),
            "-vf", f"fps={_format_rate(interval_seconds)}",
        ]
        if self.max_frames is not None:
            cmd += ["-frames:v", str(int(self.max_frames))]
        cmd += ["-y", str(output_dir / FRAME_PATTERN)]
        return cmd

    def extract(
        self,
        video_path: Path,
        output_dir: Path,
        interval_seconds: float,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Frame]:
        """Run the decoder and return frames ordered by timestamp.

        ``output_dir`` must exist and be empty; cleaning it up is the caller's
        job. A non-zero decoder exit fails the whole extraction. Setting
        ``cancel_event`` stops the decoder and raises ``AnalysisCancelledError``.
        """
        if not interval_seconds > 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        if not output_dir.is_dir():
            raise ValueError(f"Frame output directory does not exist: {output_dir}")
        if any(output_dir.iterdir()):
            raise ValueError(f"Frame output directory is not empty: {output_dir}")

        cmd = self.build_command(video_path, output_dir, interval_seconds)
        LOGGER.info("Extracting frames every %.2fs from %s", interval_seconds, video_path)
        LOGGER.debug("Decoder command: %s", " ".join(cmd))
        try:
            result = self._run(cmd, cancel_event=cancel_event)
        except FileNotFoundError as exc:
            raise ExtractionError(f"Video decoder not found: {self.ffmpeg_path}") from exc

        if result.returncode != 0:
            stderr = (result.stderr or "")[-STDERR_TAIL_CHARS:]
            LOGGER.error("ffmpeg exited with code %s: %s", result.returncode, stderr.strip())
            raise ExtractionError(
                f"ffmpeg process exited with code {result.returncode}",
                exit_code=result.returncode,
                stderr=stderr,
            )

        paths = sorted_frame_paths(output_dir)
        frames = [
            Frame(index=idx, timestamp_seconds=idx * interval_seconds, path=path)
            for idx, path in enumerate(paths)
        ]
        LOGGER.info("Extracted %d frames into %s", len(frames), output_dir)
        return frames
