import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

pytest.importorskip("cv2")

from facefind.errors import AnalysisCancelledError, ExtractionError
from facefind.sampling.frames import FrameSampler, run_decoder


class FakeDecoder:
    """Stands in for ``run_decoder``; writes ``count`` frames to the output pattern."""

    def __init__(self, count: int = 3, returncode: int = 0, stderr: str = ""):
        self.count = count
        self.returncode = returncode
        self.stderr = stderr
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        pattern = Path(cmd[-1])
        if self.returncode == 0:
            # written out of order on purpose
            for idx in reversed(range(1, self.count + 1)):
                (pattern.parent / (pattern.name % idx)).write_bytes(b"jpg")
        return subprocess.CompletedProcess(cmd, self.returncode, "", self.stderr)


def test_extract_orders_frames_and_assigns_timestamps(tmp_path):
    out = tmp_path / "frames"
    out.mkdir()
    decoder = FakeDecoder(count=4)
    sampler = FrameSampler(runner=decoder)

    frames = sampler.extract(tmp_path / "clip.mp4", out, 3.0)

    assert [frame.index for frame in frames] == [0, 1, 2, 3]
    assert [frame.timestamp_seconds for frame in frames] == [0.0, 3.0, 6.0, 9.0]
    assert [frame.path.name for frame in frames] == [
        "frame_00001.jpg",
        "frame_00002.jpg",
        "frame_00003.jpg",
        "frame_00004.jpg",
    ]
    cmd = decoder.commands[0]
    assert cmd[0] == "ffmpeg"
    assert "fps=1/3" in cmd
    assert str(tmp_path / "clip.mp4") in cmd


def test_fractional_interval_and_frame_cap_in_command(tmp_path):
    sampler = FrameSampler(ffmpeg_path="/opt/ffmpeg", max_frames=10)
    cmd = sampler.build_command(tmp_path / "v.mp4", tmp_path, 2.5)
    assert cmd[0] == "/opt/ffmpeg"
    assert "fps=1/2.5" in cmd
    assert cmd[cmd.index("-frames:v") + 1] == "10"


def test_nonzero_exit_raises_extraction_error(tmp_path):
    out = tmp_path / "frames"
    out.mkdir()
    sampler = FrameSampler(runner=FakeDecoder(returncode=1, stderr="moov atom not found"))

    with pytest.raises(ExtractionError) as excinfo:
        sampler.extract(tmp_path / "clip.mp4", out, 3.0)

    assert excinfo.value.exit_code == 1
    assert "moov atom not found" in excinfo.value.stderr
    assert excinfo.value.to_dict()["error"]["exitCode"] == 1


def test_missing_decoder_binary_raises_extraction_error(tmp_path):
    def _missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    out = tmp_path / "frames"
    out.mkdir()
    with pytest.raises(ExtractionError) as excinfo:
        FrameSampler(runner=_missing).extract(tmp_path / "clip.mp4", out, 3.0)
    assert excinfo.value.exit_code is None


def test_output_dir_must_exist_and_be_empty(tmp_path):
    sampler = FrameSampler(runner=FakeDecoder())
    with pytest.raises(ValueError):
        sampler.extract(tmp_path / "clip.mp4", tmp_path / "absent", 3.0)

    out = tmp_path / "frames"
    out.mkdir()
    (out / "stale.jpg").write_bytes(b"x")
    with pytest.raises(ValueError):
        sampler.extract(tmp_path / "clip.mp4", out, 3.0)


def test_interval_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        FrameSampler(runner=FakeDecoder()).extract(tmp_path / "clip.mp4", tmp_path, 0.0)


def test_frames_past_five_digits_keep_numeric_order(tmp_path):
    def _long_video(cmd, **kwargs):
        out = Path(cmd[-1]).parent
        for number in (100001, 99999, 100000, 10001):
            (out / f"frame_{number:05d}.jpg").write_bytes(b"jpg")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    out = tmp_path / "frames"
    out.mkdir()

    frames = FrameSampler(runner=_long_video).extract(tmp_path / "clip.mp4", out, 3.0)

    assert [frame.path.name for frame in frames] == [
        "frame_10001.jpg",
        "frame_99999.jpg",
        "frame_100000.jpg",
        "frame_100001.jpg",
    ]
    assert [frame.index for frame in frames] == [0, 1, 2, 3]


def test_cancel_event_reaches_the_decoder(tmp_path):
    seen = []

    def _runner(cmd, cancel_event=None, **kwargs):
        seen.append(cancel_event)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    out = tmp_path / "frames"
    out.mkdir()
    cancel = threading.Event()
    FrameSampler(runner=_runner).extract(tmp_path / "clip.mp4", out, 3.0, cancel_event=cancel)
    assert seen == [cancel]


def test_run_decoder_reports_exit_code_and_stderr():
    cmd = [sys.executable, "-c", "import sys; sys.stderr.write('moov atom not found'); sys.exit(3)"]
    result = run_decoder(cmd)
    assert result.returncode == 3
    assert "moov atom not found" in result.stderr


def test_run_decoder_stops_the_process_when_cancelled():
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(AnalysisCancelledError):
            run_decoder([sys.executable, "-c", "import time; time.sleep(30)"], cancel_event=cancel, poll_seconds=0.05)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 10
