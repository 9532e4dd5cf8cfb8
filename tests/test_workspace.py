import pytest

from facefind.pipeline.workspace import run_dir_for, run_workspace


def test_workspace_is_created_and_removed(tmp_path):
    with run_workspace(tmp_path, run_id="abc") as workspace:
        assert workspace.root == run_dir_for("abc", tmp_path)
        assert workspace.frames_dir.is_dir()
        payload = workspace.write_payload("video.mp4", b"data")
        assert payload.read_bytes() == b"data"
    assert not workspace.root.exists()


def test_workspace_is_removed_when_the_run_fails(tmp_path):
    with pytest.raises(RuntimeError):
        with run_workspace(tmp_path) as workspace:
            (workspace.frames_dir / "frame_00001.jpg").write_bytes(b"x")
            raise RuntimeError("boom")
    assert list(tmp_path.iterdir()) == []


def test_concurrent_runs_get_distinct_directories(tmp_path):
    with run_workspace(tmp_path) as first, run_workspace(tmp_path) as second:
        assert first.run_id != second.run_id
        assert first.root != second.root
