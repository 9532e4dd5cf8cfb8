"""Run-scoped working storage for uploads and extracted frames."""

from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

LOGGER = logging.getLogger("facefind.pipeline.workspace")


def default_workspace_root() -> Path:
    return Path(tempfile.gettempdir()) / "facefind"


def new_run_id() -> str:
    return uuid.uuid4().hex


def run_dir_for(run_id: str, workspace_root: Optional[Path] = None) -> Path:
    base = Path(workspace_root) if workspace_root is not None else default_workspace_root()
    return base / f"run_{run_id}"


@dataclass
class RunWorkspace:
    run_id: str
    root: Path

    @property
    def frames_dir(self) -> Path:
        return self.root / "frames"

    def write_payload(self, name: str, payload: bytes) -> Path:
        path = self.root / name
        path.write_bytes(payload)
        return path

    def release(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)
        if self.root.exists():
            LOGGER.warning("Run %s: working storage %s could not be fully removed", self.run_id, self.root)
        else:
            LOGGER.debug("Run %s: released working storage %s", self.run_id, self.root)


@contextmanager
def run_workspace(workspace_root: Optional[Path] = None, run_id: Optional[str] = None) -> Iterator[RunWorkspace]:
    """Create ``run_<id>/frames`` under the root and remove it on exit."""
    run_id = run_id or new_run_id()
    root = run_dir_for(run_id, workspace_root)
    root.parent.mkdir(parents=True, exist_ok=True)
    root.mkdir()
    workspace = RunWorkspace(run_id=run_id, root=root)
    try:
        workspace.frames_dir.mkdir()
        yield workspace
    finally:
        workspace.release()
