"""Exception taxonomy for analysis runs.

Every error raised out of a run carries a stable ``code`` and a
``user_correctable`` flag so callers can tell bad uploads apart from broken
tooling or deployment problems.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class FaceFindError(Exception):
    """Base class for all facefind errors."""

    code = "internal_error"
    user_correctable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.stage: Optional[str] = None
        self.run_id: Optional[str] = None

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "userCorrectable": self.user_correctable,
            "stage": self.stage,
            "runId": self.run_id,
        }
        payload.update(self.details())
        return {"error": payload}


class InvalidInputError(FaceFindError):
    """A required payload (video or reference image) is missing."""

    code = "invalid_input"
    user_correctable = True


class ConfigError(FaceFindError):
    """Settings from the config file or the command line are invalid."""

    code = "invalid_config"
    user_correctable = True


class NoReferenceFaceError(FaceFindError):
    """No face could be found in the reference photo."""

    code = "no_reference_face"
    user_correctable = True

    def __init__(self, message: str = "No face detected in reference image") -> None:
        super().__init__(message)


class ExtractionError(FaceFindError):
    """The video decoder failed."""

    code = "extraction_failed"

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr

    def details(self) -> Dict[str, Any]:
        return {"exitCode": self.exit_code}


class InferenceError(FaceFindError):
    """Face detection or embedding failed for an image."""

    code = "inference_failed"


class NotReadyError(FaceFindError):
    """Detection was requested before the models were loaded."""

    code = "models_not_ready"

    def __init__(self, message: str = "Models are not loaded; call ModelRegistry.load() first") -> None:
        super().__init__(message)


class ModelLoadError(FaceFindError):
    """Model weights could not be loaded."""

    code = "model_load_failed"


class AnalysisTimeoutError(FaceFindError):
    """The run exceeded the caller's wall-clock budget and was abandoned."""

    code = "timeout"

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Analysis did not finish within {timeout_seconds:.0f}s")
        self.timeout_seconds = timeout_seconds

    def details(self) -> Dict[str, Any]:
        return {"timeoutSeconds": self.timeout_seconds}


class AnalysisCancelledError(FaceFindError):
    """The run was abandoned by its caller."""

    code = "cancelled"

    def __init__(self, message: str = "Analysis cancelled") -> None:
        super().__init__(message)
