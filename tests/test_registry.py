import numpy as np
import pytest

from facefind.config import AnalysisConfig
from facefind.errors import ModelLoadError, NotReadyError
from facefind.recognition.registry import ALLOWED_MODULES, ModelRegistry


class FakeApp:
    def __init__(self, models=None):
        self.models = models if models is not None else {"detection": object(), "recognition": object()}
        self.prepared = None

    def prepare(self, ctx_id, det_thresh=0.5, det_size=(640, 640)):
        self.prepared = {"ctx_id": ctx_id, "det_thresh": det_thresh, "det_size": det_size}

    def get(self, image):
        return ["face"]


class CountingFactory:
    def __init__(self, app=None, error=None):
        self.app = app or FakeApp()
        self.error = error
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.app


def test_load_is_idempotent():
    factory = CountingFactory()
    registry = ModelRegistry(providers=["CPUExecutionProvider"], analysis_factory=factory)
    assert not registry.is_ready

    assert registry.load() is registry
    registry.load()
    registry.load()

    assert registry.is_ready
    assert len(factory.calls) == 1
    call = factory.calls[0]
    assert call["name"] == "buffalo_l"
    assert call["providers"] == ["CPUExecutionProvider"]
    assert call["allowed_modules"] == list(ALLOWED_MODULES)
    assert factory.app.prepared["det_size"] == (640, 640)


def test_analyze_before_load_raises_not_ready():
    registry = ModelRegistry(analysis_factory=CountingFactory())
    with pytest.raises(NotReadyError):
        registry.analyze(np.zeros((4, 4, 3), dtype=np.uint8))


def test_analyze_after_load_delegates_to_models():
    registry = ModelRegistry(analysis_factory=CountingFactory()).load()
    assert registry.analyze(np.zeros((4, 4, 3), dtype=np.uint8)) == ["face"]


def test_load_failure_is_wrapped_and_can_be_retried():
    factory = CountingFactory(error=OSError("weights missing"))
    registry = ModelRegistry(analysis_factory=factory)

    with pytest.raises(ModelLoadError) as excinfo:
        registry.load()
    assert "weights missing" in str(excinfo.value)
    assert not registry.is_ready

    factory.error = None
    registry.load()
    assert registry.is_ready
    assert len(factory.calls) == 2


def test_load_rejects_pack_without_recognizer():
    factory = CountingFactory(app=FakeApp(models={"detection": object()}))
    registry = ModelRegistry(analysis_factory=factory)
    with pytest.raises(ModelLoadError):
        registry.load()
    assert not registry.is_ready


def test_from_config_carries_model_settings(tmp_path):
    config = AnalysisConfig(
        model_name="antelopev2",
        model_root=str(tmp_path),
        providers=("CUDAExecutionProvider",),
        det_size=(320, 320),
        det_thresh=0.6,
    )
    registry = ModelRegistry.from_config(config, analysis_factory=CountingFactory())
    assert registry.model_name == "antelopev2"
    assert registry.model_root == str(tmp_path)
    assert registry.providers == ("CUDAExecutionProvider",)
    assert registry.det_size == (320, 320)
    assert registry.det_thresh == 0.6
