import logging

import pytest

from facefind.config import AnalysisConfig, apply_overrides, config_from_mapping, load_config


def test_defaults_match_baseline():
    config = load_config(None)
    assert config.sample_interval_seconds == 3.0
    assert config.match_threshold == 0.4
    assert config.timeout_seconds == 300.0
    assert config.score_workers == 1
    assert config.progress is True


def test_load_config_reads_analysis_section(tmp_path):
    path = tmp_path / "analysis.yaml"
    path.write_text(
        "analysis:\n"
        "  sample_interval_seconds: 2\n"
        "  match_threshold: 0.5\n"
        "  det_size: [320, 320]\n"
        "  providers: CPUExecutionProvider\n",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.sample_interval_seconds == 2.0
    assert config.match_threshold == 0.5
    assert config.det_size == (320, 320)
    assert config.providers == ("CPUExecutionProvider",)


def test_load_config_accepts_flat_mapping(tmp_path):
    path = tmp_path / "flat.yaml"
    path.write_text("score_workers: 3\n", encoding="utf-8")
    assert load_config(path).score_workers == 3


def test_unknown_keys_are_ignored_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="facefind.config"):
        config = config_from_mapping({"stride": 4, "timeout_seconds": 10})
    assert config.timeout_seconds == 10.0
    assert "stride" in caplog.text


def test_overrides_skip_missing_values():
    base = AnalysisConfig(match_threshold=0.5, sample_interval_seconds=2.0)
    config = apply_overrides(base, match_threshold=None, sample_interval_seconds=5)
    assert config.match_threshold == 0.5
    assert config.sample_interval_seconds == 5.0
    assert apply_overrides(base) is base


@pytest.mark.parametrize(
    "field_name, value",
    [
        ("sample_interval_seconds", 0),
        ("timeout_seconds", -1),
        ("score_workers", 0),
        ("max_frames", 0),
        ("match_threshold", float("nan")),
    ],
)
def test_invalid_values_are_rejected(field_name, value):
    with pytest.raises(ValueError):
        config_from_mapping({field_name: value})
