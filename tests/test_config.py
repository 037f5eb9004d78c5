from __future__ import annotations

from pathlib import Path

import pytest

from microplastic_detector.config import AnalyzerConfig


def test_defaults() -> None:
    cfg = AnalyzerConfig()
    assert cfg.roboflow_model == "microplastic_detection/1"
    assert cfg.roboflow_api_key_env == "ROBOFLOW_API_KEY"
    assert cfg.confidence_threshold == 0.5
    assert cfg.max_image_dim == 1024
    assert cfg.vlm_max_tokens == 4000


@pytest.mark.parametrize(
    "kw",
    [
        {"confidence_threshold": -0.1},
        {"confidence_threshold": 1.5},
        {"max_image_dim": 0},
        {"vlm_model": "gpt-4o"},
    ],
)
def test_validation(kw: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        AnalyzerConfig(**kw)  # type: ignore[arg-type]


def test_from_env() -> None:
    cfg = AnalyzerConfig.from_env(
        {
            "ROBOFLOW_MODEL": "plastics/4",
            "VLM_MODEL": "openai/gpt-4o-mini",
            "VLM_MAX_TOKENS": "2000",
            "VLM_TIMEOUT_S": "12.5",
            "CONFIDENCE_THRESHOLD": "0.25",
            "MAX_IMAGE_DIM": "800",
        }
    )
    assert cfg.roboflow_model == "plastics/4"
    assert cfg.vlm_model == "openai/gpt-4o-mini"
    assert cfg.vlm_max_tokens == 2000
    assert cfg.vlm_timeout_s == 12.5
    assert cfg.confidence_threshold == 0.25
    assert cfg.max_image_dim == 800
    assert AnalyzerConfig.from_env({}) == AnalyzerConfig()


def test_from_yaml_overrides_base(tmp_path: Path) -> None:
    p = tmp_path / "cfg.yaml"
    p.write_text("confidence_threshold: 0.7\nvlm_temperature: 0.2\n", encoding="utf-8")
    base = AnalyzerConfig(max_image_dim=512)
    cfg = AnalyzerConfig.from_yaml(p, base=base)
    assert cfg.confidence_threshold == 0.7
    assert cfg.vlm_temperature == 0.2
    assert cfg.max_image_dim == 512


def test_from_yaml_empty_file_keeps_defaults(tmp_path: Path) -> None:
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert AnalyzerConfig.from_yaml(p) == AnalyzerConfig()


def test_from_yaml_rejects_non_mapping_and_unknown_keys(tmp_path: Path) -> None:
    listy = tmp_path / "list.yaml"
    listy.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Expected a mapping"):
        AnalyzerConfig.from_yaml(listy)

    unknown = tmp_path / "unknown.yaml"
    unknown.write_text("threshold: 0.3\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unknown config keys"):
        AnalyzerConfig.from_yaml(unknown)
