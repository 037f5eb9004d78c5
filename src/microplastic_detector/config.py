"""Runtime configuration for the detection → characterization pipeline."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from microplastic_detector.detectors.roboflow import DEFAULT_API_KEY_ENV, DEFAULT_MODEL_ID


@dataclass(frozen=True)
class AnalyzerConfig:
    """Settings shared by the session and the batch script.

    Attributes:
        roboflow_model: Roboflow model slug and version.
        roboflow_api_key_env: Environment variable holding the Roboflow key.
        vlm_model: Provider-prefixed LiteLLM model name.
        vlm_temperature: Sampling temperature for characterization.
        vlm_timeout_s: Characterization request timeout.
        vlm_max_tokens: Maximum tokens in the characterization reply.
        confidence_threshold: Minimum detector confidence to display.
        max_image_dim: Longest side after the pre-detection downscale.
    """

    roboflow_model: str = DEFAULT_MODEL_ID
    roboflow_api_key_env: str = DEFAULT_API_KEY_ENV
    vlm_model: str = "gemini/gemini-1.5-flash-latest"
    vlm_temperature: float = 0.0
    vlm_timeout_s: float = 60.0
    vlm_max_tokens: int = 4000
    confidence_threshold: float = 0.5
    max_image_dim: int = 1024

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if self.max_image_dim <= 0:
            raise ValueError(f"max_image_dim must be > 0, got {self.max_image_dim}")
        if "/" not in self.vlm_model:
            raise ValueError(
                "LiteLLM requires a provider-prefixed model name "
                f"(for example 'gemini/gemini-1.5-flash-latest'), got {self.vlm_model!r}"
            )

    def with_overrides(self, overrides: Mapping[str, Any]) -> AnalyzerConfig:
        """Return a copy with known keys replaced; unknown keys raise."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {unknown}")
        return replace(self, **dict(overrides))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AnalyzerConfig:
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        base = cls()
        return cls(
            roboflow_model=env.get("ROBOFLOW_MODEL", base.roboflow_model),
            vlm_model=env.get("VLM_MODEL", base.vlm_model),
            vlm_max_tokens=int(env.get("VLM_MAX_TOKENS", base.vlm_max_tokens)),
            vlm_timeout_s=float(env.get("VLM_TIMEOUT_S", base.vlm_timeout_s)),
            confidence_threshold=float(
                env.get("CONFIDENCE_THRESHOLD", base.confidence_threshold)
            ),
            max_image_dim=int(env.get("MAX_IMAGE_DIM", base.max_image_dim)),
        )

    @classmethod
    def from_yaml(cls, path: Path, base: AnalyzerConfig | None = None) -> AnalyzerConfig:
        """Load overrides from a YAML mapping on top of `base` (defaults if None)."""
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping in {path}, got {type(data).__name__}")
        return (base or cls()).with_overrides(data)
