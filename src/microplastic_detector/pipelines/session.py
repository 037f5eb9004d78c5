"""Two-phase detection → characterization pipeline with stale-result guarding.

Each submitted image gets a new generation token. Every await point is followed
by a generation check; results that arrive for a superseded generation are
dropped instead of being merged into the current particle list.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from time import perf_counter
from typing import Any

from PIL import Image

from microplastic_detector.config import AnalyzerConfig
from microplastic_detector.detectors.roboflow import RoboflowDetector
from microplastic_detector.detectors.vlm_litellm import acharacterize
from microplastic_detector.errors import PipelineError
from microplastic_detector.pipelines.projection import (
    available_display_modes,
    compute_stats,
    filter_and_project,
)
from microplastic_detector.pipelines.reconcile import apply_global_fallback, reconcile_response
from microplastic_detector.vision.geometry import normalize_payload
from microplastic_detector.vision.image import decode_image, img_to_png_bytes, resize_image
from microplastic_detector.vision.overlay import overlay_instructions
from microplastic_detector.vision.types import (
    AnalysisStats,
    AnalyzedParticle,
    DisplayMode,
    DrawInstruction,
)
from microplastic_detector.vision.vis import render_annotated

LOG = logging.getLogger(__name__)

DetectFn = Callable[[bytes], Awaitable[Mapping[str, Any]]]
CharacterizeFn = Callable[[bytes, Sequence[AnalyzedParticle]], Awaitable[str]]


@dataclass(frozen=True)
class SessionState:
    """Snapshot of one pipeline run as seen by the display layer."""

    generation: int
    image: Image.Image | None = None
    particles: list[AnalyzedParticle] = field(default_factory=list)
    detection_error: PipelineError | None = None
    characterization_error: PipelineError | None = None
    analyzing: bool = False


@dataclass(frozen=True)
class SessionResult:
    """Outcome of :meth:`AnalysisSession.submit`.

    ``stale`` is True when a newer submission superseded this run; the state is
    then the snapshot this run reached and was not published.
    """

    state: SessionState
    stale: bool = False

    @property
    def generation(self) -> int:
        return self.state.generation

    @property
    def particles(self) -> list[AnalyzedParticle]:
        return self.state.particles

    @property
    def error(self) -> PipelineError | None:
        return self.state.detection_error or self.state.characterization_error


class AnalysisSession:
    """Runs the pipeline for successive images and keeps only the latest result.

    Args:
        detect: Coroutine returning the raw detector payload for PNG bytes.
        characterize: Coroutine returning the model's raw reply for an
            annotated PNG and the particles it shows.
        confidence_threshold: Display threshold used by the projection helpers.
        max_image_dim: Longest side of the image sent to the detector.
    """

    def __init__(
        self,
        detect: DetectFn,
        characterize: CharacterizeFn,
        *,
        confidence_threshold: float = 0.5,
        max_image_dim: int = 1024,
    ) -> None:
        self._detect = detect
        self._characterize = characterize
        self.confidence_threshold = confidence_threshold
        self.max_image_dim = max_image_dim
        self._generation = 0
        self._state = SessionState(generation=0)

    @classmethod
    def from_config(
        cls, cfg: AnalyzerConfig, detector: RoboflowDetector | None = None
    ) -> AnalysisSession:
        """Wire the Roboflow detector and the LiteLLM characterizer from `cfg`."""
        det = detector or RoboflowDetector(
            model_id=cfg.roboflow_model, api_key_env=cfg.roboflow_api_key_env
        )

        async def detect(png: bytes) -> Mapping[str, Any]:
            return await asyncio.to_thread(det.detect, png)

        async def characterize(png: bytes, particles: Sequence[AnalyzedParticle]) -> str:
            return await acharacterize(
                png,
                particles,
                model=cfg.vlm_model,
                temperature=cfg.vlm_temperature,
                max_tokens=cfg.vlm_max_tokens,
                timeout_s=cfg.vlm_timeout_s,
            )

        return cls(
            detect,
            characterize,
            confidence_threshold=cfg.confidence_threshold,
            max_image_dim=cfg.max_image_dim,
        )

    # ------------------------------------------------------------------
    # Generation guard
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> SessionState:
        return self._state

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def clear(self) -> None:
        """Forget the current image; any run still in flight becomes stale."""
        self._generation += 1
        self._state = SessionState(generation=self._generation)

    def _publish(self, state: SessionState) -> bool:
        if not self.is_current(state.generation):
            LOG.info(
                "Dropping result for stale generation %s (current=%s)",
                state.generation,
                self._generation,
            )
            return False
        self._state = state
        return True

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def submit(self, source: bytes | str | Path | Image.Image) -> SessionResult:
        """Run detection then characterization for a new image.

        Detection-phase failures end the run with ``state.detection_error`` set
        and no characterization call. Characterization-phase failures fall back
        to "Parse Error" analyses so the geometry stays available.
        """
        self.clear()
        gen = self._generation
        state = SessionState(generation=gen)
        t0 = perf_counter()

        # 1) Detection + normalization
        try:
            img = resize_image(decode_image(source), self.max_image_dim)
            payload = await self._detect(img_to_png_bytes(img))
            if not self.is_current(gen):
                return SessionResult(state=state, stale=True)
            particles = normalize_payload(payload)
        except Exception as e:  # noqa: BLE001
            if not self.is_current(gen):
                return SessionResult(state=state, stale=True)
            err = PipelineError("detection", str(e), cause=e)
            LOG.error("Detection phase failed (generation %s): %s", gen, e)
            state = replace(state, detection_error=err)
            self._publish(state)
            return SessionResult(state=state)

        state = replace(state, image=img, particles=particles, analyzing=bool(particles))
        self._publish(state)
        LOG.info(
            "Step 1/2 detection: generation=%s particles=%s took=%.2fs",
            gen,
            len(particles),
            perf_counter() - t0,
        )
        if not particles:
            LOG.info("Step 2/2 characterization: skipped (no particles)")
            return SessionResult(state=state)

        # 2) Annotation + characterization + reconciliation
        t1 = perf_counter()
        char_error: PipelineError | None = None
        try:
            annotated = img_to_png_bytes(render_annotated(img, particles))
            reply = await self._characterize(annotated, particles)
        except asyncio.CancelledError:
            # Resolve the published "analyzing" state before propagating.
            if self.is_current(gen):
                LOG.warning("Characterization cancelled (generation %s)", gen)
                self._publish(
                    replace(
                        state,
                        particles=apply_global_fallback(particles, "Analysis Error: cancelled"),
                        characterization_error=PipelineError(
                            "characterization", "Analysis was cancelled."
                        ),
                        analyzing=False,
                    )
                )
            raise
        except Exception as e:  # noqa: BLE001
            if not self.is_current(gen):
                return SessionResult(state=replace(state, analyzing=False), stale=True)
            LOG.warning("Characterization call failed (generation %s): %s", gen, e)
            merged = apply_global_fallback(particles, f"Analysis Error: {e}")
            char_error = PipelineError("characterization", str(e), cause=e)
        else:
            if not self.is_current(gen):
                return SessionResult(state=replace(state, analyzing=False), stale=True)
            rec = reconcile_response(particles, reply)
            merged = rec.particles
            if rec.error is not None:
                char_error = PipelineError(
                    "characterization",
                    "AI analysis completed, but response parsing failed.",
                    cause=rec.error,
                )

        state = replace(
            state, particles=merged, characterization_error=char_error, analyzing=False
        )
        self._publish(state)
        LOG.info(
            "Step 2/2 characterization: generation=%s degraded=%s took=%.2fs",
            gen,
            char_error is not None,
            perf_counter() - t1,
        )
        return SessionResult(state=state)

    # ------------------------------------------------------------------
    # Display projections over the current state
    # ------------------------------------------------------------------

    def displayed(self) -> list[AnalyzedParticle]:
        return filter_and_project(self._state.particles, self.confidence_threshold)

    def stats(self) -> AnalysisStats | None:
        shown = self.displayed()
        return compute_stats(shown) if shown else None

    def display_modes(self) -> list[DisplayMode]:
        return available_display_modes(self.stats())

    def overlay(
        self,
        rendered_width: float,
        rendered_height: float,
        display_mode: DisplayMode = "confidence",
        highlight_index: int | None = None,
    ) -> list[DrawInstruction]:
        """Overlay instructions for the current image at the given display size."""
        img = self._state.image
        if img is None:
            return []
        w, h = img.size
        return overlay_instructions(
            rendered_width,
            rendered_height,
            w,
            h,
            self.displayed(),
            display_mode,
            highlight_index,
        )

