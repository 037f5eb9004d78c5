"""Core data types shared across the detection and analysis pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

DisplayMode = Literal["confidence", "type", "color", "transparency"]

NOT_ANALYZED = "Not Analyzed"
PARSE_ERROR = "Parse Error"
UNKNOWN = "Unknown"


@dataclass(frozen=True)
class BoundingBox:
    """Detection box in coordinates relative to the image size.

    Attributes:
        x, y: Box center, nominally in [0, 1].
        width, height: Box size, nominally in [0, 1].
        confidence: Detector confidence in [0, 1].
        label: Detector class label (serialized as ``class``).
    """

    x: float
    y: float
    width: float
    height: float
    confidence: float
    label: str


@dataclass(frozen=True)
class ParticleAnalysis:
    """Characterization of a single particle, or a sentinel placeholder."""

    shape: str | None = None
    color: str | None = None
    transparency: str | None = None
    error: str | None = None
    reason: str | None = None

    @classmethod
    def not_analyzed(cls, reason: str) -> ParticleAnalysis:
        """Sentinel for a particle the model did not return."""
        return cls(
            shape=NOT_ANALYZED,
            color=NOT_ANALYZED,
            transparency=NOT_ANALYZED,
            reason=reason,
        )

    @classmethod
    def parse_error(cls, message: str) -> ParticleAnalysis:
        """Sentinel attached to every particle when the reply is unusable."""
        return cls(
            shape=PARSE_ERROR,
            color=PARSE_ERROR,
            transparency=PARSE_ERROR,
            error=message,
        )

    @property
    def is_usable(self) -> bool:
        """True when this is a genuine characterization."""
        return not self.error and self.shape != NOT_ANALYZED

    @property
    def note(self) -> str:
        return self.error or self.reason or ""


@dataclass(frozen=True)
class AnalyzedParticle:
    """A normalized box, its stable index, and its (optional) analysis."""

    box: BoundingBox
    index: int
    analysis: ParticleAnalysis | None = None

    @property
    def x(self) -> float:
        return self.box.x

    @property
    def y(self) -> float:
        return self.box.y

    @property
    def width(self) -> float:
        return self.box.width

    @property
    def height(self) -> float:
        return self.box.height

    @property
    def confidence(self) -> float:
        return self.box.confidence

    @property
    def label(self) -> str:
        return self.box.label

    @property
    def has_usable_analysis(self) -> bool:
        return self.analysis is not None and self.analysis.is_usable

    def with_analysis(self, analysis: ParticleAnalysis | None) -> AnalyzedParticle:
        """Return a copy with only the analysis replaced."""
        return replace(self, analysis=analysis)


@dataclass(frozen=True)
class AnalysisStats:
    """Category distributions over the particles that pass the threshold."""

    shapes: dict[str, int] = field(default_factory=dict)
    colors: dict[str, int] = field(default_factory=dict)
    transparency: dict[str, int] = field(default_factory=dict)
    count: int = 0
    analyzed_count: int = 0

    @property
    def has_stats(self) -> bool:
        return self.analyzed_count > 0


@dataclass(frozen=True)
class PixelRect:
    """Axis-aligned rectangle in pixels (top-left origin)."""

    x: float
    y: float
    width: float
    height: float

    def as_xyxy(self) -> tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height


RGBA = tuple[int, int, int, float]


@dataclass(frozen=True)
class DrawInstruction:
    """Declarative description of one particle overlay.

    Colors are RGBA tuples with alpha in [0, 1]; ``fill_color`` is None
    unless the particle is highlighted.
    """

    index: int
    rect: PixelRect
    stroke_color: RGBA
    stroke_width: float
    fill_color: RGBA | None
    label_text: str
    label_rect: PixelRect
    label_fill: RGBA
    text_color: RGBA = (255, 255, 255, 1.0)
    highlighted: bool = False
