"""Display colors keyed by particle shape."""

from __future__ import annotations

from microplastic_detector.vision.types import RGBA, AnalyzedParticle, DisplayMode

DEFAULT_RGB: tuple[int, int, int] = (255, 0, 0)  # red
LABEL_ALPHA = 0.7
HIGHLIGHT_FILL_ALPHA = 0.2

SHAPE_RGB: dict[str, tuple[int, int, int]] = {
    "fiber": (0, 0, 255),
    "fragment": (0, 128, 0),
    "film": (255, 165, 0),
    "bead": (128, 0, 128),
    "pellet": (128, 0, 128),
    "foam": (255, 255, 0),
    "unknown": (128, 128, 128),
}
_FALLBACK_RGB = SHAPE_RGB["unknown"]


def rgb_for_particle(particle: AnalyzedParticle, mode: DisplayMode) -> tuple[int, int, int]:
    """Pick the semantic color for a particle in the given display mode.

    Red is used in confidence mode and whenever the analysis is missing or a
    sentinel. In every other mode the color follows the particle's shape so that
    boxes stay visually grouped whatever text the label shows.
    """
    if mode == "confidence" or not particle.has_usable_analysis:
        return DEFAULT_RGB
    assert particle.analysis is not None
    shape = (particle.analysis.shape or "").lower()
    return SHAPE_RGB.get(shape, _FALLBACK_RGB)


def color_for_particle(
    particle: AnalyzedParticle, mode: DisplayMode, alpha: float = 1.0
) -> RGBA:
    """RGBA variant of :func:`rgb_for_particle`."""
    r, g, b = rgb_for_particle(particle, mode)
    return (r, g, b, alpha)


def to_pil_rgba(color: RGBA) -> tuple[int, int, int, int]:
    """Convert an RGBA tuple with float alpha to 8-bit RGBA for PIL."""
    r, g, b, a = color
    return (r, g, b, round(max(0.0, min(1.0, a)) * 255))
