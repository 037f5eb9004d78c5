"""Draw instructions for the interactive, resizable particle overlay.

Everything here is a pure function of its arguments so it can be recomputed on
every geometry-affecting event (new image, new particle list, highlight change,
viewport resize). Device-pixel-ratio handling is left to the display layer.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from microplastic_detector.vision.geometry import denormalize, scale_rect
from microplastic_detector.vision.palette import HIGHLIGHT_FILL_ALPHA, LABEL_ALPHA, color_for_particle
from microplastic_detector.vision.types import (
    UNKNOWN,
    AnalyzedParticle,
    DisplayMode,
    DrawInstruction,
    PixelRect,
)
from microplastic_detector.vision.vis import load_font

LABEL_FONT_SIZE = 11
LABEL_PADDING = 3
STROKE_WIDTH = 2
HIGHLIGHT_STROKE_WIDTH = 4

TextMeasure = Callable[[str], float]


def _default_measure(text: str) -> float:
    return float(load_font(LABEL_FONT_SIZE).getlength(text))


def label_text(particle: AnalyzedParticle, mode: DisplayMode) -> str:
    """Return the overlay label for a particle in the given display mode."""
    pct = f"{particle.confidence * 100:.0f}"
    if not particle.has_usable_analysis:
        return f"{particle.label} ({pct}%)"
    analysis = particle.analysis
    assert analysis is not None
    if mode == "confidence":
        return f"{pct}%"
    if mode == "type":
        return analysis.shape or UNKNOWN
    if mode == "color":
        return analysis.color or UNKNOWN
    if mode == "transparency":
        return analysis.transparency or UNKNOWN
    return f"{particle.label} ({pct}%)"


def place_label(
    box: PixelRect,
    text_width: float,
    viewport_width: float,
    *,
    text_height: float = LABEL_FONT_SIZE,
    padding: float = LABEL_PADDING,
) -> PixelRect:
    """Place a label plate above `box`, or below it when it would clip the top.

    The plate is horizontally centered on the box and clamped to the viewport.
    """
    plate_w = text_width + padding * 2
    plate_h = text_height + padding

    y = box.y - text_height - padding * 1.5
    if y < 0:
        y = box.y + box.height + padding / 2

    x = box.x + box.width / 2 - text_width / 2 - padding
    x = max(0.0, x)
    if x + plate_w > viewport_width:
        x = viewport_width - plate_w
    return PixelRect(x=x, y=y, width=plate_w, height=plate_h)


def overlay_instructions(
    rendered_width: float,
    rendered_height: float,
    intrinsic_width: float,
    intrinsic_height: float,
    particles: Sequence[AnalyzedParticle],
    display_mode: DisplayMode,
    highlight_index: int | None,
    *,
    measure_text: TextMeasure | None = None,
) -> list[DrawInstruction]:
    """Compute overlay draw instructions for the current viewport.

    Args:
        rendered_width, rendered_height: Displayed size of the image.
        intrinsic_width, intrinsic_height: Natural size of the image.
        particles: Particles to draw, in display order.
        display_mode: Which analysis field the labels show.
        highlight_index: Index of the particle to emphasize, if any.
        measure_text: Width of a label string in pixels at the label font size.
            Defaults to measuring with the bundled PIL font.

    Returns:
        One instruction per particle, in input order. Empty when any size is
        non-positive (image not loaded yet).
    """
    if min(rendered_width, rendered_height, intrinsic_width, intrinsic_height) <= 0:
        return []
    measure = measure_text or _default_measure
    sx = rendered_width / intrinsic_width
    sy = rendered_height / intrinsic_height

    out: list[DrawInstruction] = []
    for p in particles:
        rect = scale_rect(denormalize(p, intrinsic_width, intrinsic_height), sx, sy)
        highlighted = highlight_index is not None and p.index == highlight_index
        text = label_text(p, display_mode)
        out.append(
            DrawInstruction(
                index=p.index,
                rect=rect,
                stroke_color=color_for_particle(p, display_mode),
                stroke_width=HIGHLIGHT_STROKE_WIDTH if highlighted else STROKE_WIDTH,
                fill_color=(
                    color_for_particle(p, display_mode, HIGHLIGHT_FILL_ALPHA)
                    if highlighted
                    else None
                ),
                label_text=text,
                label_rect=place_label(rect, measure(text), rendered_width),
                label_fill=color_for_particle(p, display_mode, LABEL_ALPHA),
                highlighted=highlighted,
            )
        )
    return out
