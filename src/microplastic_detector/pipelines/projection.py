"""Confidence filtering, summary statistics, and available display modes."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence

from microplastic_detector.vision.types import (
    UNKNOWN,
    AnalysisStats,
    AnalyzedParticle,
    DisplayMode,
)

BASE_MODE: DisplayMode = "confidence"
EXTENDED_MODES: tuple[DisplayMode, ...] = ("type", "color", "transparency")


def filter_and_project(
    particles: Iterable[AnalyzedParticle], confidence_threshold: float
) -> list[AnalyzedParticle]:
    """Keep particles with ``confidence >= confidence_threshold``, in input order."""
    return [p for p in particles if p.confidence >= confidence_threshold]


def compute_stats(filtered: Sequence[AnalyzedParticle]) -> AnalysisStats:
    """Count shape/color/transparency categories over usable analyses.

    Particles without an analysis, with an error, or marked "Not Analyzed" are
    counted in ``count`` but not in the distributions.
    """
    shapes: Counter[str] = Counter()
    colors: Counter[str] = Counter()
    transparency: Counter[str] = Counter()
    analyzed = 0
    for p in filtered:
        if not p.has_usable_analysis:
            continue
        a = p.analysis
        assert a is not None
        analyzed += 1
        shapes[a.shape or UNKNOWN] += 1
        colors[a.color or UNKNOWN] += 1
        transparency[a.transparency or UNKNOWN] += 1
    return AnalysisStats(
        shapes=dict(shapes),
        colors=dict(colors),
        transparency=dict(transparency),
        count=len(filtered),
        analyzed_count=analyzed,
    )


def available_display_modes(stats: AnalysisStats | None) -> list[DisplayMode]:
    """Confidence mode always; the analysis-driven modes only with stats."""
    modes: list[DisplayMode] = [BASE_MODE]
    if stats is not None and stats.has_stats:
        modes.extend(EXTENDED_MODES)
    return modes


def percentage(count: int, stats: AnalysisStats) -> float | None:
    """Share of analyzed particles in percent, or None if nothing was analyzed."""
    if stats.analyzed_count <= 0:
        return None
    return count / stats.analyzed_count * 100.0


def distribution_rows(
    counts: Mapping[str, int], stats: AnalysisStats
) -> list[tuple[str, int, float]]:
    """Rows of ``(label, count, percent)`` sorted by count then label."""
    if not stats.has_stats:
        return []
    rows = [(label, n, percentage(n, stats) or 0.0) for label, n in counts.items()]
    return sorted(rows, key=lambda r: (-r[1], r[0]))
