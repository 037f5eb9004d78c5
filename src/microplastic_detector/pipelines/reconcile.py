"""Merging per-index characterization results back onto the detections."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from microplastic_detector.errors import CharacterizationParseError
from microplastic_detector.llm.response import ParsedEntry, try_parse_analysis_response
from microplastic_detector.vision.types import AnalyzedParticle, ParticleAnalysis

LOG = logging.getLogger(__name__)

INDEX_NOT_FOUND_REASON = "Index not found in AI response"
PARSE_FAILURE_MESSAGE = "Could not parse AI analysis response."


@dataclass(frozen=True)
class Reconciliation:
    """Reconciled particles plus the parse error that forced a fallback, if any."""

    particles: list[AnalyzedParticle]
    error: CharacterizationParseError | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


def merge(
    particles: Sequence[AnalyzedParticle], parsed: Iterable[ParsedEntry]
) -> list[AnalyzedParticle]:
    """Attach parsed analyses to particles by index.

    The output has exactly the length and order of `particles`. The first parsed
    entry for an index wins; later duplicates, unknown indices and entries
    without a numeric index are ignored. Particles with no match get the
    "Not Analyzed" sentinel.
    """
    by_index: dict[int, ParsedEntry] = {}
    duplicates = 0
    for entry in parsed:
        if entry.index is None:
            continue
        if entry.index in by_index:
            duplicates += 1
            continue
        by_index[entry.index] = entry

    merged: list[AnalyzedParticle] = []
    missing = 0
    for p in particles:
        entry = by_index.get(p.index)
        if entry is None:
            missing += 1
            merged.append(p.with_analysis(ParticleAnalysis.not_analyzed(INDEX_NOT_FOUND_REASON)))
        else:
            merged.append(p.with_analysis(entry.analysis))

    known = {p.index for p in particles}
    unknown = sum(1 for i in by_index if i not in known)
    LOG.info(
        "Merged analysis: particles=%s missing=%s duplicates=%s unknown_indices=%s",
        len(merged),
        missing,
        duplicates,
        unknown,
    )
    return merged


def apply_global_fallback(
    particles: Sequence[AnalyzedParticle], message: str = PARSE_FAILURE_MESSAGE
) -> list[AnalyzedParticle]:
    """Mark every particle with the "Parse Error" sentinel."""
    sentinel = ParticleAnalysis.parse_error(message)
    return [p.with_analysis(sentinel) for p in particles]


def reconcile_response(
    particles: Sequence[AnalyzedParticle], raw_text: str | None
) -> Reconciliation:
    """Parse a raw model reply and merge it, falling back on any parse failure."""
    result = try_parse_analysis_response(raw_text)
    if not result.ok:
        LOG.warning("Characterization unusable, applying fallback: %s", result.error)
        return Reconciliation(particles=apply_global_fallback(particles), error=result.error)
    return Reconciliation(particles=merge(particles, result.entries))
