"""Extraction of the per-particle JSON array from a free-text model reply.

The model is asked for a bare JSON array but may wrap it in prose or code
fences. We take everything between the first ``[`` and the last ``]`` and
decode it strictly; the result is all-or-nothing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from microplastic_detector.errors import (
    CharacterizationParseError,
    MalformedJson,
    NoArrayFound,
    UnexpectedShape,
)
from microplastic_detector.vision.types import ParticleAnalysis

LOG = logging.getLogger(__name__)


class _AnalysisJson(BaseModel):
    model_config = ConfigDict(extra="ignore")

    shape: str | None = None
    color: str | None = None
    transparency: str | None = None
    error: str | None = None
    reason: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str | None:
        if v is None:
            return None
        return str(v).strip()


@dataclass(frozen=True)
class ParsedEntry:
    """One element of the decoded array.

    ``index`` is None when the element's index is missing or not an integer;
    such entries are kept but never matched during reconciliation.
    """

    index: int | None
    analysis: ParticleAnalysis | None


@dataclass(frozen=True)
class ParseResult:
    """Tagged outcome of :func:`try_parse_analysis_response`."""

    entries: list[ParsedEntry] = field(default_factory=list)
    error: CharacterizationParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def extract_array_text(raw_text: str | None) -> str:
    """Return the substring from the first ``[`` to the last ``]`` inclusive.

    Raises:
        NoArrayFound: If either bracket is missing or they are out of order.
    """
    text = raw_text or ""
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end == -1 or end <= start:
        raise NoArrayFound("Valid JSON array structure not found in AI response.")
    return text[start : end + 1]


def _coerce_index(v: Any) -> int | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    return None


def _to_entry(item: Any) -> ParsedEntry:
    if not isinstance(item, dict):
        return ParsedEntry(index=None, analysis=None)
    index = _coerce_index(item.get("index"))
    raw_analysis = item.get("analysis")
    analysis: ParticleAnalysis | None = None
    if isinstance(raw_analysis, dict):
        try:
            a = _AnalysisJson.model_validate(raw_analysis)
        except ValidationError:
            LOG.warning("Ignoring unreadable analysis for index %r: %r", index, raw_analysis)
        else:
            analysis = ParticleAnalysis(**a.model_dump())
    return ParsedEntry(index=index, analysis=analysis)


def parse_analysis_response(raw_text: str | None) -> list[ParsedEntry]:
    """Parse the characterization reply into per-index entries.

    Raises:
        NoArrayFound: No bracketed array in the text.
        MalformedJson: The bracketed text is not valid JSON.
        UnexpectedShape: The decoded value is not an array.
    """
    candidate = extract_array_text(raw_text)
    try:
        decoded = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise MalformedJson(f"AI response array is not valid JSON: {e.msg}") from e
    if not isinstance(decoded, list):
        raise UnexpectedShape(
            f"AI response parsed but was not a JSON array (got {type(decoded).__name__})."
        )
    entries = [_to_entry(item) for item in decoded]
    LOG.info("Parsed characterization response: entries=%s", len(entries))
    return entries


def try_parse_analysis_response(raw_text: str | None) -> ParseResult:
    """Like :func:`parse_analysis_response` but returns a tagged result."""
    try:
        return ParseResult(entries=parse_analysis_response(raw_text))
    except CharacterizationParseError as e:
        LOG.warning("Failed to parse characterization response: %s", e)
        LOG.debug("Raw characterization response:\n%s", raw_text)
        return ParseResult(error=e)
