"""Error taxonomy for the detection → characterization pipeline."""

from __future__ import annotations

from typing import Literal

Phase = Literal["detection", "characterization"]


class MicroplasticError(Exception):
    """Base class for all errors raised by this package."""


class InvalidDetectionData(MicroplasticError, ValueError):
    """Detector payload is unusable (missing or non-positive image dimensions)."""


class ImageLoadError(MicroplasticError):
    """Source image could not be decoded."""


class CharacterizationParseError(MicroplasticError):
    """The characterization reply does not contain a usable JSON array."""


class NoArrayFound(CharacterizationParseError):
    """No `[` ... `]` pair was found in the reply."""


class MalformedJson(CharacterizationParseError):
    """The bracketed substring is not valid JSON."""


class UnexpectedShape(CharacterizationParseError):
    """The decoded JSON is not an array."""


class CharacterizationUnavailable(MicroplasticError):
    """The characterization model returned nothing usable."""


class PipelineError(MicroplasticError):
    """An error surfaced to callers, tagged with the phase that produced it.

    Attributes:
        phase: "detection" when no geometry is available, "characterization"
            when geometry is present but characterization is missing.
        cause: The underlying exception, if any.
    """

    def __init__(self, phase: Phase, message: str, cause: BaseException | None = None) -> None:
        super().__init__(f"{phase.capitalize()} Error: {message}")
        self.phase: Phase = phase
        self.cause = cause
