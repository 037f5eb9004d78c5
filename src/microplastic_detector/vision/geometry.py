"""Geometry helpers: detector pixels <-> resolution-independent boxes."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from microplastic_detector.errors import InvalidDetectionData
from microplastic_detector.vision.types import AnalyzedParticle, BoundingBox, PixelRect

LOG = logging.getLogger(__name__)


class HasGeometry(Protocol):
    """Anything exposing relative center/size fields."""

    @property
    def x(self) -> float: ...

    @property
    def y(self) -> float: ...

    @property
    def width(self) -> float: ...

    @property
    def height(self) -> float: ...


class _RawPrediction(BaseModel):
    # Strict: numeric strings and booleans are rejected, not coerced.
    model_config = ConfigDict(extra="ignore", strict=True, populate_by_name=True)

    x: float
    y: float
    width: float
    height: float
    confidence: float
    label: str = Field(alias="class")


class _RawImage(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True)

    width: float | None = None
    height: float | None = None


def _check_dimension(name: str, value: Any) -> float:
    if value is None or isinstance(value, bool) or not isinstance(value, int | float):
        raise InvalidDetectionData(
            f"Invalid detection data structure (missing image {name}): {value!r}"
        )
    if not math.isfinite(value) or value <= 0:
        raise InvalidDetectionData(f"Image {name} must be finite and > 0, got {value!r}")
    return float(value)


def normalize(
    raw_detections: Iterable[Any] | None,
    image_width: float | None,
    image_height: float | None,
) -> list[AnalyzedParticle]:
    """Convert absolute-pixel predictions to relative boxes with stable indices.

    Entries missing a required field are skipped with a warning. Indices are
    assigned contiguously over the surviving entries, in input order.

    Raises:
        InvalidDetectionData: If either image dimension is missing or <= 0.
    """
    w = _check_dimension("width", image_width)
    h = _check_dimension("height", image_height)

    particles: list[AnalyzedParticle] = []
    skipped = 0
    for raw in raw_detections or []:
        try:
            pred = _RawPrediction.model_validate(raw)
        except ValidationError:
            skipped += 1
            LOG.warning("Skipping invalid prediction object: %r", raw)
            continue
        box = BoundingBox(
            x=pred.x / w,
            y=pred.y / h,
            width=pred.width / w,
            height=pred.height / h,
            confidence=pred.confidence,
            label=pred.label,
        )
        particles.append(AnalyzedParticle(box=box, index=len(particles)))

    if skipped:
        LOG.warning("Normalization kept %s predictions, skipped %s", len(particles), skipped)
    return particles


def normalize_payload(payload: Mapping[str, Any] | None) -> list[AnalyzedParticle]:
    """Normalize a detector response ``{image: {width, height}, predictions: [...]}``.

    A missing or non-list ``predictions`` field yields an empty result.

    Raises:
        InvalidDetectionData: If the payload or its image dimensions are unusable.
    """
    if not isinstance(payload, Mapping):
        raise InvalidDetectionData(f"Detector payload must be an object, got {type(payload)!r}")
    image = payload.get("image")
    if not isinstance(image, Mapping):
        raise InvalidDetectionData("Invalid detection data structure (missing image dimensions).")
    try:
        dims = _RawImage.model_validate(image)
    except ValidationError as e:
        raise InvalidDetectionData(f"Invalid image dimensions: {dict(image)!r}") from e

    predictions = payload.get("predictions")
    if not isinstance(predictions, list):
        predictions = []
    return normalize(predictions, dims.width, dims.height)


def denormalize(box: HasGeometry, target_width: float, target_height: float) -> PixelRect:
    """Project a relative box onto a ``target_width`` x ``target_height`` raster."""
    width_px = box.width * target_width
    height_px = box.height * target_height
    return PixelRect(
        x=box.x * target_width - width_px / 2,
        y=box.y * target_height - height_px / 2,
        width=width_px,
        height=height_px,
    )


def scale_rect(rect: PixelRect, sx: float, sy: float) -> PixelRect:
    """Scale a rectangle independently along x and y."""
    return PixelRect(x=rect.x * sx, y=rect.y * sy, width=rect.width * sx, height=rect.height * sy)
