"""Tabular (CSV) and JSON export of displayed particles."""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence
from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from microplastic_detector.vision.types import AnalyzedParticle

CSV_HEADERS: tuple[str, ...] = (
    "Index",
    "Confidence (%)",
    "Class",
    "Center X (rel)",
    "Center Y (rel)",
    "Width (rel)",
    "Height (rel)",
    "Shape",
    "Color",
    "Transparency",
    "Analysis Note",
)


def csv_row(p: AnalyzedParticle) -> list[str]:
    a = p.analysis
    return [
        str(p.index),
        f"{p.confidence * 100:.1f}",
        p.label,
        f"{p.x:.5f}",
        f"{p.y:.5f}",
        f"{p.width:.5f}",
        f"{p.height:.5f}",
        (a.shape or "") if a else "",
        (a.color or "") if a else "",
        (a.transparency or "") if a else "",
        a.note if a else "",
    ]


def to_csv(particles: Sequence[AnalyzedParticle]) -> str:
    """Render one CSV row per particle.

    Fields containing a comma, quote or newline are quoted, with embedded
    quotes doubled.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    writer.writerows(csv_row(p) for p in particles)
    return buf.getvalue().rstrip("\n")


def export_filename(day: date | None = None) -> str:
    day = day or date.today()
    return f"microplastic_analysis_{day.isoformat()}.csv"


class AnalysisJson(BaseModel):
    model_config = ConfigDict(extra="ignore")

    shape: str | None = None
    color: str | None = None
    transparency: str | None = None
    error: str | None = None
    reason: str | None = None


class ParticleJson(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    index: int
    x: float
    y: float
    width: float
    height: float
    confidence: float
    label: str = Field(alias="class")
    analysis: AnalysisJson | None = None


class FinalJson(BaseModel):
    model_config = ConfigDict(extra="ignore")

    image: str
    image_w: int
    image_h: int
    confidence_threshold: float
    generation: int
    detection_error: str | None = None
    characterization_error: str | None = None
    particles: list[ParticleJson]


def particle_to_json(p: AnalyzedParticle) -> ParticleJson:
    a = p.analysis
    return ParticleJson(
        index=p.index,
        x=p.x,
        y=p.y,
        width=p.width,
        height=p.height,
        confidence=p.confidence,
        label=p.label,
        analysis=(
            AnalysisJson(
                shape=a.shape,
                color=a.color,
                transparency=a.transparency,
                error=a.error,
                reason=a.reason,
            )
            if a is not None
            else None
        ),
    )
