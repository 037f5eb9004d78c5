from __future__ import annotations

import base64
import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from microplastic_detector.errors import ImageLoadError
from microplastic_detector.vision.geometry import denormalize
from microplastic_detector.vision.image import (
    decode_image,
    img_to_png_bytes,
    resize_image,
    to_data_url,
)
from microplastic_detector.vision.overlay import overlay_instructions
from microplastic_detector.vision.types import AnalyzedParticle, BoundingBox, ParticleAnalysis
from microplastic_detector.vision.vis import (
    annotation_font_size,
    annotation_stroke_width,
    rasterize_instructions,
    render_annotated,
    render_annotated_bytes,
)


def _box(x: float, y: float, w: float, h: float) -> BoundingBox:
    return BoundingBox(x=x, y=y, width=w, height=h, confidence=0.9, label="particle")


def _diff(a: Image.Image, b: Image.Image) -> int:
    return int(np.abs(np.array(a).astype(np.int16) - np.array(b).astype(np.int16)).sum())


def test_render_annotated_keeps_size_and_draws() -> None:
    img = Image.new("RGB", (320, 200), color=(30, 30, 30))
    out = render_annotated(img, [_box(0.25, 0.5, 0.2, 0.3), _box(0.7, 0.4, 0.1, 0.1)])
    assert out.size == img.size
    assert out is not img
    assert _diff(img, out) > 0
    # Source image is untouched.
    assert np.array(img).max() == 30


def test_render_annotated_is_deterministic() -> None:
    img = Image.new("RGB", (256, 256), color=(200, 220, 240))
    boxes = [_box(0.3, 0.3, 0.2, 0.2), _box(0.6, 0.7, 0.25, 0.1)]
    a = render_annotated(img, boxes)
    b = render_annotated(img, boxes)
    assert _diff(a, b) == 0


def test_render_annotated_uses_red_stroke_at_box_edge() -> None:
    img = Image.new("RGB", (200, 100), color=(0, 0, 0))
    out = render_annotated(img, [_box(0.5, 0.5, 0.5, 0.5)])
    # Top-left corner of the denormalized rect: (50, 25).
    assert out.getpixel((50, 25)) == (255, 0, 0)
    assert out.getpixel((5, 5)) == (0, 0, 0)


def test_annotation_scaling_has_floors() -> None:
    assert annotation_stroke_width(100, 100) == 2
    assert annotation_stroke_width(4000, 3000) == 12
    tiny = denormalize(_box(0.5, 0.5, 0.01, 0.01), 200, 200)
    assert annotation_font_size(tiny, 200, 200) == 12
    big = denormalize(_box(0.5, 0.5, 0.5, 0.5), 1000, 1000)
    assert annotation_font_size(big, 1000, 1000) == 150


def test_render_annotated_bytes_round_trip_and_errors() -> None:
    src = img_to_png_bytes(Image.new("RGB", (64, 48), color=(10, 10, 10)))
    png = render_annotated_bytes(src, [_box(0.5, 0.5, 0.5, 0.5)])
    with Image.open(io.BytesIO(png)) as out:
        assert out.size == (64, 48)

    with pytest.raises(ImageLoadError):
        render_annotated_bytes(b"definitely not an image", [])


def test_decode_image_sources(tmp_path: Path) -> None:
    img = Image.new("RGB", (12, 8), color=(1, 2, 3))
    assert decode_image(img_to_png_bytes(img)).size == (12, 8)
    assert decode_image(to_data_url(img)).size == (12, 8)

    p = tmp_path / "a.png"
    img.save(p)
    assert decode_image(p).size == (12, 8)
    assert decode_image(str(p)).getpixel((0, 0)) == (1, 2, 3)

    with pytest.raises(ImageLoadError):
        decode_image(tmp_path / "missing.png")
    with pytest.raises(ImageLoadError):
        decode_image("data:image/png;base64,@@@@")
    with pytest.raises(ImageLoadError):
        decode_image("data:image/png;base64," + base64.b64encode(b"nope").decode("ascii"))


def test_resize_image_preserves_aspect_ratio() -> None:
    landscape = resize_image(Image.new("RGB", (2048, 1024)), 1024)
    assert landscape.size == (1024, 512)
    portrait = resize_image(Image.new("RGB", (300, 900)), 600)
    assert portrait.size == (200, 600)
    small = Image.new("RGB", (100, 50))
    kept = resize_image(small, 1024)
    assert kept.size == (100, 50)
    assert kept is not small
    with pytest.raises(ValueError):
        resize_image(small, 0)


def test_rasterize_overlay_instructions() -> None:
    img = Image.new("RGB", (200, 200), color=(0, 0, 0))
    particle = AnalyzedParticle(
        box=_box(0.5, 0.5, 0.3, 0.3),
        index=0,
        analysis=ParticleAnalysis(shape="Fiber", color="Blue", transparency="Opaque"),
    )
    instructions = overlay_instructions(200, 200, 200, 200, [particle], "type", 0)
    out = rasterize_instructions(img, instructions)
    assert out.size == img.size
    assert _diff(img, out) > 0
    # Stroke at the rect's top-left corner uses the shape color (fiber = blue).
    assert out.getpixel((70, 70)) == (0, 0, 255)
