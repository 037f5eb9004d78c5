"""Raster rendering: index-labeled annotations and overlay previews."""

from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache

from PIL import Image, ImageDraw, ImageFont

from microplastic_detector.vision.geometry import HasGeometry, denormalize
from microplastic_detector.vision.image import decode_image, img_to_png_bytes
from microplastic_detector.vision.palette import to_pil_rgba
from microplastic_detector.vision.types import DrawInstruction, PixelRect

Font = ImageFont.FreeTypeFont | ImageFont.ImageFont

ANNOTATION_RGB = (255, 0, 0)
PLATE_RGBA = (0, 0, 0, 153)  # black, alpha 0.6
TEXT_RGB = (255, 255, 255)


@lru_cache(maxsize=64)
def load_font(size: int, bold: bool = False) -> Font:
    """Load DejaVu Sans at `size`, falling back to Pillow's bundled font."""
    name = "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"
    try:
        return ImageFont.truetype(name, size)
    except OSError:  # pragma: no cover
        return ImageFont.load_default(size=size)


def _ordered(rect: PixelRect) -> tuple[float, float, float, float]:
    x1, y1, x2, y2 = rect.as_xyxy()
    return min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2)


def annotation_stroke_width(w: int, h: int) -> int:
    return max(2, round(min(w, h) * 0.004))


def annotation_font_size(rect: PixelRect, w: int, h: int) -> int:
    # Scaled with both the box and the image so small boxes stay legible.
    size = max(12.0, min(abs(rect.width), abs(rect.height)) * 0.3, min(w, h) * 0.03)
    return round(size)


def _draw_centered_text(
    dr: ImageDraw.ImageDraw, cx: float, cy: float, text: str, font: Font, fill: tuple[int, ...]
) -> None:
    left, top, right, bottom = dr.textbbox((0, 0), text, font=font)
    tx = cx - (right - left) / 2 - left
    ty = cy - (bottom - top) / 2 - top
    dr.text((tx, ty), text, fill=fill, font=font)


def render_annotated(img: Image.Image, boxes: Sequence[HasGeometry]) -> Image.Image:
    """Burn index-labeled boxes into a copy of `img` for the characterization model.

    Each box is labeled with its position in `boxes`. The output has the same
    size as the input and is deterministic for identical inputs.
    """
    vis = img.convert("RGB")
    dr = ImageDraw.Draw(vis, "RGBA")
    w, h = vis.size
    thickness = annotation_stroke_width(w, h)
    for i, b in enumerate(boxes):
        rect = denormalize(b, w, h)
        dr.rectangle(_ordered(rect), outline=ANNOTATION_RGB, width=thickness)

        font_size = annotation_font_size(rect, w, h)
        font = load_font(font_size, bold=True)
        txt = str(i)
        cx = rect.x + rect.width / 2
        cy = rect.y + rect.height / 2
        plate_w = dr.textlength(txt, font=font) + font_size * 0.4
        plate_h = font_size * 1.2
        dr.rectangle(
            [cx - plate_w / 2, cy - plate_h / 2, cx + plate_w / 2, cy + plate_h / 2],
            fill=PLATE_RGBA,
        )
        _draw_centered_text(dr, cx, cy, txt, font, TEXT_RGB)
    return vis


def render_annotated_bytes(data: bytes | str, boxes: Sequence[HasGeometry]) -> bytes:
    """Decode `data`, annotate it, and return PNG bytes.

    Raises:
        ImageLoadError: If `data` cannot be decoded.
    """
    return img_to_png_bytes(render_annotated(decode_image(data), boxes))


def rasterize_instructions(
    img: Image.Image, instructions: Sequence[DrawInstruction], *, font_size: int = 11
) -> Image.Image:
    """Draw overlay instructions onto a copy of `img` (already at rendered size)."""
    vis = img.convert("RGB")
    dr = ImageDraw.Draw(vis, "RGBA")
    font = load_font(font_size)
    for ins in instructions:
        box = _ordered(ins.rect)
        if ins.fill_color is not None:
            dr.rectangle(box, fill=to_pil_rgba(ins.fill_color))
        dr.rectangle(box, outline=to_pil_rgba(ins.stroke_color), width=round(ins.stroke_width))
        dr.rectangle(_ordered(ins.label_rect), fill=to_pil_rgba(ins.label_fill))
        pad = (ins.label_rect.width - dr.textlength(ins.label_text, font=font)) / 2
        dr.text(
            (ins.label_rect.x + pad, ins.label_rect.y + (ins.label_rect.height - font_size) / 2),
            ins.label_text,
            fill=to_pil_rgba(ins.text_color),
            font=font,
        )
    return vis
