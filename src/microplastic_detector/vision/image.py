"""Image I/O and transforms."""

from __future__ import annotations

import base64
import binascii
import io
import re
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from microplastic_detector.errors import ImageLoadError

_DATA_URL_RE = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)


def ensure_dir(p: Path) -> None:
    """Create `p` if it doesn't exist."""
    p.mkdir(parents=True, exist_ok=True)


def strip_data_url(data: str) -> str:
    """Drop a ``data:image/...;base64,`` prefix if present."""
    return _DATA_URL_RE.sub("", data, count=1)


def decode_image(source: bytes | str | Path | Image.Image) -> Image.Image:
    """Decode an image from raw bytes, a base64 data URL, or a file path.

    Returns an RGB image fully loaded into memory.

    Raises:
        ImageLoadError: If the source cannot be decoded.
    """
    if isinstance(source, Image.Image):
        return source.convert("RGB")
    try:
        if isinstance(source, Path):
            raw = source.read_bytes()
        elif isinstance(source, str):
            if _DATA_URL_RE.match(source):
                raw = base64.b64decode(strip_data_url(source), validate=True)
            else:
                raw = Path(source).read_bytes()
        else:
            raw = bytes(source)
        with Image.open(io.BytesIO(raw)) as img:
            img.load()
            return img.convert("RGB")
    except (OSError, UnidentifiedImageError, binascii.Error, ValueError) as e:
        raise ImageLoadError(f"Failed to load image: {e}") from e


def resize_image(img: Image.Image, max_dimension: int) -> Image.Image:
    """Downscale so that the longest side is at most `max_dimension`.

    Aspect ratio is preserved; images already within bounds are returned as a copy.
    """
    if max_dimension <= 0:
        raise ValueError(f"max_dimension must be > 0, got {max_dimension}")
    w, h = img.size
    if w > h:
        if w <= max_dimension:
            return img.copy()
        new_w, new_h = max_dimension, round(h * (max_dimension / w))
    else:
        if h <= max_dimension:
            return img.copy()
        new_w, new_h = round(w * (max_dimension / h)), max_dimension
    return img.resize((max(1, new_w), max(1, new_h)), Image.Resampling.LANCZOS)


def img_to_png_bytes(img: Image.Image) -> bytes:
    """Encode an image as PNG bytes."""
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def img_to_b64_png(img: Image.Image) -> str:
    """Encode an image as base64 PNG."""
    return base64.b64encode(img_to_png_bytes(img)).decode("ascii")


def to_data_url(img: Image.Image) -> str:
    """Encode an image as a ``data:image/png;base64,...`` URL."""
    return f"data:image/png;base64,{img_to_b64_png(img)}"
