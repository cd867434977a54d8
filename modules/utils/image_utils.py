"""Utility helpers for moving images between PIL, PNG bytes and data URLs."""

from __future__ import annotations

import base64
import binascii
import io
import re
from typing import Tuple

from PIL import Image

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)
_URL_PATTERN = re.compile(r"^(https?|ftp)://\S+$", re.IGNORECASE)


def image_to_png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def image_to_data_url(image: Image.Image) -> str:
    """Encode an image as a ``data:image/png;base64`` URL."""
    encoded = base64.b64encode(image_to_png_bytes(image)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def data_url_to_image(url: str) -> Image.Image:
    """Decode a base64 data URL back into a PIL image."""
    match = _DATA_URL_PATTERN.match(url or "")
    if match is None or not match.group("b64"):
        raise ValueError("Not a base64 data URL")
    try:
        raw = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc
    image = Image.open(io.BytesIO(raw))
    image.load()
    return image


def generate_thumbnail(image: Image.Image, max_size: Tuple[int, int] = (256, 256)) -> Image.Image:
    """Create a thumbnail suitable for history previews."""
    thumb = image.copy()
    if thumb.mode not in ("RGB", "RGBA", "L"):
        thumb = thumb.convert("RGB")
    thumb.thumbnail(max_size)
    return thumb


def looks_like_url(text: str) -> bool:
    return bool(_URL_PATTERN.match((text or "").strip()))
