"""
Signature images.

The signature pad (``streamlit-drawable-canvas``) hands back an RGBA array;
``canvas_signature_png`` turns it into the PNG kept in a ``DrawnSignature``.
A typed name can also be rendered into a handwriting-like PNG. Uploaded
signatures are decoded here as well before the composer embeds them.
"""

from __future__ import annotations

import io
import logging
from typing import Any, Optional

import numpy as np
from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from .state import DrawnSignature, Signature, UploadedSignature

logger = logging.getLogger(__name__)

_SCRIPT_FONTS = (
    "DejaVuSerif-Italic.ttf",
    "LiberationSerif-Italic.ttf",
    "Times New Roman Italic.ttf",
    "timesi.ttf",
)


def _load_font(size: int) -> ImageFont.ImageFont:
    for name in _SCRIPT_FONTS:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    try:
        return ImageFont.load_default(size=size)
    except TypeError:  # Pillow < 10.1 has no sized default font
        return ImageFont.load_default()


def _flatten(img: Image.Image) -> Image.Image:
    rgba = img.convert("RGBA")
    background = Image.new("RGB", rgba.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.split()[3])
    return background


def canvas_signature_png(image_data: Any, padding: int = 10) -> bytes:
    """
    PNG of the strokes drawn on the signature pad, cropped to the ink.

    ``image_data`` is the HxWx4 array returned by the canvas component; a
    missing or blank pad gives empty bytes.
    """
    if image_data is None:
        return b""
    array = np.asarray(image_data)
    if array.ndim != 3 or array.shape[2] != 4 or array.size == 0:
        return b""

    flat = _flatten(Image.fromarray(array.astype(np.uint8)))
    bbox = ImageOps.invert(flat.convert("L")).point(lambda v: 255 if v > 16 else 0).getbbox()
    if bbox is None:
        return b""

    left, top, right, bottom = bbox
    cropped = flat.crop(
        (max(0, left - padding), max(0, top - padding), min(flat.width, right + padding), min(flat.height, bottom + padding))
    )
    buffer = io.BytesIO()
    cropped.save(buffer, format="PNG")
    return buffer.getvalue()


def render_typed_signature(text: str, width: int = 600, height: int = 150) -> bytes:
    """Render ``text`` as a signature-style PNG on a transparent background."""
    text = (text or "").strip()
    if not text:
        return b""

    img = Image.new("RGBA", (width, height), (255, 255, 255, 0))
    draw = ImageDraw.Draw(img)

    size = int(height * 0.55)
    font = _load_font(size)
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    while right - left > width - 40 and size > 12:
        size -= 4
        font = _load_font(size)
        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)

    x = (width - (right - left)) // 2 - left
    y = (height - (bottom - top)) // 2 - top
    draw.text((x, y), text, font=font, fill=(20, 20, 60, 255))

    underline_y = min(height - 10, y + bottom + 6)
    draw.line((x, underline_y, x + (right - left), underline_y), fill=(20, 20, 60, 255), width=2)

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def signature_image(signature: Signature) -> Optional[Image.Image]:
    """
    Decoded requester signature for the document, or None.

    Non-image uploads and undecodable bytes return None: the document is still
    produced, only the box stays empty.
    """
    if isinstance(signature, DrawnSignature):
        raw = signature.png
    elif isinstance(signature, UploadedSignature) and signature.file.is_image:
        raw = signature.file.content
    else:
        return None

    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        logger.warning("Could not decode signature image: %s", exc)
        return None

    if img.mode in ("RGBA", "LA", "P"):
        return _flatten(img)
    return img.convert("RGB")
