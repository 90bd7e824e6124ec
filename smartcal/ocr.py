"""
Text recognition for scanned images (flyers, tickets, invitations).
Recognition is best-effort: every failure degrades to an empty string.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
from typing import Optional, Union

import pytesseract
from PIL import Image, UnidentifiedImageError

from .config import TESSERACT_CMD
from .utils import _log_debug

if TESSERACT_CMD:
    pytesseract.pytesseract.tesseract_cmd = TESSERACT_CMD

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?:;[\w=.-]+)*;base64,(?P<data>.*)$", re.DOTALL)

ImageInput = Union[Image.Image, bytes, str]


def decode_data_url(data_url: str) -> bytes:
    """
    Decode a `data:image/...;base64,` URL (or bare base64) into bytes.

    Raises:
        ValueError: if the payload is not valid base64
    """
    raw = (data_url or "").strip()
    match = _DATA_URL_RE.match(raw)
    payload = match.group("data") if match else raw
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Image payload is not valid base64.") from exc


def load_image(source: ImageInput) -> Image.Image:
    """
    Open an image from a PIL image, raw bytes, or a data URL.

    Raises:
        ValueError: if the data cannot be decoded as an image
    """
    if isinstance(source, Image.Image):
        return source
    data = decode_data_url(source) if isinstance(source, str) else source
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("Attached data is not a readable image.") from exc
    return image


def _prepare_for_ocr(image: Image.Image) -> Image.Image:
    # tesseract handles grayscale best; drops alpha as well
    if image.mode not in ("L", "RGB"):
        image = image.convert("RGB")
    return image.convert("L")


def recognize_text(source: Optional[ImageInput]) -> str:
    """
    Run OCR over the image and return the recognized lines.

    Never raises: unreadable images, a missing tesseract binary, or OCR
    errors all yield "".
    """
    if source is None:
        return ""
    try:
        image = load_image(source)
        width, height = image.size
        if width == 0 or height == 0:
            _log_debug(f"[OCR] invalid image dimensions: {width}x{height}")
            return ""
        text = pytesseract.image_to_string(_prepare_for_ocr(image))
    except Exception as exc:
        print(f"[OCR] recognition failed: {exc}", flush=True)
        return ""

    lines = [line.strip() for line in (text or "").splitlines()]
    recognized = "\n".join(line for line in lines if line)
    _log_debug(f"[OCR] recognized {len(recognized)} chars")
    return recognized
