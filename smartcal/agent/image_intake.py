from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Optional

from ..ocr import ImageInput, load_image
from ..utils import _log_debug, format_long_date
from .schemas import ImageRef

SCANNING_STATUS = "Scanning document..."
INTERPRETING_STATUS = "Interpreting details..."

IMAGE_EXTRACTION_PROMPT_TEMPLATE = """Today's date: {today}

Text: "{recognized_text}"


ONLY OUTPUT IN EXACT FORMAT:
Title: [Title]
Date: [Date/Time e.g. YYYY-MM-DD HH:MM]
Location: [Location] or "None"
Description: [Summary] or "None"

NOTHING ELSE SHOULD BE IN OUTPUT. NO INTRO.
"""

Recognizer = Callable[[ImageInput], str]


def build_image_extraction_prompt(recognized_text: str,
                                  now: datetime,
                                  extra_text: Optional[str] = None) -> str:
  text = recognized_text or ""
  extra = (extra_text or "").strip()
  if extra:
    text = f"{text}\n{extra}" if text else extra
  return IMAGE_EXTRACTION_PROMPT_TEMPLATE.format(today=format_long_date(now),
                                                 recognized_text=text)


def describe_image(image: ImageInput) -> Optional[ImageRef]:
  """Size and format of the attached image, or None if it can't be opened."""
  try:
    loaded = load_image(image)
  except ValueError as exc:
    _log_debug(f"[IMAGE_INTAKE] could not describe image: {exc}")
    return None
  width, height = loaded.size
  return ImageRef(format=loaded.format, width=width, height=height)


async def recognize_image_text(image: ImageInput, recognizer: Recognizer) -> str:
  """Run the (blocking) recognizer off the event loop. Never raises."""
  try:
    text = await asyncio.to_thread(recognizer, image)
  except Exception as exc:
    print(f"[IMAGE_INTAKE] text recognition failed: {exc}", flush=True)
    return ""
  text = text or ""
  _log_debug(f"[IMAGE_INTAKE] recognized text:\n{text}")
  return text
