from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional

import dateparser
from dateparser.search import search_dates

from ..config import CALENDAR_TIMEZONE_NAME, LOCAL_TZ
from ..utils import _log_debug, ensure_local, format_long_date
from .normalizer import one_hour_from
from .schemas import ParsedEventData

DEFAULT_TITLE = "Untitled Event"

CREATE_EVENT_PROMPT_TEMPLATE = """EXTRACT EVENT DETAILS.
Today is: {today}
User prompt: "{user_text}"

Format your response EXACTLY like this:
Title: [Event Title]
Date: [Date/Time e.g. YYYY-MM-DD HH:MM]
Location: [Location or "None"]
Description: [Description or "None"]
"""

_FIELD_LABELS = (
    ("title:", "title"),
    ("date:", "date"),
    ("location:", "location"),
    ("description:", "notes"),
)

_STRICT_FORMATS = ("%Y-%m-%d %H:%M", "%Y-%m-%d")

# prompts and replies are English; detection over all locales reads "See" or "To" as dates
DATE_LANGUAGES = ["en"]

DateDetector = Callable[[str, datetime], Optional[datetime]]


def build_create_event_prompt(user_text: str, now: datetime) -> str:
  return CREATE_EVENT_PROMPT_TEMPLATE.format(today=format_long_date(now),
                                             user_text=user_text)


def _dateparser_settings(now: datetime) -> Dict[str, Any]:
  return {
      "PREFER_DATES_FROM": "future",
      "RELATIVE_BASE": ensure_local(now).replace(tzinfo=None),
      "TIMEZONE": CALENDAR_TIMEZONE_NAME,
      "TO_TIMEZONE": CALENDAR_TIMEZONE_NAME,
      "RETURN_AS_TIMEZONE_AWARE": True,
  }


def detect_natural_date(text: str, now: datetime) -> Optional[datetime]:
  """Find a date/time in text such as "next Friday at 3pm" or "June 1, 9am".

  The whole string is tried first; failing that, the first date found
  anywhere inside it is used.
  """
  if not text or not text.strip():
    return None
  settings = _dateparser_settings(now)
  try:
    parsed = dateparser.parse(text, languages=DATE_LANGUAGES, settings=settings)
    if parsed is None:
      found = search_dates(text, languages=DATE_LANGUAGES, settings=settings)
      if found:
        parsed = found[0][1]
  except Exception as exc:
    _log_debug(f"[SLOT_EXTRACTOR] date detector failed on {text!r}: {exc}")
    return None
  if parsed is None:
    return None
  return ensure_local(parsed)


def _parse_strict(text: str) -> Optional[datetime]:
  raw = text.strip()
  for fmt in _STRICT_FORMATS:
    try:
      return datetime.strptime(raw, fmt).replace(tzinfo=LOCAL_TZ)
    except ValueError:
      continue
  return None


def resolve_event_date(raw_date: str,
                       now: datetime,
                       detector: Optional[DateDetector] = None) -> datetime:
  """detector -> 'YYYY-MM-DD HH:MM' -> 'YYYY-MM-DD' -> now + 1 hour."""
  detect = detector or detect_natural_date
  if raw_date:
    detected = detect(raw_date, now)
    if detected is not None:
      return detected
    strict = _parse_strict(raw_date)
    if strict is not None:
      return strict
    _log_debug(f"[SLOT_EXTRACTOR] unparsable date {raw_date!r}, using now + 1h")
  return one_hour_from(now)


def parse_event_fields(text: str,
                       now: Optional[datetime] = None,
                       detector: Optional[DateDetector] = None) -> ParsedEventData:
  """Read "Label: value" lines out of a model reply.

  Recognized labels are Title, Date, Location and Description (any case).
  Other lines are skipped. A label seen twice keeps its last value.
  """
  reference = ensure_local(now) if now is not None else datetime.now(LOCAL_TZ)
  fields = {"title": None, "date": "", "location": "", "notes": ""}

  for line in (text or "").splitlines():
    stripped = line.strip()
    lower = stripped.lower()
    for label, key in _FIELD_LABELS:
      if lower.startswith(label):
        fields[key] = stripped[len(label):].strip()
        break

  title = fields["title"] if fields["title"] is not None else DEFAULT_TITLE
  parsed = ParsedEventData(
      title=title,
      date=resolve_event_date(fields["date"], reference, detector),
      location=fields["location"],
      notes=fields["notes"],
  )
  _log_debug(f"[SLOT_EXTRACTOR] parsed event: {parsed.model_dump(mode='json')}")
  return parsed
