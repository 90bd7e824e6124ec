from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import re

from ..config import FALLBACK_EVENT_OFFSET_MINUTES, LOCAL_TZ
from ..utils import _log_debug, day_bounds, ensure_local

_RANGE_RE = re.compile(r"\d{4}-\d{2}-\d{2},\s?\d{4}-\d{2}-\d{2}")
_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def normalize_input_as_text(value: Optional[str]) -> str:
  if not isinstance(value, str):
    return ""
  return value.strip()


def try_parse_date(value: str) -> Optional[datetime]:
  """'YYYY-MM-DD' -> local midnight, or None for impossible dates."""
  try:
    parsed = datetime.strptime(value.strip(), "%Y-%m-%d")
  except (ValueError, AttributeError):
    return None
  return parsed.replace(tzinfo=LOCAL_TZ)


def parse_date_or_range(text: str) -> List[datetime]:
  """Pull a date or a date pair out of a free-form model reply.

  Looks for "YYYY-MM-DD, YYYY-MM-DD" first, then a lone "YYYY-MM-DD".
  Only the first occurrence of each pattern is considered and anything
  around it is ignored. Range halves are returned in textual order.
  Returns [] when nothing usable is found.
  """
  if not isinstance(text, str) or not text:
    return []

  range_match = _RANGE_RE.search(text)
  if range_match:
    halves = [part.strip() for part in range_match.group(0).split(",")]
    if len(halves) == 2:
      start = try_parse_date(halves[0])
      end = try_parse_date(halves[1])
      if start is not None and end is not None:
        return [start, end]

  date_match = _DATE_RE.search(text)
  if date_match:
    single = try_parse_date(date_match.group(0))
    if single is not None:
      return [single]

  _log_debug(f"[NORMALIZER] no date in reply: {text[:120]!r}")
  return []


def resolve_query_window(dates: List[datetime],
                         now: datetime) -> Tuple[datetime, datetime]:
  """Turn a parse result into the [start, end) window for the calendar query.

  One date covers that whole day, two dates are used as given, anything
  else falls back to today.
  """
  if len(dates) == 1:
    return day_bounds(dates[0])
  if len(dates) == 2:
    return ensure_local(dates[0]), ensure_local(dates[1])
  return day_bounds(now)


def one_hour_from(now: datetime) -> datetime:
  return ensure_local(now) + timedelta(minutes=FALLBACK_EVENT_OFFSET_MINUTES)
