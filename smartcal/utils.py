from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Tuple

from .config import LLM_DEBUG, LOCAL_TZ


def _log_debug(message: str) -> None:
    if LLM_DEBUG:
        print(message, flush=True)


def now_local() -> datetime:
    return datetime.now(LOCAL_TZ)


def _now_iso_minute() -> str:
    return now_local().strftime("%Y-%m-%dT%H:%M")


def ensure_local(dt: datetime) -> datetime:
    """Attach the calendar zone to naive values, convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=LOCAL_TZ)
    return dt.astimezone(LOCAL_TZ)


def start_of_day(dt: datetime) -> datetime:
    local = ensure_local(dt)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def day_bounds(dt: datetime) -> Tuple[datetime, datetime]:
    start = start_of_day(dt)
    return start, start + timedelta(days=1)


def format_iso_minute(dt: datetime) -> str:
    return ensure_local(dt).strftime("%Y-%m-%dT%H:%M")


def parse_iso_minute(value: Optional[str]) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw[:16], "%Y-%m-%dT%H:%M").replace(tzinfo=LOCAL_TZ)
    except Exception:
        pass
    try:
        return ensure_local(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except Exception:
        return None


def format_long_date(dt: datetime) -> str:
    """'Sunday, June 1, 2025'"""
    local = ensure_local(dt)
    return f"{local:%A, %B} {local.day}, {local.year}"


def format_short_date(dt: datetime) -> str:
    """'Jun 1, 2025'"""
    local = ensure_local(dt)
    return f"{local:%b} {local.day}, {local.year}"


def format_short_time(dt: datetime) -> str:
    """'9:05 AM'"""
    local = ensure_local(dt)
    hour = local.hour % 12 or 12
    return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"
