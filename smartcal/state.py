from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import json
import pathlib

from .config import (
    CALENDAR_ACCESS,
    DELETE_SEARCH_DAYS,
    EVENTS_DATA_FILE,
    MAX_SUMMARY_EVENTS,
    NO_CALENDAR_ACCESS,
    NO_EVENTS,
    UPCOMING_DAYS,
)
from .models import Event
from .utils import (
    _log_debug,
    _now_iso_minute,
    ensure_local,
    format_iso_minute,
    format_long_date,
    format_short_time,
    now_local,
    parse_iso_minute,
)


class CalendarError(RuntimeError):
    """Raised when the calendar refuses a write."""


class CalendarStore:
    """Local event store persisted as a JSON file.

    All state changes go through the methods below; each write is flushed
    to disk immediately.
    """

    def __init__(self,
                 data_file: Optional[pathlib.Path] = None,
                 access_granted: bool = CALENDAR_ACCESS,
                 persist: bool = True):
        self.data_file = data_file if data_file is not None else EVENTS_DATA_FILE
        self.access_granted = access_granted
        self.persist = persist
        self.events: List[Event] = []
        self.next_id: int = 1

    # -------------------------
    # persistence
    # -------------------------
    def _serialize_events_payload(self) -> Dict[str, Any]:
        return {
            "version": 1,
            "events": [e.model_dump() for e in self.events],
        }

    def _save_events_to_disk(self) -> None:
        if not self.persist:
            return
        try:
            payload = self._serialize_events_payload()
            self.data_file.write_text(json.dumps(payload, ensure_ascii=False, indent=2),
                                      encoding="utf-8")
        except Exception as exc:
            _log_debug(f"[EVENT STORE] save failed: {exc}")

    def load(self) -> None:
        self.events.clear()
        self.next_id = 1
        if not self.persist or not self.data_file.exists():
            return
        try:
            data = json.loads(self.data_file.read_text(encoding="utf-8"))
        except Exception as exc:
            _log_debug(f"[EVENT STORE] load failed: {exc}")
            return

        raw_list: Optional[List[Any]] = None
        if isinstance(data, list):
            raw_list = data
        elif isinstance(data, dict):
            raw_list = data.get("events")
        if not isinstance(raw_list, list):
            return

        max_id = 0
        for item in raw_list:
            if not isinstance(item, dict):
                continue
            if not item.get("created_at"):
                item["created_at"] = _now_iso_minute()
            try:
                ev = Event(**item)
            except Exception:
                continue
            if parse_iso_minute(ev.start) is None:
                continue
            self.events.append(ev)
            if ev.id > max_id:
                max_id = ev.id
        self.next_id = max_id + 1 if max_id else 1

    # -------------------------
    # queries
    # -------------------------
    def _event_span(self, ev: Event):
        start = parse_iso_minute(ev.start)
        end = parse_iso_minute(ev.end) or start
        return start, end

    def events_between(self, start: datetime, end: datetime) -> List[Event]:
        """Events overlapping [start, end), ordered by start."""
        window_start = ensure_local(start)
        window_end = ensure_local(end)
        matched = []
        for ev in self.events:
            ev_start, ev_end = self._event_span(ev)
            if ev_start is None:
                continue
            if ev_end > ev_start:
                overlaps = ev_start < window_end and ev_end > window_start
            else:
                overlaps = window_start <= ev_start < window_end
            if overlaps:
                matched.append((ev_start, ev))
        matched.sort(key=lambda pair: pair[0])
        return [ev for _, ev in matched]

    def summarize_events(self, start: datetime, end: datetime) -> str:
        if not self.access_granted:
            return NO_CALENDAR_ACCESS

        events = self.events_between(start, end)
        if not events:
            return NO_EVENTS

        lines: List[str] = []
        current_day = ""
        for ev in events[:MAX_SUMMARY_EVENTS]:
            ev_start = parse_iso_minute(ev.start)
            day_header = format_long_date(ev_start)
            if day_header != current_day:
                current_day = day_header
                lines.append("")
                lines.append(f"[ {day_header} ]")
            lines.append(f"- {ev.title or 'Event'} at {format_short_time(ev_start)}")
        return "\n".join(lines) + "\n"

    def upcoming_events(self, days: int = UPCOMING_DAYS) -> List[Event]:
        if not self.access_granted:
            return []
        start = now_local()
        end = start + timedelta(days=days)
        upcoming = []
        for ev in self.events:
            ev_start = parse_iso_minute(ev.start)
            if ev_start is not None and start <= ev_start < end:
                upcoming.append((ev_start, ev))
        upcoming.sort(key=lambda pair: pair[0])
        return [ev for _, ev in upcoming]

    # -------------------------
    # mutations
    # -------------------------
    def create_event(self,
                     title: str,
                     start: datetime,
                     end: datetime,
                     location: Optional[str] = None,
                     notes: Optional[str] = None) -> Event:
        if not self.access_granted:
            raise CalendarError("Calendar access was not granted.")
        if ensure_local(end) < ensure_local(start):
            raise CalendarError("Event end must not be before its start.")

        new_event = Event(
            id=self.next_id,
            title=(title or "").strip() or "Untitled Event",
            start=format_iso_minute(start),
            end=format_iso_minute(end),
            location=(location or "").strip() or None,
            description=(notes or "").strip() or None,
            created_at=_now_iso_minute(),
        )
        self.next_id += 1
        self.events.append(new_event)
        self._save_events_to_disk()
        return new_event

    def delete_event_by_title(self, title: str) -> bool:
        """Delete the earliest upcoming event whose title matches exactly.

        Matching ignores case. Only events starting within the next
        DELETE_SEARCH_DAYS are considered.
        """
        if not self.access_granted:
            return False
        wanted = (title or "").strip().lower()
        if not wanted:
            return False

        start = now_local()
        end = start + timedelta(days=DELETE_SEARCH_DAYS)
        candidates = []
        for ev in self.events:
            ev_start = parse_iso_minute(ev.start)
            if ev_start is None or not (start <= ev_start < end):
                continue
            if (ev.title or "").strip().lower() == wanted:
                candidates.append((ev_start, ev.id, ev))
        if not candidates:
            _log_debug(f"[EVENT STORE] no event titled {title!r} to delete")
            return False

        candidates.sort(key=lambda item: (item[0], item[1]))
        target = candidates[0][2]
        self.events = [ev for ev in self.events if ev.id != target.id]
        self._save_events_to_disk()
        _log_debug(f"[EVENT STORE] deleted event id={target.id} title={target.title!r}")
        return True
