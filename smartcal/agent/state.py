from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .schemas import ImageRef, Intent, ParsedEventData, TranscriptEntry, TurnPhase

STOPPED_MESSAGE = "Generation stopped."

Listener = Callable[[Dict[str, Any]], None]


class ConversationSnapshot(BaseModel):
  model_config = ConfigDict(extra="ignore")

  entries: List[TranscriptEntry] = Field(default_factory=list)
  analysis_status: str = ""
  extracted_event: Optional[ParsedEventData] = None
  show_event_editor: bool = False
  event_to_delete: Optional[str] = None
  error_message: Optional[str] = None
  is_model_loaded: bool = False
  is_processing: bool = False
  phase: TurnPhase = TurnPhase.IDLE
  intent: Optional[Intent] = None


class ConversationState:
  """Observable chat state.

  Only the last entry may be pending. Every mutation notifies subscribers
  with a JSON-ready snapshot.
  """

  def __init__(self):
    self._data = ConversationSnapshot()
    self._listeners: List[Listener] = []

  # -------------------------------------------------------------------------
  #  Observation
  # -------------------------------------------------------------------------

  def subscribe(self, listener: Listener) -> Callable[[], None]:
    self._listeners.append(listener)

    def _unsubscribe() -> None:
      if listener in self._listeners:
        self._listeners.remove(listener)

    return _unsubscribe

  def snapshot(self) -> Dict[str, Any]:
    return self._data.model_dump(mode="json")

  def _notify(self) -> None:
    if not self._listeners:
      return
    payload = self.snapshot()
    for listener in list(self._listeners):
      try:
        listener(copy.deepcopy(payload))
      except Exception as exc:
        print(f"[STATE] listener failed: {exc}", flush=True)

  # -------------------------------------------------------------------------
  #  Read access
  # -------------------------------------------------------------------------

  @property
  def entries(self) -> List[TranscriptEntry]:
    return [entry.model_copy() for entry in self._data.entries]

  @property
  def last_entry(self) -> Optional[TranscriptEntry]:
    if not self._data.entries:
      return None
    return self._data.entries[-1].model_copy()

  @property
  def has_pending(self) -> bool:
    return bool(self._data.entries) and self._data.entries[-1].is_pending

  def __getattr__(self, name: str) -> Any:
    data = self.__dict__.get("_data")
    if data is not None and name in ConversationSnapshot.model_fields:
      return getattr(data, name)
    raise AttributeError(name)

  def update(self, **fields: Any) -> None:
    for key, value in fields.items():
      if key == "entries" or key not in ConversationSnapshot.model_fields:
        raise AttributeError(f"unknown state field: {key}")
      setattr(self._data, key, value)
    self._notify()

  # -------------------------------------------------------------------------
  #  Transcript
  # -------------------------------------------------------------------------

  def _pending(self) -> Optional[TranscriptEntry]:
    if self.has_pending:
      return self._data.entries[-1]
    return None

  def _drop_pending(self) -> None:
    if self.has_pending:
      self._data.entries.pop()

  def _insert_settled(self, entry: TranscriptEntry) -> TranscriptEntry:
    # keep the pending entry last
    if self.has_pending:
      self._data.entries.insert(len(self._data.entries) - 1, entry)
    else:
      self._data.entries.append(entry)
    self._notify()
    return entry.model_copy()

  def append_user(self, text: str, image: Optional[ImageRef] = None) -> TranscriptEntry:
    return self._insert_settled(TranscriptEntry(role="user", text=text, attached_image=image))

  def append_system(self, text: str) -> TranscriptEntry:
    return self._insert_settled(TranscriptEntry(role="system", text=text))

  def begin_pending(self, text: str = "Thinking...") -> TranscriptEntry:
    pending = self._pending()
    if pending is not None:
      pending.text = text
    else:
      pending = TranscriptEntry(role="assistant", text=text, is_pending=True)
      self._data.entries.append(pending)
    self._notify()
    return pending.model_copy()

  def update_pending(self, text: str) -> bool:
    pending = self._pending()
    if pending is None:
      return False
    pending.text = text
    self._notify()
    return True

  # Status lines and streamed partial text go through the same slot.
  update_status = update_pending

  def complete_pending(self, text: str) -> bool:
    pending = self._pending()
    if pending is None:
      return False
    pending.text = text
    pending.is_pending = False
    self._notify()
    return True

  def fail_pending(self, system_text: str) -> None:
    self._drop_pending()
    self._data.entries.append(TranscriptEntry(role="system", text=system_text))
    self._notify()

  def stop_pending(self, text: str = STOPPED_MESSAGE) -> bool:
    return self.complete_pending(text)

  def clear(self) -> None:
    loaded = self._data.is_model_loaded
    self._data = ConversationSnapshot(is_model_loaded=loaded)
    self._notify()
