from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import DEFAULT_EVENT_DURATION_MINUTES, NO_CALENDAR_COLLABORATOR
from ..models import Event
from ..ocr import ImageInput, recognize_text
from ..state import CalendarError, CalendarStore
from ..utils import _log_debug, format_short_date, now_local
from .image_intake import (INTERPRETING_STATUS, SCANNING_STATUS, Recognizer,
                           build_image_extraction_prompt, describe_image,
                           recognize_image_text)
from .intent_router import build_intent_prompt, classify_intent
from .llm_provider import GenerationFailed, GenerationSession, SessionNotReady
from .normalizer import (normalize_input_as_text, parse_date_or_range,
                         resolve_query_window)
from .question_agent import build_date_range_prompt, build_final_answer_prompt
from .resolve_event_target import (build_delete_target_prompt,
                                   extract_delete_target)
from .schemas import INTENT_DIGITS, Intent, ParsedEventData, TurnPhase
from .slot_extractor import build_create_event_prompt, parse_event_fields
from .state import ConversationState

logger = logging.getLogger(__name__)

THINKING_STATUS = "Thinking..."
INTENT_STATUS = "Determining intent..."
EDITOR_OPENED_MESSAGE = "I've opened the event editor for you."

_INTENT_STATUS = {
    Intent.QUESTION: "Checking schedule...",
    Intent.CREATE_EVENT: "Preparing to create event...",
    Intent.DELETE_EVENT: "Finding event to delete...",
}
_FALLBACK_INTENT_STATUS = "Processing question..."


class TurnStopped(Exception):
  """The turn lost its slot (stop or reset) between two steps."""


class ChatOrchestrator:
  """Runs one chat turn at a time against the generation session.

  A turn is classify -> one of question / create / delete, or, for images,
  recognize -> extract. Input arriving while a turn holds the slot is
  dropped. `stop()` frees the slot immediately.
  """

  def __init__(self,
               session: GenerationSession,
               calendar: Optional[CalendarStore] = None,
               recognizer: Recognizer = recognize_text,
               state: Optional[ConversationState] = None,
               clock: Callable[[], datetime] = now_local):
    self.session = session
    self.calendar = calendar
    self.recognizer = recognizer
    self.state = state if state is not None else ConversationState()
    self._clock = clock
    self._task: Optional[asyncio.Task] = None
    self._turn_counter = 0
    self._active_turn: Optional[int] = None

  # -------------------------------------------------------------------------
  #  Lifecycle
  # -------------------------------------------------------------------------

  async def load_model(self) -> bool:
    loaded = await self.session.load()
    if loaded:
      self.state.update(is_model_loaded=True, error_message=None)
    else:
      self.state.update(is_model_loaded=False,
                        error_message=f"Failed to load: {self.session.load_error}")
    return loaded

  @property
  def is_busy(self) -> bool:
    return self._active_turn is not None or self.session.live_handle is not None

  async def wait_idle(self) -> None:
    task = self._task
    if task is not None:
      await asyncio.gather(task, return_exceptions=True)

  def _claim_turn(self) -> int:
    self._turn_counter += 1
    self._active_turn = self._turn_counter
    return self._turn_counter

  def _release_turn(self, token: int) -> None:
    if self._active_turn != token:
      return
    self._active_turn = None
    self.state.update(is_processing=False, phase=TurnPhase.IDLE)

  def _check_live(self, token: int) -> None:
    if self._active_turn != token:
      raise TurnStopped()

  def _clear_turn_outputs(self) -> Dict[str, Any]:
    return {
        "is_processing": True,
        "error_message": None,
        "extracted_event": None,
        "show_event_editor": False,
        "event_to_delete": None,
        "intent": None,
    }

  # -------------------------------------------------------------------------
  #  Submission
  # -------------------------------------------------------------------------

  def submit_text(self, text: Optional[str],
                  image: Optional[ImageInput] = None) -> Optional[asyncio.Task]:
    """Start a turn for typed input. Returns None when the input is dropped."""
    if image is not None:
      return self.submit_image(image, text)

    prompt = normalize_input_as_text(text)
    if not prompt:
      return None
    if self.is_busy:
      _log_debug("[ORCHESTRATOR] turn rejected: another turn is in flight")
      return None

    token = self._claim_turn()
    self.state.append_user(prompt)
    self.state.begin_pending(THINKING_STATUS)
    self.state.update(phase=TurnPhase.CLASSIFYING_INTENT, **self._clear_turn_outputs())
    print(f"[ORCHESTRATOR] turn={token} text={prompt!r}", flush=True)
    self._task = asyncio.create_task(
        self._run(token, "Error", self._run_text_turn, prompt))
    return self._task

  def submit_image(self, image: ImageInput,
                   text: Optional[str] = None) -> Optional[asyncio.Task]:
    """Start an image intake turn. Images always mean "create an event"."""
    if image is None:
      return None
    if self.is_busy:
      _log_debug("[ORCHESTRATOR] image rejected: another turn is in flight")
      return None

    extra_text = normalize_input_as_text(text)
    token = self._claim_turn()
    self.state.append_user(extra_text, describe_image(image))
    self.state.begin_pending(SCANNING_STATUS)
    fields = self._clear_turn_outputs()
    fields["intent"] = Intent.CREATE_EVENT
    self.state.update(phase=TurnPhase.EXTRACTING_CREATE_FIELDS,
                      analysis_status=SCANNING_STATUS,
                      **fields)
    print(f"[ORCHESTRATOR] turn={token} image intake", flush=True)
    self._task = asyncio.create_task(
        self._run(token, "Analysis failed", self._run_image_intake, image, extra_text))
    return self._task

  async def _run(self, token: int, failure_label: str,
                 flow: Callable[..., Awaitable[None]], *args: Any) -> None:
    try:
      await flow(token, *args)
    except TurnStopped:
      _log_debug(f"[ORCHESTRATOR] turn={token} stopped between steps")
      if self._active_turn == token:
        self.state.stop_pending()
    except asyncio.CancelledError:
      _log_debug(f"[ORCHESTRATOR] turn={token} cancelled")
      if self._active_turn == token:
        self.state.stop_pending()
      raise
    except Exception as exc:
      self._handle_generation_error(token, failure_label, exc)
    finally:
      self._release_turn(token)

  def _handle_generation_error(self, token: int, failure_label: str,
                               exc: Exception) -> None:
    if self._active_turn != token:
      return
    if isinstance(exc, (SessionNotReady, GenerationFailed)):
      print(f"[ORCHESTRATOR] turn={token} failed: {exc}", flush=True)
    else:
      logger.exception("Chat turn %s failed", token)
    message = f"{failure_label}: {exc}"
    self.state.fail_pending(message)
    self.state.update(error_message=message, analysis_status="")

  # -------------------------------------------------------------------------
  #  Cancellation
  # -------------------------------------------------------------------------

  def stop(self) -> bool:
    """Cancel the live turn. Returns False when nothing was running."""
    token = self._active_turn
    handle_cancelled = self.session.cancel_live()
    if token is None and not handle_cancelled:
      return False

    self._active_turn = None
    task = self._task
    if task is not None and not task.done():
      task.cancel()
    self.state.stop_pending()
    self.state.update(is_processing=False,
                      phase=TurnPhase.IDLE,
                      analysis_status="")
    print(f"[ORCHESTRATOR] turn={token} stopped by user", flush=True)
    return True

  def reset_chat(self) -> None:
    self.stop()
    self.session.reset()
    self.state.clear()

  # -------------------------------------------------------------------------
  #  Steps
  # -------------------------------------------------------------------------

  async def _stream_step(self, token: int, prompt: str,
                         on_text: Optional[Callable[[str], Any]] = None) -> str:
    """One single-shot generation: fresh context, prompt, full reply."""
    self._check_live(token)
    self.session.reset()
    _log_debug(f"[ORCHESTRATOR] prompt:\n{prompt}")
    handle = self.session.stream_prompt(prompt)
    text = ""
    async for piece in handle:
      text += piece
      if on_text is not None:
        on_text(text)
    if handle.cancelled:
      raise TurnStopped()
    self._check_live(token)
    return text

  async def _run_text_turn(self, token: int, prompt: str) -> None:
    intent = await self._determine_intent(token, prompt)
    if intent is Intent.CREATE_EVENT:
      await self._handle_creation(token, prompt)
    elif intent is Intent.DELETE_EVENT:
      await self._handle_deletion(token, prompt)
    else:
      await self._handle_question(token, prompt)

  async def _determine_intent(self, token: int, prompt: str) -> Intent:
    self.state.update_status(INTENT_STATUS)
    reply = await self._stream_step(token, build_intent_prompt(prompt))
    intent = classify_intent(reply)
    matched = any(digit in reply for digit in INTENT_DIGITS)
    status = _INTENT_STATUS[intent] if matched else _FALLBACK_INTENT_STATUS
    print(f"[ORCHESTRATOR] turn={token} intent={intent.value}", flush=True)
    self.state.update(intent=intent)
    self.state.update_status(status)
    return intent

  def _summarize(self, start: datetime, end: datetime) -> str:
    if self.calendar is None:
      return NO_CALENDAR_COLLABORATOR
    return self.calendar.summarize_events(start, end)

  async def _handle_question(self, token: int, prompt: str) -> None:
    self.state.update(phase=TurnPhase.ANSWERING_QUESTION)
    now = self._clock()
    reply = await self._stream_step(token, build_date_range_prompt(prompt, now))
    dates = parse_date_or_range(reply)
    if len(dates) == 1:
      self.state.update_status(f"Checking events on {format_short_date(dates[0])}...")
    elif len(dates) == 2:
      self.state.update_status(
          f"Checking events from {format_short_date(dates[0])} to {format_short_date(dates[1])}...")
    else:
      self.state.update_status("Checking today's events...")

    start, end = resolve_query_window(dates, now)
    context = self._summarize(start, end)
    _log_debug(f"[ORCHESTRATOR] calendar context {start.isoformat()} - {end.isoformat()}:\n{context}")

    answer = await self._stream_step(token,
                                     build_final_answer_prompt(prompt, context),
                                     on_text=self.state.update_pending)
    self.state.complete_pending(answer)

  async def _handle_creation(self, token: int, prompt: str) -> None:
    self.state.update(phase=TurnPhase.EXTRACTING_CREATE_FIELDS)
    now = self._clock()
    reply = await self._stream_step(
        token,
        build_create_event_prompt(prompt, now),
        on_text=lambda text: self.state.update_status(f"Analyzing: {text}"))
    self._present_event(parse_event_fields(reply, now))

  async def _handle_deletion(self, token: int, prompt: str) -> None:
    self.state.update(phase=TurnPhase.IDENTIFYING_DELETE_TARGET)
    reply = await self._stream_step(token, build_delete_target_prompt(prompt))
    title = extract_delete_target(reply)
    self.state.update(event_to_delete=title)
    self.state.complete_pending(f"I'll help you delete '{title}'. Please confirm.")

  async def _run_image_intake(self, token: int, image: ImageInput,
                              extra_text: str) -> None:
    recognized = await recognize_image_text(image, self.recognizer)
    self._check_live(token)
    self.state.update(analysis_status=INTERPRETING_STATUS)
    self.state.update_status(INTERPRETING_STATUS)

    def _on_text(text: str) -> None:
      self.state.update(analysis_status=text)
      self.state.update_status(f"Analyzing: {text}")

    now = self._clock()
    reply = await self._stream_step(
        token,
        build_image_extraction_prompt(recognized, now, extra_text),
        on_text=_on_text)
    self.state.update(analysis_status="")
    self._present_event(parse_event_fields(reply, now))

  def _present_event(self, parsed: ParsedEventData) -> None:
    self.state.update(extracted_event=parsed, show_event_editor=True)
    self.state.complete_pending(EDITOR_OPENED_MESSAGE)

  # -------------------------------------------------------------------------
  #  Confirmation hand-off
  # -------------------------------------------------------------------------

  def confirm_create(self,
                     title: str,
                     start: datetime,
                     end: Optional[datetime] = None,
                     location: Optional[str] = None,
                     notes: Optional[str] = None) -> Optional[Event]:
    """Save an event the user accepted in the editor."""
    if end is None:
      end = start + timedelta(minutes=DEFAULT_EVENT_DURATION_MINUTES)
    if self.calendar is None:
      self.state.append_system(f"Failed to create event: {NO_CALENDAR_COLLABORATOR}")
      return None
    try:
      event = self.calendar.create_event(title, start, end, location, notes)
    except CalendarError as exc:
      print(f"[ORCHESTRATOR] create failed: {exc}", flush=True)
      self.state.append_system(f"Failed to create event: {exc}")
      return None
    self.state.append_system(f"Created event: {event.title}")
    self.state.update(extracted_event=None, show_event_editor=False)
    return event

  def confirm_delete(self, title: Optional[str] = None) -> bool:
    target = (title if title is not None else self.state.event_to_delete) or ""
    target = target.strip()
    if not target:
      return False
    if self.calendar is None:
      self.state.append_system(f"Failed to delete event: {NO_CALENDAR_COLLABORATOR}")
      return False
    deleted = self.calendar.delete_event_by_title(target)
    if deleted:
      self.state.append_system(f"Deleted event: {target}")
    else:
      self.state.append_system(f"Could not find an upcoming event named '{target}'.")
    self.state.update(event_to_delete=None)
    return deleted

  def upcoming_events(self) -> List[Event]:
    if self.calendar is None:
      return []
    return self.calendar.upcoming_events()
