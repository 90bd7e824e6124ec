from __future__ import annotations

import inspect
from typing import Any, AsyncIterator, Dict, List, Optional

from ..config import LLM_DEBUG, LLM_MODEL
from ..llm import default_generation_options, get_async_client


class SessionNotReady(RuntimeError):
  """The model has not been loaded, so no session exists yet."""


class GenerationFailed(RuntimeError):
  """The generator failed to start or broke off mid-stream."""


def _print_raw_output(*, kind: str, model: str, raw_output: str,
                      cancelled: bool = False) -> None:
  if not LLM_DEBUG:
    return
  meta_parts = [
      f"kind={kind}",
      f"model={model}",
  ]
  if cancelled:
    meta_parts.append("cancelled=1")
  print(f"[AGENT LLM RAW] {' '.join(meta_parts)}", flush=True)
  print(raw_output if raw_output else "(empty)", flush=True)
  print("[AGENT LLM RAW END]", flush=True)


def _extract_stream_delta_text(delta_content: Any) -> str:
  if isinstance(delta_content, str):
    return delta_content
  if isinstance(delta_content, list):
    chunks: List[str] = []
    for item in delta_content:
      if isinstance(item, str):
        chunks.append(item)
        continue
      text_val = None
      if isinstance(item, dict):
        text_val = item.get("text")
      else:
        text_val = getattr(item, "text", None)
      if isinstance(text_val, str):
        chunks.append(text_val)
    return "".join(chunks)
  text_val = getattr(delta_content, "text", None)
  if isinstance(text_val, str):
    return text_val
  return ""


def _event_text(event: Any) -> str:
  choices = getattr(event, "choices", None)
  if not isinstance(choices, list) or not choices:
    return ""
  delta = getattr(choices[0], "delta", None)
  if delta is None:
    return ""
  return _extract_stream_delta_text(getattr(delta, "content", None))


class GenerationHandle:
  """One in-flight streaming reply.

  Iterate it (once) to receive text chunks. `cancel()` may be called at any
  time; no chunk is yielded after it, and the underlying HTTP stream is
  closed when the iterator unwinds.
  """

  def __init__(self, session: "GenerationSession", prompt: str,
               messages: List[Dict[str, str]]):
    self._session = session
    self.prompt = prompt
    self._messages = messages
    self._cancelled = False
    self._started = False
    self._finished = False
    self._chunks: List[str] = []
    self._stream: Any = None

  @property
  def cancelled(self) -> bool:
    return self._cancelled

  @property
  def finished(self) -> bool:
    return self._finished

  @property
  def text(self) -> str:
    return "".join(self._chunks)

  def cancel(self) -> None:
    if self._cancelled:
      return
    self._cancelled = True
    self._session._release(self)

  def __aiter__(self) -> AsyncIterator[str]:
    if self._started:
      raise RuntimeError("A generation stream can only be consumed once.")
    self._started = True
    return self._produce()

  async def _produce(self) -> AsyncIterator[str]:
    completed = False
    try:
      if self._cancelled:
        return
      try:
        self._stream = await self._session._open_stream(self._messages)
      except Exception as exc:
        raise GenerationFailed(f"Could not start generation: {exc}") from exc

      try:
        async for event in self._stream:
          if self._cancelled:
            break
          piece = _event_text(event)
          if not piece:
            continue
          if self._cancelled:
            break
          self._chunks.append(piece)
          yield piece
        else:
          completed = not self._cancelled
      except GenerationFailed:
        raise
      except Exception as exc:
        raise GenerationFailed(f"Generation stopped unexpectedly: {exc}") from exc
    finally:
      await self._close_stream()
      self._finished = True
      self._session._release(self)
      _print_raw_output(kind="text",
                        model=self._session.model,
                        raw_output=self.text,
                        cancelled=self._cancelled)
      if completed:
        self._session._remember(self.prompt, self.text)

  async def _close_stream(self) -> None:
    stream = self._stream
    self._stream = None
    if stream is None:
      return
    close = getattr(stream, "close", None)
    if not callable(close):
      return
    try:
      result = close()
      if inspect.isawaitable(result):
        await result
    except Exception as exc:
      print(f"[LLM_PROVIDER] stream close failed: {exc}", flush=True)


class GenerationSession:
  """Conversation context on top of the local model server.

  The session remembers completed exchanges until `reset()` is called.
  Only one GenerationHandle may be live at a time.
  """

  def __init__(self, client: Any = None,
               options: Optional[Dict[str, Any]] = None):
    self._client = client
    self._options = dict(options) if options is not None else default_generation_options()
    self._ready = False
    self.load_error: Optional[str] = None
    self._history: List[Dict[str, str]] = []
    self._live_handle: Optional[GenerationHandle] = None

  @property
  def model(self) -> str:
    return str(self._options.get("model") or LLM_MODEL)

  @property
  def is_ready(self) -> bool:
    return self._ready

  @property
  def live_handle(self) -> Optional[GenerationHandle]:
    return self._live_handle

  @property
  def history(self) -> List[Dict[str, str]]:
    return [dict(message) for message in self._history]

  async def load(self) -> bool:
    """Connect to the model server and open a fresh session."""
    if self._client is None:
      self._client = get_async_client()
    try:
      listing = await self._client.models.list()
    except Exception as exc:
      self._ready = False
      self.load_error = str(exc)
      print(f"[LLM_PROVIDER] model load failed: {exc}", flush=True)
      return False

    available = [getattr(item, "id", None) for item in (getattr(listing, "data", None) or [])]
    if available and self.model not in available:
      print(f"[LLM_PROVIDER] model {self.model!r} not listed by server; trying it anyway", flush=True)
    self._ready = True
    self.load_error = None
    self._history = []
    print(f"[LLM_PROVIDER] session ready model={self.model}", flush=True)
    return True

  def reset(self) -> None:
    if not self._ready:
      return
    self._history = []

  def stream_prompt(self, prompt: str) -> GenerationHandle:
    if not self._ready:
      raise SessionNotReady("Session not initialized")
    live = self._live_handle
    if live is not None and not live.finished and not live.cancelled:
      raise GenerationFailed("A generation is already in flight.")
    messages = self.history + [{"role": "user", "content": prompt}]
    handle = GenerationHandle(self, prompt, messages)
    self._live_handle = handle
    return handle

  def cancel_live(self) -> bool:
    handle = self._live_handle
    if handle is None:
      return False
    handle.cancel()
    return True

  async def _open_stream(self, messages: List[Dict[str, str]]) -> Any:
    return await self._client.chat.completions.create(
        messages=messages,
        stream=True,
        **self._options,
    )

  def _remember(self, prompt: str, reply: str) -> None:
    self._history.append({"role": "user", "content": prompt})
    self._history.append({"role": "assistant", "content": reply})

  def _release(self, handle: GenerationHandle) -> None:
    if self._live_handle is handle:
      self._live_handle = None
