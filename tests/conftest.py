from __future__ import annotations

import asyncio
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from smartcal.agent import ChatOrchestrator, GenerationSession
from smartcal.config import LOCAL_TZ
from smartcal.state import CalendarStore

TEST_MODEL = "test-model"

# Sunday
FIXED_NOW = datetime(2025, 6, 1, 10, 0, tzinfo=LOCAL_TZ)


def _chunk(text: Optional[str]) -> Any:
  return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


def split_reply(text: str, size: int = 4) -> List[str]:
  if not text:
    return []
  return [text[i:i + size] for i in range(0, len(text), size)]


class FakeStream:
  """Stands in for openai's AsyncStream of chat completion chunks.

  With block=True the stream hangs after its pieces until cancelled.
  With error set, it raises after its pieces.
  """

  def __init__(self, pieces: List[str], block: bool = False,
               error: Optional[BaseException] = None):
    self.pieces = list(pieces)
    self.block = block
    self.error = error
    self.delivered = 0
    self.closed = False

  def __aiter__(self):
    return self._iterate()

  async def _iterate(self):
    for piece in self.pieces:
      await asyncio.sleep(0)
      self.delivered += 1
      yield _chunk(piece)
    if self.error is not None:
      raise self.error
    if self.block:
      await asyncio.Event().wait()

  async def close(self) -> None:
    self.closed = True


class FakeCompletions:

  def __init__(self):
    self.script: List[Any] = []
    self.calls: List[Dict[str, Any]] = []
    self.streams: List[FakeStream] = []

  def queue(self, *replies: Any) -> None:
    self.script.extend(replies)

  def prompts(self) -> List[str]:
    return [call["messages"][-1]["content"] for call in self.calls]

  async def create(self, **kwargs: Any) -> FakeStream:
    self.calls.append(kwargs)
    if not self.script:
      raise AssertionError("unexpected generation call")
    reply = self.script.pop(0)
    if isinstance(reply, BaseException):
      raise reply
    stream = reply if isinstance(reply, FakeStream) else FakeStream(split_reply(reply))
    self.streams.append(stream)
    return stream


class FakeModels:

  def __init__(self):
    self.error: Optional[Exception] = None

  async def list(self) -> Any:
    if self.error is not None:
      raise self.error
    return SimpleNamespace(data=[SimpleNamespace(id=TEST_MODEL)])


class FakeClient:

  def __init__(self):
    self.chat = SimpleNamespace(completions=FakeCompletions())
    self.models = FakeModels()

  @property
  def completions(self) -> FakeCompletions:
    return self.chat.completions


async def wait_until(predicate, timeout: float = 2.0) -> None:
  loop = asyncio.get_running_loop()
  deadline = loop.time() + timeout
  while not predicate():
    if loop.time() > deadline:
      raise AssertionError("condition not reached in time")
    await asyncio.sleep(0.01)


@pytest.fixture
def fake_client() -> FakeClient:
  return FakeClient()


@pytest.fixture
def session(fake_client) -> GenerationSession:
  return GenerationSession(client=fake_client, options={"model": TEST_MODEL})


@pytest.fixture
def calendar() -> CalendarStore:
  return CalendarStore(access_granted=True, persist=False)


@pytest.fixture
def recognized_text() -> Dict[str, Any]:
  return {"text": "", "calls": 0}


@pytest.fixture
def recognizer(recognized_text):

  def _recognize(image):
    recognized_text["calls"] += 1
    return recognized_text["text"]

  return _recognize


@pytest_asyncio.fixture
async def orchestrator(session, calendar, recognizer) -> ChatOrchestrator:
  orch = ChatOrchestrator(session,
                          calendar,
                          recognizer=recognizer,
                          clock=lambda: FIXED_NOW)
  await orch.load_model()
  yield orch
  orch.stop()
  await orch.wait_idle()
