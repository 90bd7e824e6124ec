from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from .agent import ChatOrchestrator
from .agent.normalizer import normalize_input_as_text
from .config import IMAGE_TOO_LARGE_MESSAGE, MAX_IMAGE_DATA_URL_CHARS
from .models import ChatRequest, EventConfirmCreate, EventConfirmDelete, ImageRequest
from .ocr import load_image
from .utils import parse_iso_minute

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_PING_SECONDS = 20


def _format_sse_event(event_type: str, payload: Dict[str, Any]) -> str:
  body = json.dumps(payload, ensure_ascii=False)
  return f"event: {event_type}\ndata: {body}\n\n"


def get_orchestrator(request: Request) -> ChatOrchestrator:
  orchestrator = getattr(request.app.state, "orchestrator", None)
  if orchestrator is None:
    raise HTTPException(status_code=503, detail="Chat is not ready.")
  return orchestrator


async def _decode_image(data_url: Optional[str]):
  if not data_url:
    return None
  if len(data_url) > MAX_IMAGE_DATA_URL_CHARS:
    raise HTTPException(status_code=413, detail=IMAGE_TOO_LARGE_MESSAGE)
  try:
    return await asyncio.to_thread(load_image, data_url)
  except ValueError as exc:
    raise HTTPException(status_code=400, detail=str(exc))


def _accepted(task) -> Dict[str, Any]:
  if task is None:
    raise HTTPException(status_code=409, detail="A reply is already being generated.")
  return {"accepted": True}


# -------------------------
# Chat
# -------------------------
@router.post("/api/chat", status_code=202)
async def chat(body: ChatRequest, request: Request):
  orchestrator = get_orchestrator(request)
  text = normalize_input_as_text(body.text)
  image = await _decode_image(body.image)
  if not text and image is None:
    raise HTTPException(status_code=400, detail="Message is empty.")
  if orchestrator.is_busy:
    raise HTTPException(status_code=409, detail="A reply is already being generated.")
  return _accepted(orchestrator.submit_text(text, image=image))


@router.post("/api/chat/image", status_code=202)
async def chat_image(body: ImageRequest, request: Request):
  orchestrator = get_orchestrator(request)
  image = await _decode_image(body.image)
  if image is None:
    raise HTTPException(status_code=400, detail="Image is empty.")
  if orchestrator.is_busy:
    raise HTTPException(status_code=409, detail="A reply is already being generated.")
  return _accepted(orchestrator.submit_image(image, body.text))


@router.post("/api/chat/stop")
async def chat_stop(request: Request):
  orchestrator = get_orchestrator(request)
  return {"stopped": orchestrator.stop()}


@router.post("/api/chat/reset")
async def chat_reset(request: Request):
  orchestrator = get_orchestrator(request)
  orchestrator.reset_chat()
  return {"ok": True}


@router.get("/api/chat/state")
async def chat_state(request: Request):
  orchestrator = get_orchestrator(request)
  return orchestrator.state.snapshot()


@router.get("/api/chat/stream")
async def chat_stream(request: Request):
  orchestrator = get_orchestrator(request)
  queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
  loop = asyncio.get_running_loop()

  def _enqueue(snapshot: Dict[str, Any]) -> None:
    try:
      loop.call_soon_threadsafe(queue.put_nowait, snapshot)
    except RuntimeError:
      # loop already closed
      return

  unsubscribe = orchestrator.state.subscribe(_enqueue)

  async def event_generator():
    try:
      yield _format_sse_event("state", orchestrator.state.snapshot())
      while True:
        if await request.is_disconnected():
          break
        try:
          snapshot = await asyncio.wait_for(queue.get(), timeout=SSE_PING_SECONDS)
        except asyncio.TimeoutError:
          yield _format_sse_event("ping", {})
          continue
        yield _format_sse_event("state", snapshot)
    finally:
      unsubscribe()

  return StreamingResponse(
      event_generator(),
      media_type="text/event-stream",
      headers={
          "Cache-Control": "no-cache",
          "Connection": "keep-alive",
          "X-Accel-Buffering": "no",
      },
  )


# -------------------------
# Event confirmation
# -------------------------
@router.post("/api/events/confirm-create")
async def confirm_create(body: EventConfirmCreate, request: Request):
  orchestrator = get_orchestrator(request)
  start = parse_iso_minute(body.start)
  if start is None:
    raise HTTPException(status_code=400, detail="Invalid start time.")
  end = None
  if body.end:
    end = parse_iso_minute(body.end)
    if end is None:
      raise HTTPException(status_code=400, detail="Invalid end time.")

  event = orchestrator.confirm_create(body.title, start, end, body.location, body.notes)
  if event is None:
    raise HTTPException(status_code=502, detail="Failed to create event.")
  return {"event": event.model_dump()}


@router.post("/api/events/confirm-delete")
async def confirm_delete(body: EventConfirmDelete, request: Request):
  orchestrator = get_orchestrator(request)
  title = (body.title or "").strip()
  if not title:
    raise HTTPException(status_code=400, detail="Title is empty.")
  if not orchestrator.confirm_delete(title):
    raise HTTPException(status_code=404, detail=f"No upcoming event named '{title}'.")
  return {"deleted": True, "title": title}


@router.get("/api/events/upcoming")
async def upcoming_events(request: Request):
  orchestrator = get_orchestrator(request)
  try:
    events = orchestrator.upcoming_events()
  except Exception as exc:
    logger.exception("Upcoming events fetch error")
    raise HTTPException(status_code=502, detail=str(exc))
  return {"events": [event.model_dump() for event in events]}
