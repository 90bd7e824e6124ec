from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .agent import ChatOrchestrator, GenerationSession
from .config import CALENDAR_ACCESS, CALENDAR_TIMEZONE_NAME, LLM_BASE_URL, LLM_MODEL
from .llm import close_async_client
from .routes import router
from .state import CalendarStore


def create_app(orchestrator: Optional[ChatOrchestrator] = None) -> FastAPI:
  """Build the API app.

  Pass an orchestrator to skip model loading (it is used as given).
  """

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    owned = orchestrator is None
    if owned:
      print("LLM_BASE_URL:", LLM_BASE_URL, flush=True)
      print("LLM_MODEL:", LLM_MODEL, flush=True)
      print("CALENDAR_TIMEZONE:", CALENDAR_TIMEZONE_NAME, flush=True)
      print("CALENDAR_ACCESS:", CALENDAR_ACCESS, flush=True)
      calendar = CalendarStore()
      calendar.load()
      app.state.orchestrator = ChatOrchestrator(GenerationSession(), calendar)
      await app.state.orchestrator.load_model()
    else:
      app.state.orchestrator = orchestrator
    try:
      yield
    finally:
      app.state.orchestrator.stop()
      if owned:
        await close_async_client()

  app = FastAPI(title="SmartCalendar", lifespan=lifespan)
  app.include_router(router)
  return app


app = create_app()
