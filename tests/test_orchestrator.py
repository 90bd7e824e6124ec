from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from PIL import Image

from smartcal.agent import ChatOrchestrator, GenerationSession
from smartcal.agent.orchestrator import EDITOR_OPENED_MESSAGE
from smartcal.agent.schemas import Intent, TurnPhase
from smartcal.agent.state import STOPPED_MESSAGE
from smartcal.config import LOCAL_TZ
from smartcal.state import CalendarStore
from smartcal.utils import now_local

from conftest import FIXED_NOW, TEST_MODEL, FakeStream, wait_until


def _statuses(orchestrator):
  seen = []

  def _record(snapshot):
    entries = snapshot["entries"]
    if entries and entries[-1]["is_pending"]:
      seen.append(entries[-1]["text"])

  orchestrator.state.subscribe(_record)
  return seen


async def _turn(orchestrator, text):
  task = orchestrator.submit_text(text)
  assert task is not None
  await task


# -------------------------------------------------------------------------
#  Question flow
# -------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_question_flow_answers_from_calendar(orchestrator, fake_client, calendar):
  calendar.create_event("Gym", datetime(2025, 6, 2, 18, 0, tzinfo=LOCAL_TZ),
                        datetime(2025, 6, 2, 19, 0, tzinfo=LOCAL_TZ))
  fake_client.completions.queue("1", "2025-06-02", "You have Gym at 6 PM.")
  statuses = _statuses(orchestrator)

  await _turn(orchestrator, "What am I doing tomorrow?")

  entries = orchestrator.state.entries
  assert [(e.role, e.text, e.is_pending) for e in entries] == [
      ("user", "What am I doing tomorrow?", False),
      ("assistant", "You have Gym at 6 PM.", False),
  ]
  prompts = fake_client.completions.prompts()
  assert len(prompts) == 3
  assert "- Gym at 6:00 PM" in prompts[2]
  # each step starts from a clean context
  assert all(len(call["messages"]) == 1 for call in fake_client.completions.calls)

  assert "Determining intent..." in statuses
  assert "Checking schedule..." in statuses
  assert "Checking events on Jun 2, 2025..." in statuses
  assert orchestrator.state.intent is Intent.QUESTION
  assert orchestrator.state.phase is TurnPhase.IDLE
  assert not orchestrator.is_busy


@pytest.mark.asyncio
async def test_question_without_date_checks_today(orchestrator, fake_client):
  fake_client.completions.queue("I guess 1", "not sure", "Nothing today!")
  statuses = _statuses(orchestrator)

  await _turn(orchestrator, "Anything on?")

  assert "Checking today's events..." in statuses
  assert "CONTEXT (Events found):\nNo events." in fake_client.completions.prompts()[2]
  assert orchestrator.state.last_entry.text == "Nothing today!"


@pytest.mark.asyncio
async def test_question_with_range(orchestrator, fake_client):
  fake_client.completions.queue("1", "Sure: 2025-06-01, 2025-06-07", "Busy week.")
  statuses = _statuses(orchestrator)

  await _turn(orchestrator, "What's on this week?")

  assert "Checking events from Jun 1, 2025 to Jun 7, 2025..." in statuses


@pytest.mark.asyncio
async def test_unparsable_intent_defaults_to_question(orchestrator, fake_client):
  fake_client.completions.queue("hmm", "2025-06-01", "Free all day.")
  statuses = _statuses(orchestrator)

  await _turn(orchestrator, "hello?")

  assert "Processing question..." in statuses
  assert orchestrator.state.intent is Intent.QUESTION
  assert orchestrator.state.last_entry.text == "Free all day."


# -------------------------------------------------------------------------
#  Creation / deletion flows
# -------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_creation_flow_hands_off_to_editor(orchestrator, fake_client, calendar):
  fake_client.completions.queue(
      "2",
      "Title: Dentist\nDate: 2025-06-03 09:00\nLocation: Clinic\nDescription: Checkup")
  statuses = _statuses(orchestrator)

  await _turn(orchestrator, "Add a dentist appointment Tuesday at 9")

  state = orchestrator.state
  assert state.show_event_editor is True
  assert state.extracted_event.title == "Dentist"
  assert state.extracted_event.date == datetime(2025, 6, 3, 9, 0, tzinfo=LOCAL_TZ)
  assert state.extracted_event.location == "Clinic"
  assert state.extracted_event.notes == "Checkup"
  assert state.last_entry.text == EDITOR_OPENED_MESSAGE
  assert not state.last_entry.is_pending
  assert "Preparing to create event..." in statuses
  assert any(status.startswith("Analyzing: Titl") for status in statuses)
  # nothing is saved until the user confirms
  assert calendar.events == []


@pytest.mark.asyncio
async def test_deletion_flow_trims_candidate(orchestrator, fake_client, calendar):
  soon = now_local() + timedelta(days=1)
  calendar.create_event("Team Sync", soon, soon + timedelta(hours=1))
  fake_client.completions.queue("3", "  Team Sync  ")

  await _turn(orchestrator, "cancel the team sync")

  assert orchestrator.state.event_to_delete == "Team Sync"
  assert orchestrator.state.last_entry.text == "I'll help you delete 'Team Sync'. Please confirm."
  assert len(calendar.events) == 1


# -------------------------------------------------------------------------
#  Single-flight and cancellation
# -------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_second_turn_while_busy_is_noop(orchestrator, fake_client):
  fake_client.completions.queue(FakeStream(["1"], block=True))
  assert orchestrator.submit_text("first") is not None
  await wait_until(lambda: fake_client.completions.streams
                   and fake_client.completions.streams[0].delivered == 1)

  before = orchestrator.state.snapshot()["entries"]
  assert orchestrator.submit_text("second") is None
  assert orchestrator.submit_image(Image.new("RGB", (4, 4))) is None
  assert orchestrator.state.snapshot()["entries"] == before
  assert len(fake_client.completions.calls) == 1


@pytest.mark.asyncio
async def test_stop_finalizes_turn_and_frees_slot(orchestrator, fake_client):
  fake_client.completions.queue(FakeStream(["Thin"], block=True))
  orchestrator.submit_text("What's up?")
  await wait_until(lambda: fake_client.completions.streams
                   and fake_client.completions.streams[0].delivered == 1)

  assert orchestrator.stop() is True
  await orchestrator.wait_idle()

  last = orchestrator.state.last_entry
  assert last.text == STOPPED_MESSAGE
  assert not last.is_pending
  assert not orchestrator.is_busy
  assert orchestrator.state.phase is TurnPhase.IDLE
  assert fake_client.completions.streams[0].closed
  assert len(fake_client.completions.calls) == 1

  fake_client.completions.queue("3", "Gym")
  await _turn(orchestrator, "delete gym")
  assert orchestrator.state.event_to_delete == "Gym"


@pytest.mark.asyncio
async def test_stop_when_idle(orchestrator):
  assert orchestrator.stop() is False


@pytest.mark.asyncio
async def test_stop_during_final_answer(orchestrator, fake_client):
  fake_client.completions.queue("1", "2025-06-01", FakeStream(["You have ", "two"], block=True))
  orchestrator.submit_text("today?")
  await wait_until(lambda: len(fake_client.completions.streams) == 3
                   and fake_client.completions.streams[2].delivered == 2)
  assert orchestrator.state.last_entry.text == "You have two"

  orchestrator.stop()
  await orchestrator.wait_idle()

  pending = [e for e in orchestrator.state.entries if e.is_pending]
  assert pending == []
  assert orchestrator.state.last_entry.text == STOPPED_MESSAGE


@pytest.mark.asyncio
async def test_reset_chat_clears_everything(orchestrator, fake_client, session):
  fake_client.completions.queue("3", "Gym")
  await _turn(orchestrator, "delete gym")

  orchestrator.reset_chat()

  assert orchestrator.state.entries == []
  assert orchestrator.state.event_to_delete is None
  assert orchestrator.state.is_model_loaded is True
  assert session.history == []


# -------------------------------------------------------------------------
#  Failures
# -------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_session_not_ready_is_reported(calendar, fake_client):
  orchestrator = ChatOrchestrator(GenerationSession(client=fake_client), calendar,
                                  clock=lambda: FIXED_NOW)
  await _turn(orchestrator, "hi")

  last = orchestrator.state.last_entry
  assert last.role == "system"
  assert last.text == "Error: Session not initialized"
  assert orchestrator.state.error_message == "Error: Session not initialized"
  assert not orchestrator.is_busy


@pytest.mark.asyncio
async def test_generation_failure_releases_slot(orchestrator, fake_client):
  fake_client.completions.queue("1", ConnectionError("server went away"))
  await _turn(orchestrator, "what's on?")

  last = orchestrator.state.last_entry
  assert last.role == "system"
  assert last.text.startswith("Error: ")
  assert "server went away" in last.text
  assert not any(e.is_pending for e in orchestrator.state.entries)

  fake_client.completions.queue("3", "Gym")
  await _turn(orchestrator, "delete gym")
  assert orchestrator.state.event_to_delete == "Gym"
  assert orchestrator.state.error_message is None


@pytest.mark.asyncio
async def test_empty_input_is_dropped(orchestrator):
  assert orchestrator.submit_text("   ") is None
  assert orchestrator.submit_text(None) is None
  assert orchestrator.state.entries == []


@pytest.mark.asyncio
async def test_load_failure_is_surfaced(calendar, fake_client):
  fake_client.models.error = ConnectionError("no server")
  orchestrator = ChatOrchestrator(GenerationSession(client=fake_client), calendar)
  assert await orchestrator.load_model() is False
  assert orchestrator.state.is_model_loaded is False
  assert orchestrator.state.error_message == "Failed to load: no server"


# -------------------------------------------------------------------------
#  Image intake
# -------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_image_intake_skips_intent(orchestrator, fake_client, recognized_text):
  recognized_text["text"] = "JAZZ NIGHT\nBlue Note\nJune 5 2025 8pm"
  fake_client.completions.queue(
      "Title: Jazz Night\nDate: 2025-06-05 20:00\nLocation: Blue Note\nDescription: None")
  seen_analysis = []
  orchestrator.state.subscribe(lambda snap: seen_analysis.append(snap["analysis_status"]))

  task = orchestrator.submit_image(Image.new("RGB", (40, 20)), "bring the tickets")
  await task

  prompts = fake_client.completions.prompts()
  assert len(prompts) == 1
  assert "Today's date: Sunday, June 1, 2025" in prompts[0]
  assert "JAZZ NIGHT" in prompts[0]
  assert "bring the tickets" in prompts[0]

  state = orchestrator.state
  assert state.intent is Intent.CREATE_EVENT
  assert state.extracted_event.title == "Jazz Night"
  assert state.extracted_event.date == datetime(2025, 6, 5, 20, 0, tzinfo=LOCAL_TZ)
  assert state.show_event_editor is True
  assert state.analysis_status == ""
  assert "Scanning document..." in seen_analysis
  assert "Interpreting details..." in seen_analysis

  first = state.entries[0]
  assert first.role == "user"
  assert first.attached_image.width == 40
  assert first.attached_image.height == 20
  assert state.last_entry.text == EDITOR_OPENED_MESSAGE


@pytest.mark.asyncio
async def test_chat_with_image_routes_to_intake(orchestrator, fake_client, recognized_text):
  recognized_text["text"] = "Bake sale Saturday"
  fake_client.completions.queue("Title: Bake Sale\nDate: 2025-06-07")

  task = orchestrator.submit_text("add this", image=Image.new("RGB", (8, 8)))
  await task

  assert recognized_text["calls"] == 1
  assert len(fake_client.completions.calls) == 1
  assert orchestrator.state.extracted_event.title == "Bake Sale"


@pytest.mark.asyncio
async def test_recognizer_failure_degrades_to_empty_text(calendar, fake_client):
  def _broken(image):
    raise OSError("tesseract missing")

  orchestrator = ChatOrchestrator(GenerationSession(client=fake_client, options={"model": TEST_MODEL}),
                                  calendar, recognizer=_broken, clock=lambda: FIXED_NOW)
  await orchestrator.load_model()
  fake_client.completions.queue("nothing useful")

  await orchestrator.submit_image(Image.new("RGB", (8, 8)))

  parsed = orchestrator.state.extracted_event
  assert parsed.title == "Untitled Event"
  assert parsed.date == FIXED_NOW + timedelta(hours=1)
  assert 'Text: ""' in fake_client.completions.prompts()[0]


# -------------------------------------------------------------------------
#  Confirmation
# -------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_confirm_create_saves_with_default_duration(orchestrator, calendar):
  start = datetime(2025, 6, 3, 9, 0, tzinfo=LOCAL_TZ)
  event = orchestrator.confirm_create("Dentist", start, location="Clinic")

  assert event is not None
  assert event.end == "2025-06-03T10:00"
  assert calendar.events == [event]
  assert orchestrator.state.last_entry.text == "Created event: Dentist"
  assert orchestrator.state.last_entry.role == "system"


@pytest.mark.asyncio
async def test_confirm_create_reports_denied_access(session):
  await session.load()
  orchestrator = ChatOrchestrator(session, CalendarStore(access_granted=False, persist=False))
  start = datetime(2025, 6, 3, 9, 0, tzinfo=LOCAL_TZ)

  assert orchestrator.confirm_create("Dentist", start) is None
  assert orchestrator.state.last_entry.text.startswith("Failed to create event:")
  assert not orchestrator.is_busy


@pytest.mark.asyncio
async def test_confirm_delete(orchestrator, calendar):
  soon = now_local() + timedelta(days=1)
  calendar.create_event("Team Sync", soon, soon + timedelta(hours=1))
  orchestrator.state.update(event_to_delete="Team Sync")

  assert orchestrator.confirm_delete() is True
  assert calendar.events == []
  assert orchestrator.state.last_entry.text == "Deleted event: Team Sync"
  assert orchestrator.state.event_to_delete is None

  assert orchestrator.confirm_delete("Team Sync") is False
  assert "Team Sync" in orchestrator.state.last_entry.text


@pytest.mark.asyncio
async def test_confirmation_during_turn_keeps_pending_last(orchestrator, fake_client):
  fake_client.completions.queue(FakeStream(["1"], block=True))
  orchestrator.submit_text("first")
  await wait_until(lambda: fake_client.completions.streams)

  orchestrator.confirm_create("Dentist", datetime(2025, 6, 3, 9, 0, tzinfo=LOCAL_TZ))

  assert orchestrator.state.last_entry.is_pending
  assert orchestrator.state.entries[-2].text == "Created event: Dentist"


@pytest.mark.asyncio
async def test_upcoming_events(orchestrator, calendar):
  soon = now_local() + timedelta(days=3)
  event = calendar.create_event("Gym", soon, soon + timedelta(hours=1))
  assert orchestrator.upcoming_events() == [event]
