from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]


class Intent(str, Enum):
  """Purpose of a turn. Values follow the digits the model is asked for."""
  QUESTION = "question"
  CREATE_EVENT = "create_event"
  DELETE_EVENT = "delete_event"


INTENT_DIGITS = {
    "1": Intent.QUESTION,
    "2": Intent.CREATE_EVENT,
    "3": Intent.DELETE_EVENT,
}


class TurnPhase(str, Enum):
  IDLE = "idle"
  CLASSIFYING_INTENT = "classifying_intent"
  ANSWERING_QUESTION = "answering_question"
  EXTRACTING_CREATE_FIELDS = "extracting_create_fields"
  IDENTIFYING_DELETE_TARGET = "identifying_delete_target"


# ---------------------------------------------------------------------------
#  Transcript
# ---------------------------------------------------------------------------

class ImageRef(BaseModel):
  """Metadata for an image attached to a user entry. Pixels are not kept."""
  model_config = ConfigDict(extra="ignore")

  format: Optional[str] = None
  width: int = 0
  height: int = 0


class TranscriptEntry(BaseModel):
  model_config = ConfigDict(extra="ignore")

  id: str = Field(default_factory=lambda: uuid.uuid4().hex)
  role: Role
  text: str = ""
  is_pending: bool = False
  attached_image: Optional[ImageRef] = None


# ---------------------------------------------------------------------------
#  Extraction results
# ---------------------------------------------------------------------------

class ParsedEventData(BaseModel):
  """Event fields pulled out of model output, awaiting user confirmation."""
  model_config = ConfigDict(extra="ignore")

  title: str = "Untitled Event"
  date: datetime
  location: str = ""
  notes: str = ""
