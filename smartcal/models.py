from __future__ import annotations

from pydantic import BaseModel
from typing import Optional


class Event(BaseModel):
    id: int
    title: str
    start: str  # "YYYY-MM-DDTHH:MM"
    end: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None


class ChatRequest(BaseModel):
    text: Optional[str] = None
    image: Optional[str] = None  # data URL


class ImageRequest(BaseModel):
    image: str  # data URL
    text: Optional[str] = None


class EventConfirmCreate(BaseModel):
    title: str
    start: str
    end: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class EventConfirmDelete(BaseModel):
    title: str
