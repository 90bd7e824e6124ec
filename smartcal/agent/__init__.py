"""
Chat orchestration: intent routing, the three turn flows, and image intake
"""

from .llm_provider import (GenerationFailed, GenerationHandle,
                           GenerationSession, SessionNotReady)
from .normalizer import parse_date_or_range
from .orchestrator import ChatOrchestrator
from .schemas import Intent, ParsedEventData, TranscriptEntry, TurnPhase
from .slot_extractor import parse_event_fields
from .state import ConversationState

__all__ = [
    "ChatOrchestrator",
    "ConversationState",
    "GenerationFailed",
    "GenerationHandle",
    "GenerationSession",
    "Intent",
    "ParsedEventData",
    "SessionNotReady",
    "TranscriptEntry",
    "TurnPhase",
    "parse_date_or_range",
    "parse_event_fields",
]
