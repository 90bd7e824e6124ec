from __future__ import annotations

from ..utils import _log_debug
from .schemas import INTENT_DIGITS, Intent

INTENT_ROUTER_PROMPT_TEMPLATE = """INSTRUCTIONS:
Analyze the user input and reply with ONE number only.

1 if the user is asking a question, checking the schedule, or looking up information.
2 if the user is explicitly asking to CREATE, ADD, or SCHEDULE a new event.
3 if the user is explicitly asking to DELETE, REMOVE, or CANCEL an existing event.

USER INPUT: "{user_text}"

REPLY WITH ONE OF THE NUMBERS (1, 2, or 3):
"""


def build_intent_prompt(user_text: str) -> str:
  return INTENT_ROUTER_PROMPT_TEMPLATE.format(user_text=user_text)


def classify_intent(raw_reply: str) -> Intent:
  """Map the router reply to an intent.

  Digits are checked in the order 1, 2, 3 regardless of where they appear,
  so "1 or 2" is a question. A reply without any of them is a question too.
  """
  reply = raw_reply or ""
  for digit, intent in INTENT_DIGITS.items():
    if digit in reply:
      _log_debug(f"[INTENT_ROUTER] reply={reply.strip()!r} -> {intent.value}")
      return intent
  _log_debug(f"[INTENT_ROUTER] no intent digit in {reply.strip()!r}, defaulting to question")
  return Intent.QUESTION
