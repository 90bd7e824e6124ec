from __future__ import annotations

DELETE_TARGET_PROMPT_TEMPLATE = """IDENTIFY THE EVENT TO DELETE.
User prompt: "{user_text}"

Reply ONLY with the exact title of the event mentioned.
"""


def build_delete_target_prompt(user_text: str) -> str:
  return DELETE_TARGET_PROMPT_TEMPLATE.format(user_text=user_text)


def extract_delete_target(raw_reply: str) -> str:
  """The reply is used verbatim as the title, minus surrounding whitespace."""
  return (raw_reply or "").strip()
