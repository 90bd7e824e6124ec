from __future__ import annotations

from datetime import datetime

from ..utils import format_long_date

DATE_RANGE_PROMPT_TEMPLATE = """YOUR RESPONSIBILITY IS TO DETERMINE WHETHER THE USER IS TALKING ABOUT A SINGLE DATE OR A TIME RANGE.

Today's date: {today}
User prompt: "{user_text}"

INSTRUCTIONS:
- If the user mentions a single day (e.g., "next Monday"), calculate that day.
- If the user talks about a time range (e.g., "this week", "next week", "this weekend"), calculate the start and end dates for that range.
- If no date or range is specified, default to today's date.

RESPOND WITH:
- For a single date: The date in format YYYY-MM-DD.
- For a time range: Two dates (start and end) in format YYYY-MM-DD, separated by a comma (e.g., "2025-12-01, 2025-12-07").
"""

FINAL_ANSWER_PROMPT_TEMPLATE = """RESPOND TO QUESTIONS:

CONTEXT (Events found):
{context}

USER PROMPT:
"{user_text}"

INSTRUCTIONS:
Answer the user's prompt naturally using the provided context.
If there are no events, say so clearly.
Keep the response concise and friendly.
"""


def build_date_range_prompt(user_text: str, now: datetime) -> str:
  return DATE_RANGE_PROMPT_TEMPLATE.format(today=format_long_date(now),
                                           user_text=user_text)


def build_final_answer_prompt(user_text: str, context: str) -> str:
  return FINAL_ANSWER_PROMPT_TEMPLATE.format(context=context,
                                             user_text=user_text)
