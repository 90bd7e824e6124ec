from __future__ import annotations

from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from .config import (
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_MAX_TOKENS,
    LLM_MODEL,
    LLM_SEED,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    LLM_TOP_K,
)

async_client: Optional[AsyncOpenAI] = None


def get_async_client() -> AsyncOpenAI:
  """Shared client for the local OpenAI-compatible model server."""
  global async_client
  if async_client is None:
    async_client = AsyncOpenAI(
        api_key=LLM_API_KEY,
        base_url=LLM_BASE_URL,
        timeout=LLM_TIMEOUT_SECONDS,
        max_retries=0,
    )
  return async_client


def default_generation_options() -> Dict[str, Any]:
  """Sampling options mirroring the on-device session defaults."""
  return {
      "model": LLM_MODEL,
      "max_tokens": LLM_MAX_TOKENS,
      "temperature": LLM_TEMPERATURE,
      "seed": LLM_SEED,
      # top_k is not part of the OpenAI schema; local servers read it from the body
      "extra_body": {"top_k": LLM_TOP_K},
  }


async def close_async_client() -> None:
  global async_client
  if async_client is None:
    return
  try:
    await async_client.close()
  finally:
    async_client = None
