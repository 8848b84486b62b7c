"""
Cached OpenAI-compatible client factory and a single text-completion call.
"""
from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from config import Settings, get_settings
from errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

MODEL_TEMPERATURES = {
    "gpt-4o": 0.7,
    "gpt-4o-mini": 0.7,
    "gpt-4-turbo": 0.7,
    "gpt-4-turbo-preview": 0.7,
    "gpt-3.5-turbo": 0.8,
    "deepseek-chat": 0.7,
    "gemini-2.0-flash-exp": 0.8,
}


def get_optimal_temperature(model: str, default: float = 0.7) -> float:
    """Get the preferred temperature for a given model."""
    return MODEL_TEMPERATURES.get(model, default)


@lru_cache(maxsize=8)
def get_llm_client(api_key: str, base_url: str) -> AsyncOpenAI:
    """Return a cached OpenAI client for a given key/base URL pair."""
    return AsyncOpenAI(api_key=api_key, base_url=base_url)


async def generate_text(
    messages: List[Dict[str, str]],
    max_tokens: int,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> str:
    """
    Send role-tagged messages to the chat completion endpoint and return the text.

    Raises:
        ConfigurationError: no API key is configured; nothing is sent.
        UpstreamError: the request failed or came back without content.
    """
    settings = settings or get_settings()
    api_key = settings.openai_api_key
    if not api_key or api_key == "replace_me":
        raise ConfigurationError("OpenAI API key not configured")

    model = model or settings.openai_model
    if temperature is None:
        temperature = get_optimal_temperature(model, settings.openai_temperature)

    client = get_llm_client(api_key, settings.openai_base_url)
    start_time = time.monotonic()
    try:
        response = await client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except openai.OpenAIError as e:
        logger.error("Completion call failed model=%s: %s", model, e)
        raise UpstreamError(f"OpenAI API call failed: {e}") from e
    finally:
        if settings.perf_log:
            logger.info(
                "[PERF] completion model=%s max_tokens=%d total_ms=%d",
                model, max_tokens, int((time.monotonic() - start_time) * 1000),
            )

    if not response.choices:
        raise UpstreamError("OpenAI API returned no choices")
    content = response.choices[0].message.content
    if not content or not content.strip():
        raise UpstreamError("OpenAI API returned an empty completion")
    return content
