"""Async Claude API client — single-shot completions and streamed chat."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import anthropic

from chime.config import settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_client: anthropic.AsyncAnthropic | None = None


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _client


async def complete_text(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    model: str | None = None,
    max_tokens: int = 256,
    temperature: float | None = None,
) -> str:
    """Single-shot Claude call — no tools, no streaming."""
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model or settings.chat_model,
        "max_tokens": max_tokens,
        "messages": messages,
    }
    if system is not None:
        kwargs["system"] = system
    if temperature is not None:
        kwargs["temperature"] = temperature
    response = await client.messages.create(**kwargs)
    return "".join(block.text for block in response.content if block.type == "text")


@asynccontextmanager
async def stream_chat(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    model: str | None = None,
    max_tokens: int | None = None,
) -> AsyncIterator[AsyncIterator[str]]:
    """Open a streamed chat completion and yield its text-delta iterator.

    Connection and request errors surface when the block is entered, before
    any text is produced.
    """
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model or settings.chat_model,
        "max_tokens": max_tokens or settings.chat_max_tokens,
        "messages": messages,
    }
    if system:
        kwargs["system"] = system
    logger.info("Streaming chat (%d messages, model=%s)", len(messages), kwargs["model"])
    async with client.messages.stream(**kwargs) as stream:
        yield stream.text_stream
