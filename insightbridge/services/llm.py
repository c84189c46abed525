"""
Claude transport.

Thin wrapper around ChatAnthropic that adds the retry policy every agent
relies on: network errors and 5xx responses are retried with exponential
backoff, 4xx responses are raised straight away.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from insightbridge import settings

logger = logging.getLogger(__name__)

_MAX_RETRIES = max(1, settings.LLM_MAX_RETRIES)
_RETRY_DELAY_SECONDS = settings.LLM_RETRY_DELAY_SECONDS

_VALID_ROLES = ("user", "assistant")


def build_message(role: str, content: str) -> dict:
    if role not in _VALID_ROLES:
        raise ValueError('Role must be "user" or "assistant"')
    if not content or not isinstance(content, str):
        raise ValueError("Content must be a non-empty string")
    return {"role": role, "content": content}


def extract_text_content(response: dict) -> str:
    """Join the text blocks of a send_message() result."""
    blocks = (response or {}).get("content")
    if not isinstance(blocks, list):
        return ""
    return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


def _make_llm(max_tokens: int, model: str | None = None) -> ChatAnthropic:
    kwargs = {"model": model or settings.CLAUDE_MODEL, "max_tokens": max_tokens, "max_retries": 0}
    if settings.ANTHROPIC_API_KEY:
        kwargs["api_key"] = settings.ANTHROPIC_API_KEY
    return ChatAnthropic(**kwargs)


def _to_langchain(messages: list[dict], system: str | None) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    if system:
        converted.append(SystemMessage(content=system))
    for m in messages:
        if m["role"] == "assistant":
            converted.append(AIMessage(content=m["content"]))
        else:
            converted.append(HumanMessage(content=m["content"]))
    return converted


def _content_blocks(content) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    blocks = []
    for part in content or []:
        if isinstance(part, str):
            blocks.append({"type": "text", "text": part})
        elif isinstance(part, dict) and part.get("type") == "text":
            blocks.append({"type": "text", "text": part.get("text", "")})
    return blocks


def _usage(response: AIMessage) -> dict:
    meta = getattr(response, "usage_metadata", None) or {}
    if not meta:
        meta = (getattr(response, "response_metadata", None) or {}).get("usage", {})
    return {
        "input_tokens": int(meta.get("input_tokens", 0) or 0),
        "output_tokens": int(meta.get("output_tokens", 0) or 0),
    }


def _is_client_error(exc: Exception) -> bool:
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and 400 <= status < 500


async def send_message(
    messages: list[dict],
    system: str | None = None,
    max_tokens: int = 1024,
    model: str | None = None,
) -> dict:
    """
    Send a conversation to Claude.

    Returns:
    {
        "content": [{"type": "text", "text": "..."}],
        "usage": {"input_tokens": int, "output_tokens": int}
    }
    """
    if not messages:
        raise ValueError("Messages list is required and must not be empty")

    lc_messages = _to_langchain(messages, system)
    llm = _make_llm(max_tokens, model)

    last_exc: Exception | None = None
    for attempt in range(1, _MAX_RETRIES + 1):
        try:
            response = await llm.ainvoke(lc_messages)
            return {"content": _content_blocks(response.content), "usage": _usage(response)}
        except Exception as exc:
            logger.error("Claude API error (attempt %d/%d): %s", attempt, _MAX_RETRIES, exc)
            if _is_client_error(exc):
                raise
            last_exc = exc
            if attempt < _MAX_RETRIES:
                delay = _RETRY_DELAY_SECONDS * 2 ** (attempt - 1)
                logger.info("Retrying Claude call in %.1fs", delay)
                await asyncio.sleep(delay)

    raise last_exc


async def stream_message(
    messages: list[dict],
    system: str | None = None,
    max_tokens: int = 1024,
    model: str | None = None,
) -> AsyncIterator[str]:
    """Yield text deltas as Claude generates them. No retries once streaming starts."""
    if not messages:
        raise ValueError("Messages list is required and must not be empty")

    llm = _make_llm(max_tokens, model)
    async for chunk in llm.astream(_to_langchain(messages, system)):
        for block in _content_blocks(chunk.content):
            if block["text"]:
                yield block["text"]
