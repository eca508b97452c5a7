"""Ollama through its OpenAI-compatible /v1 API, via the openai SDK."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx
from openai import APIError, AsyncOpenAI

from ollachat.core.errors import BackendConnectionError, StreamError

logger = logging.getLogger(__name__)


def openai_base_url(host: str) -> str:
    """OpenAI-compat base URL must end with /v1."""
    u = (host or "").strip().rstrip("/") or "http://localhost:11434"
    if not u.endswith("/v1"):
        u = u + "/v1"
    return u


def _make_client(host: str, api_key: str, timeout: float, connect_timeout: float) -> AsyncOpenAI:
    # Clients are bound to the event loop that created them, so one per call.
    return AsyncOpenAI(
        base_url=openai_base_url(host),
        api_key=api_key or "ollama",
        timeout=httpx.Timeout(timeout, connect=connect_timeout),
        max_retries=0,
    )


class OpenAICompatChatStream:
    """Streaming chat.completions call. Same contract as OllamaChatStream."""

    def __init__(
        self,
        host: str,
        model: str,
        messages: list[dict[str, str]],
        *,
        api_key: str = "ollama",
        timeout: float = 120.0,
        connect_timeout: float = 8.0,
    ) -> None:
        self._host = host
        self._model = model
        self._messages = messages
        self._api_key = api_key
        self._timeout = timeout
        self._connect_timeout = connect_timeout
        self._client: AsyncOpenAI | None = None
        self._stream: Any = None

    async def open(self) -> None:
        if self._client is not None:
            raise RuntimeError("stream already opened")
        self._client = _make_client(self._host, self._api_key, self._timeout, self._connect_timeout)
        try:
            self._stream = await self._client.chat.completions.create(
                model=self._model,
                messages=self._messages,
                stream=True,
            )
        except APIError as e:
            await self.aclose()
            raise BackendConnectionError(f"OpenAI-compatible backend failed: {e}") from e

    def __aiter__(self) -> AsyncIterator[str]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[str]:
        if self._stream is None:
            raise RuntimeError("open() must succeed before iterating")
        try:
            async for chunk in self._stream:
                delta = chunk.choices[0].delta if chunk.choices else None
                yield (getattr(delta, "content", None) or "") if delta else ""
        except APIError as e:
            raise StreamError(f"OpenAI-compatible stream broke: {e}") from e

    async def aclose(self) -> None:
        stream, self._stream = self._stream, None
        client, self._client = self._client, None
        if stream is not None:
            await stream.close()
        if client is not None:
            await client.close()


async def chat_openai_compat(
    host: str,
    model: str,
    messages: list[dict[str, str]],
    *,
    api_key: str = "ollama",
    timeout: float = 120.0,
    connect_timeout: float = 8.0,
) -> str:
    client = _make_client(host, api_key, timeout, connect_timeout)
    try:
        resp = await client.chat.completions.create(model=model, messages=messages)
    except APIError as e:
        raise BackendConnectionError(f"OpenAI-compatible backend failed: {e}") from e
    finally:
        await client.close()
    if not resp.choices:
        return ""
    return (resp.choices[0].message.content or "").strip()
