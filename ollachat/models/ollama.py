"""Ollama native API over httpx: POST /api/chat streams NDJSON lines of {"message": {"content"}, "done"}."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from ollachat.core.errors import BackendConnectionError, StreamError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://localhost:11434"


def _root_url(host: str) -> str:
    """Native API lives at the root; tolerate an OpenAI-compat base (…/v1) in config."""
    u = (host or "").strip().rstrip("/")
    if u.endswith("/v1"):
        u = u[:-3]
    return u.rstrip("/") or DEFAULT_HOST


def _client_kwargs(
    timeout: float, connect_timeout: float, transport: httpx.AsyncBaseTransport | None
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout, connect=connect_timeout)}
    if transport is not None:
        kwargs["transport"] = transport
    return kwargs


async def _error_detail(response: httpx.Response) -> str:
    raw = await response.aread()
    try:
        data = json.loads(raw)
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
    except (json.JSONDecodeError, UnicodeDecodeError):
        pass
    return raw[:200].decode("utf-8", errors="replace")


class OllamaChatStream:
    """One streaming /api/chat call. See ollachat.models.streaming for the contract."""

    def __init__(
        self,
        host: str,
        model: str,
        messages: list[dict[str, str]],
        *,
        timeout: float = 120.0,
        connect_timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"{_root_url(host)}/api/chat"
        self._body = {"model": model, "messages": messages, "stream": True}
        self._client_kwargs = _client_kwargs(timeout, connect_timeout, transport)
        self._client: httpx.AsyncClient | None = None
        self._response: httpx.Response | None = None

    async def open(self) -> None:
        if self._client is not None:
            raise RuntimeError("stream already opened")
        self._client = httpx.AsyncClient(**self._client_kwargs)
        try:
            request = self._client.build_request("POST", self._url, json=self._body)
            self._response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            await self.aclose()
            raise BackendConnectionError(f"Ollama unreachable at {self._url}: {e}") from e
        if self._response.status_code >= 400:
            status = self._response.status_code
            detail = await _error_detail(self._response)
            await self.aclose()
            raise BackendConnectionError(f"Ollama returned {status}: {detail}")

    def __aiter__(self) -> AsyncIterator[str]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[str]:
        if self._response is None:
            raise RuntimeError("open() must succeed before iterating")
        try:
            async for line in self._response.aiter_lines():
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    raise StreamError(f"undecodable chunk from Ollama: {line[:80]!r}") from e
                if data.get("error"):
                    raise StreamError(str(data["error"]))
                message = data.get("message") or {}
                yield message.get("content") or ""
                if data.get("done"):
                    return
        except httpx.HTTPError as e:
            raise StreamError(f"Ollama stream broke: {e}") from e

    async def aclose(self) -> None:
        response, self._response = self._response, None
        client, self._client = self._client, None
        if response is not None:
            await response.aclose()
        if client is not None:
            await client.aclose()


async def chat_ollama(
    host: str,
    model: str,
    messages: list[dict[str, str]],
    *,
    timeout: float = 120.0,
    connect_timeout: float = 8.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Non-streaming /api/chat; returns the assistant content."""
    url = f"{_root_url(host)}/api/chat"
    body = {"model": model, "messages": messages, "stream": False}
    async with httpx.AsyncClient(**_client_kwargs(timeout, connect_timeout, transport)) as client:
        try:
            r = await client.post(url, json=body)
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise BackendConnectionError(f"Ollama chat failed: {e}") from e
        try:
            data = r.json()
        except ValueError as e:
            raise BackendConnectionError(f"Ollama returned non-JSON body: {r.text[:200]!r}") from e
    message = data.get("message") if isinstance(data, dict) else None
    if not isinstance(message, dict):
        raise BackendConnectionError(f"unexpected Ollama chat response: {str(data)[:200]}")
    return str(message.get("content") or "").strip()


async def list_ollama_models(
    host: str,
    *,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[str]:
    """GET /api/tags. Returns installed model names; empty list when the backend is down."""
    url = f"{_root_url(host)}/api/tags"
    try:
        async with httpx.AsyncClient(**_client_kwargs(timeout, timeout, transport)) as client:
            r = await client.get(url)
        if r.status_code != 200:
            return []
        data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("could not list Ollama models: %s", e)
        return []
    out = []
    for item in data.get("models") or []:
        if isinstance(item, dict):
            name = item.get("name")
            if name and isinstance(name, str):
                out.append(name)
    return out
