"""Model Gateway: one entrypoint for streaming and non-streaming chat against Ollama.

Native /api/chat (httpx) by default; the OpenAI-compatible /v1 path (openai SDK)
when configured. Both produce the ChatStream contract of ollachat.models.streaming.
"""

from __future__ import annotations

import logging

import httpx

from ollachat.config.loader import OllamaSettings
from ollachat.models import local, ollama
from ollachat.models.streaming import ChatStream

logger = logging.getLogger(__name__)

TITLE_PROMPT = "Generate a short title (max 80 chars) summarizing the user's message. No quotes or colons."
TITLE_MAX_CHARS = 80


class ModelGateway:
    """Builds upstream calls. Holds no connection itself; every call owns its own."""

    def __init__(
        self,
        host: str = ollama.DEFAULT_HOST,
        *,
        api_key: str = "ollama",
        openai_compat: bool = False,
        default_model: str = "llama2",
        timeout: float = 120.0,
        connect_timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host
        self._api_key = api_key
        self._openai_compat = openai_compat
        self._default_model = default_model
        self._timeout = timeout
        self._connect_timeout = connect_timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: OllamaSettings) -> "ModelGateway":
        return cls(
            settings.host,
            api_key=settings.api_key,
            openai_compat=settings.openai_compat,
            default_model=settings.default_model,
            timeout=settings.timeout_seconds,
            connect_timeout=settings.connect_timeout_seconds,
        )

    @property
    def default_model(self) -> str:
        return self._default_model

    def open_chat_stream(self, model: str, messages: list[dict[str, str]]) -> ChatStream:
        """Unopened stream; the caller awaits open() and must aclose() it."""
        if self._openai_compat:
            return local.OpenAICompatChatStream(
                self._host,
                model,
                messages,
                api_key=self._api_key,
                timeout=self._timeout,
                connect_timeout=self._connect_timeout,
            )
        return ollama.OllamaChatStream(
            self._host,
            model,
            messages,
            timeout=self._timeout,
            connect_timeout=self._connect_timeout,
            transport=self._transport,
        )

    async def generate(self, messages: list[dict[str, str]], *, model: str | None = None) -> str:
        model = model or self._default_model
        if self._openai_compat:
            return await local.chat_openai_compat(
                self._host,
                model,
                messages,
                api_key=self._api_key,
                timeout=self._timeout,
                connect_timeout=self._connect_timeout,
            )
        return await ollama.chat_ollama(
            self._host,
            model,
            messages,
            timeout=self._timeout,
            connect_timeout=self._connect_timeout,
            transport=self._transport,
        )

    async def generate_title(self, user_content: str) -> str:
        """Short chat title from the first user message, default model."""
        out = await self.generate(
            [
                {"role": "system", "content": TITLE_PROMPT},
                {"role": "user", "content": user_content},
            ]
        )
        title = out.strip().strip("\"'").replace(":", "").strip()
        return title[:TITLE_MAX_CHARS]

    async def list_installed_models(self) -> list[str]:
        return await ollama.list_ollama_models(self._host, transport=self._transport)
