"""Async HTTP client for the chat service (httpx). Streams replies into a StreamConsumer."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx

from ollachat.core.frames import ChatMessage, ModelSelection
from ollachat.stream.consumer import ConsumerState, StreamConsumer

logger = logging.getLogger(__name__)

HISTORY_KEY = "/api/history"


def votes_key(chat_id: str) -> str:
    return f"/api/vote?chatId={chat_id}"


class ChatClient:
    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        kwargs: dict[str, Any] = {
            "base_url": base_url,
            "timeout": httpx.Timeout(timeout, connect=8.0),
        }
        if transport is not None:
            kwargs["transport"] = transport
        self._http = httpx.AsyncClient(**kwargs)

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def stream_chat(
        self,
        chat_id: str,
        messages: Sequence[ChatMessage],
        model: ModelSelection,
        consumer: StreamConsumer,
    ) -> ConsumerState:
        """POST /api/chat and feed the response to consumer. Non-200 counts as a connection error.

        consumer.stop() takes effect at any point, including while the
        service is still opening the model stream and no headers have arrived.
        """
        if consumer.state is ConsumerState.IDLE:
            consumer.start()
        if consumer.state is not ConsumerState.STREAMING:
            return consumer.state
        body = {
            "id": chat_id,
            "messages": [m.to_wire() for m in messages],
            "model": model.model_dump(by_alias=True),
        }
        task = asyncio.current_task()
        consumer.bind(task)
        try:
            async with self._http.stream("POST", "/api/chat", json=body) as resp:
                if resp.status_code != 200:
                    await resp.aread()
                    consumer.fail(f"chat request failed with status {resp.status_code}")
                    return consumer.state
                return await consumer.consume(resp.aiter_bytes())
        except httpx.HTTPError as e:
            consumer.fail(f"could not reach chat service: {e}")
            return consumer.state
        except asyncio.CancelledError:
            if consumer.state is not ConsumerState.CANCELLED:
                raise
            if task is not None:
                task.uncancel()
            logger.info("chat request stopped", extra={"chat_id": chat_id})
            return consumer.state
        finally:
            consumer.bind(None)

    async def fetch_json(self, path: str) -> Any:
        r = await self._http.get(path)
        r.raise_for_status()
        return r.json()

    async def history(self) -> list[dict[str, Any]]:
        return await self.fetch_json(HISTORY_KEY)

    async def votes(self, chat_id: str) -> list[dict[str, Any]]:
        return await self.fetch_json(votes_key(chat_id))

    async def vote(self, chat_id: str, message_id: str, vote_type: str) -> None:
        r = await self._http.patch(
            "/api/vote", json={"chatId": chat_id, "messageId": message_id, "type": vote_type}
        )
        r.raise_for_status()

    async def delete_chat(self, chat_id: str) -> int:
        r = await self._http.delete("/api/chat", params={"id": chat_id})
        return r.status_code

    async def save_messages(self, chat_id: str, messages: Sequence[ChatMessage]) -> dict[str, Any]:
        r = await self._http.post(
            "/api/messages",
            json={"chatId": chat_id, "messages": [m.to_wire() for m in messages]},
        )
        r.raise_for_status()
        return r.json()

    async def login(self, login: str, password: str) -> bool:
        r = await self._http.post("/api/login", json={"login": login, "password": password})
        return r.status_code == 200

    async def register(self, login: str, password: str) -> bool:
        r = await self._http.post("/api/register", json={"login": login, "password": password})
        return r.status_code == 200
