"""One chat as a browser tab holds it: transcript, model choice, dependent reads, input draft."""

from __future__ import annotations

import logging
from typing import Callable

from ollachat.client.cache import KeyedCache
from ollachat.client.chat_client import HISTORY_KEY, ChatClient, votes_key
from ollachat.client.draft import DraftStore
from ollachat.core.frames import ChatMessage, ModelSelection, Role, new_id
from ollachat.models.catalog import default_model
from ollachat.stream.consumer import ConsumerState, StreamConsumer, Transcript

logger = logging.getLogger(__name__)


class ChatSession:
    """Sends user turns and streams replies. One reply streams at a time."""

    def __init__(
        self,
        client: ChatClient,
        chat_id: str | None = None,
        model: ModelSelection | None = None,
        *,
        cache: KeyedCache | None = None,
        draft: DraftStore | None = None,
        persist: bool = True,
    ) -> None:
        self.chat_id = chat_id or new_id()
        self.model = model or default_model().selection()
        self.transcript = Transcript()
        self.cache = cache or KeyedCache(client.fetch_json)
        self._client = client
        self._draft = draft
        self._persist = persist
        self._consumer: StreamConsumer | None = None

    @property
    def consumer(self) -> StreamConsumer | None:
        return self._consumer

    @property
    def is_streaming(self) -> bool:
        return self._consumer is not None and self._consumer.state is ConsumerState.STREAMING

    async def send(
        self,
        text: str,
        *,
        on_update: Callable[[ChatMessage], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> StreamConsumer:
        if self.is_streaming:
            raise RuntimeError("a reply is still streaming; stop() it first")
        self.transcript.append(ChatMessage(role=Role.USER, content=text))
        prior = list(self.transcript.messages)
        consumer = StreamConsumer(
            self.transcript,
            on_update=on_update,
            on_error=on_error,
            on_finish=self._save if self._persist else None,
            invalidate=self.cache.mutate,
            refresh_keys=(HISTORY_KEY, votes_key(self.chat_id)),
        )
        self._consumer = consumer
        consumer.start()
        if self._draft is not None:
            self._draft.clear()
        await self._client.stream_chat(self.chat_id, prior, self.model, consumer)
        return consumer

    async def _save(self, message: ChatMessage | None) -> None:
        await self._client.save_messages(self.chat_id, self.transcript.messages)

    def stop(self) -> None:
        if self._consumer is not None:
            self._consumer.stop()
