"""Stream Producer: forward a chat to the model backend and re-emit each chunk as a frame.

Each Delta carries the full assistant text accumulated so far, so consumers
reconcile by replace-with-latest. Exactly one terminal frame ends every
stream: Done on completion, Error on a mid-stream failure. Failures while
opening the upstream call raise BackendConnectionError before any frame exists.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Sequence

from ollachat.core.errors import StreamError
from ollachat.core.frames import (
    ChatMessage,
    DeltaFrame,
    DoneFrame,
    ErrorFrame,
    Frame,
    ModelSelection,
    encode_frame,
    new_id,
    utcnow,
)
from ollachat.models.gateway import ModelGateway
from ollachat.models.streaming import ChatStream

logger = logging.getLogger(__name__)


class StreamProducer:
    def __init__(self, gateway: ModelGateway) -> None:
        self._gateway = gateway

    async def open(self, messages: Sequence[ChatMessage], model: ModelSelection) -> "ProducerStream":
        """Open the single upstream call for this request. Raises BackendConnectionError."""
        upstream = self._gateway.open_chat_stream(
            model.api_identifier, [m.to_backend() for m in messages]
        )
        logger.info(
            "opening upstream stream",
            extra={"model": model.api_identifier, "message_count": len(messages)},
        )
        await upstream.open()
        return ProducerStream(upstream, model)


class ProducerStream:
    """An opened upstream call. frames() may be consumed once; it releases the upstream on every exit."""

    def __init__(self, upstream: ChatStream, model: ModelSelection, message_id: str | None = None) -> None:
        self.message_id = message_id or new_id()
        self._upstream = upstream
        self._model = model
        self._consumed = False

    async def frames(self) -> AsyncIterator[Frame]:
        if self._consumed:
            raise RuntimeError("frames() can only be consumed once")
        self._consumed = True
        created_at = utcnow()
        text = ""
        chunk_count = 0
        failed = False
        finished = False
        try:
            async for piece in self._upstream:
                chunk_count += 1
                text += piece
                logger.debug(
                    "stream chunk",
                    extra={
                        "message_id": self.message_id,
                        "chunk_number": chunk_count,
                        "total_length": len(text),
                    },
                )
                yield DeltaFrame(message_id=self.message_id, content=text, created_at=created_at)
            finished = True
        except Exception as e:
            failed = True
            logger.error(
                "upstream failed mid-stream",
                extra={"message_id": self.message_id, "phase": "streaming", "error": str(e)},
            )
        finally:
            await self._upstream.aclose()
            if not finished and not failed:
                logger.info(
                    "stream closed before completion",
                    extra={"message_id": self.message_id, "total_chunks": chunk_count},
                )
        if failed:
            yield ErrorFrame(message=StreamError.public_message)
            return
        logger.info(
            "stream completed",
            extra={
                "message_id": self.message_id,
                "model": self._model.api_identifier,
                "total_chunks": chunk_count,
                "final_length": len(text),
            },
        )
        yield DoneFrame()

    async def aclose(self) -> None:
        """Release the upstream when frames() was never iterated. Idempotent."""
        await self._upstream.aclose()

    async def encoded(self) -> AsyncIterator[str]:
        """Frames in wire form. Closing this generator closes frames() and the upstream."""
        frames = self.frames()
        try:
            async for frame in frames:
                yield encode_frame(frame)
        finally:
            await frames.aclose()
