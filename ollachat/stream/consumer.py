"""Stream Consumer: decode frames and reconcile them into the transcript the UI shows.

State machine::

    IDLE -> STREAMING -> FINALIZED | ERRORED | CANCELLED

Terminal states absorb: once entered, no frame is processed and no UI callback
fires. Each Delta replaces the assistant text with the frame's cumulative
content. Malformed frames are logged and skipped. stop() is idempotent.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable

from ollachat.core.errors import FrameParseError
from ollachat.core.frames import (
    ChatMessage,
    DeltaFrame,
    DoneFrame,
    ErrorFrame,
    Frame,
    FrameDecoder,
    Role,
    decode_frame,
)

logger = logging.getLogger(__name__)

# What the UI shows on any failure; raw backend text stays in the logs.
GENERIC_FAILURE = "Something went wrong. Please try again."


class ConsumerState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    (ConsumerState.FINALIZED, ConsumerState.ERRORED, ConsumerState.CANCELLED)
)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _close_source(source: Any) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


class Transcript:
    """Ordered messages as displayed.

    The streaming assistant message is appended on its first Delta and then
    updated in place; every later Delta replaces its content.
    """

    def __init__(self, messages: Iterable[ChatMessage] | None = None) -> None:
        self.messages: list[ChatMessage] = list(messages or [])

    def append(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def find(self, message_id: str) -> ChatMessage | None:
        for m in self.messages:
            if m.id == message_id:
                return m
        return None

    def apply_delta(self, frame: DeltaFrame) -> ChatMessage:
        last = self.messages[-1] if self.messages else None
        if last is not None and last.role is Role.ASSISTANT and last.id == frame.message_id:
            if not frame.content.startswith(last.content):
                logger.warning(
                    "delta does not extend displayed content",
                    extra={"message_id": frame.message_id, "displayed_length": len(last.content)},
                )
            last.content = frame.content
            return last
        message = frame.to_message()
        self.messages.append(message)
        return message

    def __len__(self) -> int:
        return len(self.messages)


class StreamConsumer:
    """Reads one framed stream into a Transcript.

    Callbacks: on_update(message) after each Delta and on_error(text) on
    failure are plain functions; on_finish(message) and invalidate(key) may be
    coroutines and run once after Done, in that order.
    """

    def __init__(
        self,
        transcript: Transcript | None = None,
        *,
        on_update: Callable[[ChatMessage], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        on_finish: Callable[[ChatMessage | None], Any] | None = None,
        invalidate: Callable[[str], Any] | None = None,
        refresh_keys: Iterable[str] = (),
    ) -> None:
        self.transcript = transcript if transcript is not None else Transcript()
        self._on_update = on_update
        self._on_error = on_error
        self._on_finish = on_finish
        self._invalidate = invalidate
        self._refresh_keys = tuple(refresh_keys)
        self._state = ConsumerState.IDLE
        self._message: ChatMessage | None = None
        self._error: str | None = None
        self._task: asyncio.Task | None = None
        self.parse_errors = 0

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def message(self) -> ChatMessage | None:
        """The assistant message being streamed (None until the first Delta)."""
        return self._message

    @property
    def content(self) -> str:
        return self._message.content if self._message is not None else ""

    @property
    def error(self) -> str | None:
        """Raw failure reason, for logs and diagnostics."""
        return self._error

    def start(self) -> None:
        """Submit: IDLE -> STREAMING."""
        if self._state is not ConsumerState.IDLE:
            raise RuntimeError(f"consumer already {self._state.value}")
        self._state = ConsumerState.STREAMING

    def bind(self, task: asyncio.Task | None) -> None:
        """Task that stop() cancels while the request is still waiting for a response.

        consume() binds its own task; callers that do work before it (sending
        the request, waiting for headers) bind theirs and must absorb the
        cancellation when state is CANCELLED.
        """
        self._task = task

    def handle_payload(self, payload: str) -> None:
        if self._state is not ConsumerState.STREAMING:
            return
        try:
            frame = decode_frame(payload)
        except FrameParseError as e:
            self.parse_errors += 1
            logger.warning(
                "skipping malformed frame",
                extra={"error": str(e), "payload_preview": payload[:80]},
            )
            return
        self.handle_frame(frame)

    def handle_frame(self, frame: Frame) -> None:
        if self._state is not ConsumerState.STREAMING:
            return
        if isinstance(frame, DeltaFrame):
            self._message = self.transcript.apply_delta(frame)
            if self._on_update is not None:
                try:
                    self._on_update(self._message)
                except Exception:
                    logger.exception(
                        "update callback failed",
                        extra={"message_id": self._message.id},
                    )
        elif isinstance(frame, DoneFrame):
            self._state = ConsumerState.FINALIZED
            logger.info(
                "stream finalized",
                extra={"message_id": self._message.id if self._message else None},
            )
        elif isinstance(frame, ErrorFrame):
            self.fail(frame.message or "error frame")
        else:
            raise TypeError(f"unhandled frame type: {type(frame).__name__}")

    def fail(self, reason: str) -> None:
        """Enter ERRORED and tell the UI. No-op once terminal."""
        if self._state in TERMINAL_STATES:
            return
        self._state = ConsumerState.ERRORED
        self._error = reason
        logger.warning("stream failed", extra={"reason": reason})
        if self._on_error is not None:
            self._on_error(GENERIC_FAILURE)

    async def consume(self, source: AsyncIterator[bytes]) -> ConsumerState:
        """Read source to a terminal state. The source is closed on every exit path."""
        if self._state is ConsumerState.IDLE:
            self.start()
        if self._state is not ConsumerState.STREAMING:
            await _close_source(source)
            return self._state
        self._task = asyncio.current_task()
        try:
            try:
                await self._read(source)
            finally:
                self._task = None
                await _close_source(source)
        except asyncio.CancelledError:
            # stop() cancels the read; any other cancellation belongs to the caller
            if self._state is not ConsumerState.CANCELLED:
                raise
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
        if self._state is ConsumerState.FINALIZED:
            await self._after_finish()
        return self._state

    async def _read(self, source: AsyncIterator[bytes]) -> None:
        decoder = FrameDecoder()
        try:
            async for chunk in source:
                for payload in decoder.feed(chunk):
                    self.handle_payload(payload)
                if self._state is not ConsumerState.STREAMING:
                    return
        except Exception as e:
            if self._state is ConsumerState.CANCELLED:
                logger.debug("read failed after stop: %s", e)
                return
            if self._state is not ConsumerState.STREAMING:
                raise
            logger.exception("transport failure while reading stream")
            self.fail(f"transport failure: {e}")
            return
        for payload in decoder.flush():
            self.handle_payload(payload)
        if self._state is ConsumerState.STREAMING:
            self.fail("stream ended without a terminal frame")

    async def _after_finish(self) -> None:
        if self._on_finish is not None:
            try:
                await _maybe_await(self._on_finish(self._message))
            except Exception as e:
                logger.exception("finish hook failed: %s", e)
        if self._invalidate is None:
            return
        for key in self._refresh_keys:
            try:
                await _maybe_await(self._invalidate(key))
            except Exception as e:
                logger.exception("refresh of %s failed: %s", key, e)

    def stop(self) -> ConsumerState:
        """Cancel: stop UI updates and release the read handle. Safe at any time, any number of times.

        Call from the event loop thread.
        """
        if self._state in TERMINAL_STATES:
            return self._state
        self._state = ConsumerState.CANCELLED
        logger.info(
            "stream stopped",
            extra={"message_id": self._message.id if self._message else None},
        )
        task = self._task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()
        return self._state
