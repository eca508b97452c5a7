"""Chat payloads and the server-to-client frame protocol. All payloads are Pydantic models.

Wire format (protocol version "cumulative"): each event is ``data: <JSON>\\n\\n``.

- Delta: ``{"id", "role", "content", "createdAt"}`` where content is the full
  assistant text so far, never just the increment.
- Done: the literal ``data: [DONE]``.
- Error: ``{"error": "<message>"}``.

Frames are a tagged union (DeltaFrame | DoneFrame | ErrorFrame); consumers
dispatch on the class, not on ad hoc JSON keys.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ollachat.core.errors import FrameParseError

PROTOCOL_VERSION = "cumulative"
DONE_SENTINEL = "[DONE]"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def format_timestamp(value: datetime) -> str:
    """ISO-8601, millisecond precision, ``Z`` suffix (what JSON.stringify(new Date()) emits)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


class ChatMessage(BaseModel):
    """One transcript entry. Immutable once persisted; the streaming assistant entry grows in place."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    role: Role
    content: str = ""
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "createdAt": format_timestamp(self.created_at),
        }

    def to_backend(self) -> dict[str, str]:
        """Shape the model backend expects: role and content only."""
        return {"role": self.role.value, "content": self.content}


class ModelSelection(BaseModel):
    """Which backend model serves a request. Fixed for the lifetime of the request."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    api_identifier: str = Field(alias="apiIdentifier")


class DeltaFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["delta"] = "delta"
    message_id: str
    content: str = Field(description="Cumulative assistant text so far")
    created_at: datetime = Field(default_factory=utcnow)

    def to_message(self) -> ChatMessage:
        return ChatMessage(
            id=self.message_id,
            role=Role.ASSISTANT,
            content=self.content,
            created_at=self.created_at,
        )


class DoneFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["done"] = "done"


class ErrorFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["error"] = "error"
    message: str = ""


Frame = Union[DeltaFrame, DoneFrame, ErrorFrame]


def _dumps(obj: Any) -> str:
    # compact separators: byte-identical to JSON.stringify
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def encode_frame(frame: Frame) -> str:
    if isinstance(frame, DeltaFrame):
        payload = _dumps(frame.to_message().to_wire())
    elif isinstance(frame, DoneFrame):
        payload = DONE_SENTINEL
    elif isinstance(frame, ErrorFrame):
        payload = _dumps({"error": frame.message})
    else:
        raise TypeError(f"not a frame: {frame!r}")
    return f"data: {payload}\n\n"


def decode_frame(payload: str) -> Frame:
    """Parse one event's data payload. Raises FrameParseError on anything malformed."""
    data = payload.strip()
    if data == DONE_SENTINEL:
        return DoneFrame()
    try:
        obj = json.loads(data)
    except json.JSONDecodeError as e:
        raise FrameParseError(f"invalid JSON in frame: {e}") from e
    if not isinstance(obj, dict):
        raise FrameParseError("frame payload is not an object")
    if "error" in obj:
        return ErrorFrame(message=str(obj.get("error") or ""))
    if obj.get("completed") is True:
        return DoneFrame()
    if not isinstance(obj.get("id"), str) or not isinstance(obj.get("content"), str):
        raise FrameParseError("delta frame needs string id and content")
    try:
        message = ChatMessage.model_validate(obj)
    except ValidationError as e:
        raise FrameParseError(f"invalid delta frame: {e.error_count()} error(s)") from e
    return DeltaFrame(
        message_id=message.id,
        content=message.content,
        created_at=message.created_at,
    )


def _event_data(block: bytes) -> str | None:
    """Join the ``data:`` lines of one event block. Comments and other fields are ignored."""
    lines: list[str] = []
    for raw in block.split(b"\n"):
        line = raw.decode("utf-8", errors="replace")
        if not line or line.startswith(":"):
            continue
        if line.startswith("data:"):
            value = line[5:]
            if value.startswith(" "):
                value = value[1:]
            lines.append(value)
    if not lines:
        return None
    return "\n".join(lines)


class FrameDecoder:
    """Incremental splitter: bytes in, event payloads out, across arbitrary chunk boundaries."""

    def __init__(self) -> None:
        self._buf = b""

    def feed(self, chunk: bytes | str) -> list[str]:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buf = (self._buf + chunk).replace(b"\r\n", b"\n")
        out: list[str] = []
        while b"\n\n" in self._buf:
            part, self._buf = self._buf.split(b"\n\n", 1)
            payload = _event_data(part)
            if payload is not None:
                out.append(payload)
        return out

    def flush(self) -> list[str]:
        """Payload of a trailing event that arrived without its blank-line terminator."""
        part, self._buf = self._buf, b""
        payload = _event_data(part)
        return [payload] if payload is not None else []
