"""Upstream streaming contract.

Every backend client hands the producer an unopened ChatStream:

- ``await stream.open()`` establishes the call. Failures here raise
  BackendConnectionError and no frame is ever emitted for them.
- ``async for text in stream`` yields incremental assistant text, one item per
  upstream chunk. Failures here raise StreamError.
- ``await stream.aclose()`` releases the connection. Safe to call twice and
  before open().

A stream is lazy, finite and not restartable.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol, runtime_checkable


@runtime_checkable
class ChatStream(Protocol):
    async def open(self) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        ...
