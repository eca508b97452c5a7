"""Key-based cache of dependent reads (history, votes). mutate(key) revalidates."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class KeyedCache:
    """Last fetched value per key.

    mutate(key) drops the value; when someone is subscribed to the key it is
    refetched right away and subscribers get the new value, otherwise the next
    get() fetches it.
    """

    def __init__(self, fetcher: Callable[[str], Awaitable[Any]]) -> None:
        self._fetcher = fetcher
        self._values: dict[str, Any] = {}
        self._subscribers: dict[str, list[Callable[[Any], None]]] = {}

    async def get(self, key: str) -> Any:
        if key not in self._values:
            self._values[key] = await self._fetcher(key)
        return self._values[key]

    def peek(self, key: str) -> Any:
        return self._values.get(key)

    def subscribe(self, key: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    async def mutate(self, key: str) -> Any:
        self._values.pop(key, None)
        if not self._subscribers.get(key):
            return None
        value = await self.get(key)
        logger.debug("revalidated %s", key)
        for callback in list(self._subscribers.get(key, [])):
            callback(value)
        return value
