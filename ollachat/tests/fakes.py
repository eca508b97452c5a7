"""In-memory stand-ins for Redis and the model backend, shared by the tests."""

from __future__ import annotations

from typing import Any, AsyncIterator

from ollachat.core.errors import BackendConnectionError, StreamError


class _Pipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._calls: list = []

    def __getattr__(self, name: str):
        method = getattr(self._redis, name)

        def queue(*args, **kwargs):
            self._calls.append((method, args, kwargs))
            return self

        return queue

    def execute(self) -> list:
        calls, self._calls = self._calls, []
        return [method(*args, **kwargs) for method, args, kwargs in calls]


class FakeRedis:
    """The subset of redis.Redis (decode_responses=True) that storage and auth use."""

    def __init__(self) -> None:
        self.kv: dict[str, str] = {}
        self.sets: dict[str, set] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.hashes: dict[str, dict[str, str]] = {}

    def pipeline(self) -> _Pipeline:
        return _Pipeline(self)

    def get(self, key: str) -> str | None:
        return self.kv.get(key)

    def set(self, key: str, value: str) -> bool:
        self.kv[key] = value
        return True

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self.kv[key] = value
        return True

    def expire(self, key: str, ttl: int) -> bool:
        return key in self.kv

    def mget(self, keys: list[str]) -> list[str | None]:
        return [self.kv.get(k) for k in keys]

    def delete(self, *keys: str) -> int:
        n = 0
        for key in keys:
            for store in (self.kv, self.sets, self.zsets, self.hashes):
                if key in store:
                    del store[key]
                    n += 1
        return n

    def sadd(self, key: str, *members: str) -> int:
        s = self.sets.setdefault(key, set())
        before = len(s)
        s.update(members)
        return len(s) - before

    def sismember(self, key: str, member: str) -> bool:
        return member in self.sets.get(key, set())

    def smembers(self, key: str) -> set:
        return set(self.sets.get(key, set()))

    def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def zrem(self, key: str, *members: str) -> int:
        z = self.zsets.get(key, {})
        return sum(1 for m in members if z.pop(m, None) is not None)

    def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        items = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        ids = [member for member, _ in items]
        return ids[start:] if end == -1 else ids[start : end + 1]

    def hset(self, name: str, key: str | None = None, value: str | None = None, mapping: dict | None = None) -> int:
        h = self.hashes.setdefault(name, {})
        items = dict(mapping or {})
        if key is not None:
            items[key] = value
        added = sum(1 for k in items if k not in h)
        h.update(items)
        return added

    def hgetall(self, name: str) -> dict[str, str]:
        return dict(self.hashes.get(name, {}))


class FakeUpstream:
    """Scripted ChatStream: yields chunks, optionally failing on open or after N chunks."""

    def __init__(
        self,
        chunks: list[str],
        *,
        fail_on_open: bool = False,
        fail_after: int | None = None,
    ) -> None:
        self.chunks = chunks
        self.fail_on_open = fail_on_open
        self.fail_after = fail_after
        self.opened = False
        self.close_count = 0

    async def open(self) -> None:
        if self.fail_on_open:
            raise BackendConnectionError("connection refused")
        self.opened = True

    def __aiter__(self) -> AsyncIterator[str]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[str]:
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise StreamError("backend crashed")
            yield chunk

    async def aclose(self) -> None:
        self.close_count += 1


class FakeGateway:
    """Hands out one FakeUpstream and records what it was asked for."""

    def __init__(self, upstream: FakeUpstream, title: str | Exception | None = "Greeting") -> None:
        self.upstream = upstream
        self.title = title
        self.calls: list[tuple[str, list[dict[str, Any]]]] = []
        self.title_requests: list[str] = []

    def open_chat_stream(self, model: str, messages: list[dict[str, str]]) -> FakeUpstream:
        self.calls.append((model, messages))
        return self.upstream

    async def generate_title(self, user_content: str) -> str:
        self.title_requests.append(user_content)
        if self.title is None:
            raise BackendConnectionError("backend down")
        if isinstance(self.title, Exception):
            raise self.title
        return self.title
