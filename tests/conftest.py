from __future__ import annotations

import re
import typing as tp

import pytest
import redis.exceptions

from apicache import ApiCache


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a redis MATCH glob, where a backslash escapes the next character."""
    parts: tp.List[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "\\" and index + 1 < len(pattern):
            index += 1
            parts.append(re.escape(pattern[index]))
        elif char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == "[":
            end = pattern.index("]", index + 1)
            body = pattern[index + 1 : end]
            if body.startswith("^"):
                body = "^" + re.escape(body[1:]).replace("\\-", "-")
            else:
                body = re.escape(body).replace("\\-", "-")
            parts.append(f"[{body}]")
            index = end
        else:
            parts.append(re.escape(char))
        index += 1
    return re.compile("".join(parts), re.DOTALL)


class FakeRedis:
    """
    Just enough of ``redis.asyncio.Redis`` for the storage tests.

    Keys listed in ``failing_keys`` raise a connection error when touched,
    and setting ``down`` makes every command fail.
    """

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.sets: dict[str, set[bytes]] = {}
        self.ttls: dict[str, int] = {}
        self.failing_keys: set[str] = set()
        self.down = False
        self.closed = False

    def _check(self, *keys: str) -> None:
        if self.down or any(key in self.failing_keys for key in keys):
            raise redis.exceptions.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    @staticmethod
    def _name(key: tp.Union[str, bytes]) -> str:
        return key.decode("utf-8") if isinstance(key, bytes) else key

    @staticmethod
    def _value(value: tp.Union[str, bytes]) -> bytes:
        return value.encode("utf-8") if isinstance(value, str) else value

    async def get(self, key: str) -> tp.Optional[bytes]:
        self._check(key)
        return self.data.get(key)

    async def setex(self, key: str, seconds: int, value: tp.Union[str, bytes]) -> bool:
        self._check(key)
        self.data[key] = self._value(value)
        self.ttls[key] = seconds
        return True

    async def delete(self, *keys: tp.Union[str, bytes]) -> int:
        names = [self._name(key) for key in keys]
        self._check(*names)
        deleted = 0
        for name in names:
            if self.data.pop(name, None) is not None or self.sets.pop(name, None) is not None:
                deleted += 1
            self.ttls.pop(name, None)
        return deleted

    async def sadd(self, key: str, *values: tp.Union[str, bytes]) -> int:
        self._check(key)
        members = self.sets.setdefault(key, set())
        before = len(members)
        members.update(self._value(value) for value in values)
        return len(members) - before

    async def smembers(self, key: str) -> set[bytes]:
        self._check(key)
        return set(self.sets.get(key, set()))

    async def scan_iter(self, match: tp.Optional[str] = None, count: tp.Optional[int] = None) -> tp.AsyncIterator[bytes]:
        self._check()
        for key in [*self.data, *self.sets]:
            if match is None or glob_to_regex(match).fullmatch(key):
                yield key.encode("utf-8")

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def redis_cache(fake_redis: FakeRedis) -> ApiCache:
    return ApiCache(backend="redis", backend_options={"client": fake_redis})
