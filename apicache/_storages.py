from __future__ import annotations

import logging
import time
import typing as tp
from contextlib import contextmanager

import anyio

from apicache._exceptions import BackendUnavailable, SerializationFailure
from apicache._keys import GroupIndex, KeySpace
from apicache._models import CachedResponse
from apicache._serializers import BaseSerializer, JSONSerializer

try:
    import redis.asyncio as redis
except ImportError:  # pragma: no cover
    redis = None  # type: ignore

__all__ = (
    "BaseStorage",
    "InMemoryStorage",
    "RedisStorage",
)


class BaseStorage:
    """
    The capability interface every backend implements.

    All operations take the request URL; the storage namespaces it through
    its :class:`KeySpace`. ``delete_group`` is shared by every backend and is
    built on top of ``members``, ``delete`` and ``_drop_group``.

    :param keys: Key space used to namespace entries and groups
    :type keys: tp.Optional[KeySpace], optional
    :param logger: Logger to report backend failures to, defaults to "apicache.storages"
    :type logger: tp.Optional[logging.Logger], optional
    :param fanout_limit: How many member deletions may run at once during group invalidation
    :type fanout_limit: int
    """

    def __init__(
        self,
        keys: tp.Optional[KeySpace] = None,
        logger: tp.Optional[logging.Logger] = None,
        fanout_limit: int = 16,
    ) -> None:
        self.keys = keys if keys is not None else KeySpace()
        self.logger = logger if logger is not None else logging.getLogger("apicache.storages")
        self._fanout_limit = fanout_limit

    async def get(self, url: str) -> tp.Optional[CachedResponse]:
        raise NotImplementedError()

    async def set(self, url: str, response: CachedResponse, duration: int) -> None:
        raise NotImplementedError()

    async def delete(self, url: str) -> None:
        raise NotImplementedError()

    async def clear_all(self) -> None:
        raise NotImplementedError()

    async def add_member(self, group: str, url: str) -> None:
        raise NotImplementedError()

    async def members(self, group: str) -> tp.List[str]:
        raise NotImplementedError()

    async def _drop_group(self, group: str) -> None:
        raise NotImplementedError()

    async def aclose(self) -> None:
        raise NotImplementedError()

    async def delete_group(self, group: str) -> tp.List[str]:
        """
        Deletes every member of the group, then the group itself.

        Member deletions run concurrently and are all awaited. A member that
        cannot be deleted is logged and does not stop the others.

        :param group: The group name
        :type group: str
        :raises BackendUnavailable: When the members or the group entry cannot be reached
        :return: URLs of the members that could not be deleted
        :rtype: tp.List[str]
        """
        self.logger.debug("deleting group %s", group)
        members = await self.members(group)
        failed: tp.List[str] = []
        limiter = anyio.CapacityLimiter(self._fanout_limit)

        async def delete_member(url: str) -> None:
            async with limiter:
                try:
                    await self.delete(url)
                except BackendUnavailable as exc:
                    self.logger.error("could not delete %s from group %s: %s", url, group, exc)
                    failed.append(url)

        async with anyio.create_task_group() as task_group:
            for url in members:
                task_group.start_soon(delete_member, url)

        if failed:
            self.logger.warning(
                "group %s partially invalidated: %d of %d members could not be deleted",
                group,
                len(failed),
                len(members),
            )

        await self._drop_group(group)
        return failed


class InMemoryStorage(BaseStorage):
    """
    A simple in-memory storage.

    Entries expire lazily when read, and expired entries are swept on write
    at most once every ``check_ttl_every`` seconds. Nothing survives a restart.

    :param keys: Key space used to namespace entries, defaults to None
    :type keys: tp.Optional[KeySpace], optional
    :param logger: Logger to report to, defaults to None
    :type logger: tp.Optional[logging.Logger], optional
    :param check_ttl_every: How often in seconds to sweep **all** entries for expiry, defaults to 60
    :type check_ttl_every: tp.Union[int, float]
    """

    def __init__(
        self,
        keys: tp.Optional[KeySpace] = None,
        logger: tp.Optional[logging.Logger] = None,
        check_ttl_every: tp.Union[int, float] = 60,
        fanout_limit: int = 16,
    ) -> None:
        super().__init__(keys, logger, fanout_limit)

        self._cache: tp.Dict[str, tp.Tuple[str, CachedResponse, float]] = {}
        self._groups = GroupIndex()
        self._check_ttl_every = check_ttl_every
        self._last_cleaned = time.time()

    async def get(self, url: str) -> tp.Optional[CachedResponse]:
        key = self.keys.entry_key(url)
        stored = self._cache.get(key)
        if stored is None:
            return None

        _, response, expires_at = stored
        if time.time() >= expires_at:
            self._evict(key)
            return None
        return response

    async def set(self, url: str, response: CachedResponse, duration: int) -> None:
        """
        Stores the response in the cache.

        :param url: The request URL
        :type url: str
        :param response: The captured response
        :type response: CachedResponse
        :param duration: Time to live in milliseconds
        :type duration: int
        """
        self._cache[self.keys.entry_key(url)] = (url, response, time.time() + duration / 1000)
        self._remove_expired_caches()

    async def delete(self, url: str) -> None:
        self._evict(self.keys.entry_key(url))
        self._groups.remove_key(url)

    async def clear_all(self) -> None:
        self._cache.clear()
        self._groups.clear()

    async def add_member(self, group: str, url: str) -> None:
        self._groups.add(group, url)

    async def members(self, group: str) -> tp.List[str]:
        return sorted(self._groups.members(group))

    async def _drop_group(self, group: str) -> None:
        self._groups.remove_group(group)

    async def aclose(self) -> None:  # pragma: no cover
        return

    def __len__(self) -> int:
        return len(self._cache)

    def _evict(self, key: str) -> None:
        stored = self._cache.pop(key, None)
        if stored is not None:
            self._groups.remove_key(stored[0])

    def _remove_expired_caches(self) -> None:
        now = time.time()
        if now - self._last_cleaned < self._check_ttl_every:
            return

        self._last_cleaned = now
        expired = [key for key, (_, _, expires_at) in self._cache.items() if now >= expires_at]
        for key in expired:
            self._evict(key)


class RedisStorage(BaseStorage):
    """
    A redis storage.

    Entries are JSON documents stored with ``SETEX``. Group membership is a
    redis set under the group key; members are not removed when an entry
    expires or is deleted, stale members are simply deleted again when the
    group is invalidated.

    :param keys: Key space used to namespace entries and groups, defaults to None
    :type keys: tp.Optional[KeySpace], optional
    :param client: A client for redis, defaults to None
    :type client: tp.Optional["redis.Redis"], optional
    :param url: A redis URL used when no client is given, defaults to None
    :type url: tp.Optional[str], optional
    :param serializer: Serializer for cached responses, defaults to JSONSerializer
    :type serializer: tp.Optional[BaseSerializer], optional
    :param connection_options: Passed to ``redis.asyncio.Redis`` when neither client nor url is given
    """

    def __init__(
        self,
        keys: tp.Optional[KeySpace] = None,
        logger: tp.Optional[logging.Logger] = None,
        client: tp.Optional[redis.Redis] = None,  # type: ignore
        url: tp.Optional[str] = None,
        serializer: tp.Optional[BaseSerializer] = None,
        fanout_limit: int = 16,
        **connection_options: tp.Any,
    ) -> None:
        if redis is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `apicache` installed with the `redis` extension as shown.\n"
                "```pip install apicache[redis]```"
            )
        super().__init__(keys, logger, fanout_limit)

        self._serializer = serializer or JSONSerializer()
        if client is not None:
            self._client = client
        elif url is not None:
            self._client = redis.Redis.from_url(url, **connection_options)
        else:
            self._client = redis.Redis(**connection_options)

    @contextmanager
    def _translate_errors(self, operation: str, key: str) -> tp.Iterator[None]:
        try:
            yield
        except (redis.RedisError, OSError) as exc:
            raise BackendUnavailable(f"redis {operation} failed for {key!r}: {exc}") from exc

    async def get(self, url: str) -> tp.Optional[CachedResponse]:
        """
        Retrieves the response stored for the URL.

        :param url: The request URL
        :type url: str
        :raises BackendUnavailable: When redis cannot be reached
        :return: The cached response, or None when absent or undecodable
        :rtype: tp.Optional[CachedResponse]
        """
        key = self.keys.entry_key(url)
        with self._translate_errors("GET", key):
            data = await self._client.get(key)
        if data is None:
            return None

        try:
            return self._serializer.loads(data)
        except SerializationFailure as exc:
            self.logger.warning("ignoring undecodable entry %s: %s", key, exc)
            return None

    async def set(self, url: str, response: CachedResponse, duration: int) -> None:
        """
        Stores the response under the URL.

        Redis expiry has a resolution of seconds, so the duration is rounded
        and never goes below one second.

        :param url: The request URL
        :type url: str
        :param response: The captured response
        :type response: CachedResponse
        :param duration: Time to live in milliseconds
        :type duration: int
        """
        key = self.keys.entry_key(url)
        seconds = max(1, int(duration / 1000 + 0.5))
        with self._translate_errors("SETEX", key):
            await self._client.setex(key, seconds, self._serializer.dumps(response))

    async def delete(self, url: str) -> None:
        self.logger.debug("deleting key %s", url)
        key = self.keys.entry_key(url)
        with self._translate_errors("DEL", key):
            await self._client.delete(key)

    async def clear_all(self) -> None:
        """Deletes every key under the prefix, leaving other data in the database alone."""
        pattern = self.keys.pattern
        deleted = 0
        with self._translate_errors("SCAN", pattern):
            async for key in self._client.scan_iter(match=pattern, count=100):
                await self._client.delete(key)
                deleted += 1
        self.logger.debug("deleted %d keys matching %s", deleted, pattern)

    async def add_member(self, group: str, url: str) -> None:
        key = self.keys.group_key(group)
        with self._translate_errors("SADD", key):
            await self._client.sadd(key, url)

    async def members(self, group: str) -> tp.List[str]:
        key = self.keys.group_key(group)
        with self._translate_errors("SMEMBERS", key):
            members = await self._client.smembers(key)
        return sorted(member.decode("utf-8") if isinstance(member, bytes) else member for member in members)

    async def _drop_group(self, group: str) -> None:
        key = self.keys.group_key(group)
        with self._translate_errors("DEL", key):
            await self._client.delete(key)

    async def aclose(self) -> None:  # pragma: no cover
        await self._client.aclose()
