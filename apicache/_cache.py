from __future__ import annotations

import logging
import typing as tp
from dataclasses import fields, replace

from apicache._durations import parse_duration
from apicache._exceptions import BackendUnavailable, ConfigurationError
from apicache._keys import KeySpace
from apicache._states import CacheOptions, Toggle
from apicache._storages import BaseStorage, InMemoryStorage, RedisStorage
from apicache.asgi import CacheMiddleware, _ASGIApp

__all__ = ("ApiCache",)

BACKENDS: tp.Dict[str, tp.Type[BaseStorage]] = {
    "memory": InMemoryStorage,
    "redis": RedisStorage,
}
OPTION_NAMES = frozenset(option.name for option in fields(CacheOptions))


class ApiCache:
    """
    Caches responses of ASGI applications, keyed by request URL.

    The instance owns the options, the key space and the storage. Storage
    is picked when the cache is configured, never per request.

    Args:
        **options: Any :class:`CacheOptions` field, see :meth:`configure`.

    Example:
        ```python
        from apicache import ApiCache

        cache = ApiCache(backend="redis", backend_options={"url": "redis://localhost:6379"})
        app = cache.middleware("10 minutes")(app)

        # after a write
        await cache.clear_group("users")
        ```
    """

    def __init__(self, **options: tp.Any) -> None:
        self._options = CacheOptions()
        self._keys = KeySpace(self._options.prefix)
        self.storage: BaseStorage = self._create_storage(self._options)
        self._retired: tp.List[BaseStorage] = []
        if options:
            self.configure(**options)

    @property
    def options(self) -> CacheOptions:
        return self._options

    @property
    def keys(self) -> KeySpace:
        return self._keys

    def configure(self, **options: tp.Any) -> CacheOptions:
        """
        Merges the given options into the current ones.

        Omitted options keep their current values. A string ``default_duration``
        is parsed like a route duration. Changing the backend or its options
        replaces the storage; the replaced one stays open for requests still using
        it and is closed by :meth:`aclose`. The logger and prefix are handed to
        the current storage.
        Called without arguments it only returns the options.

        :raises ConfigurationError: On unknown options or an unsupported backend
        :return: The resolved options
        :rtype: CacheOptions
        """
        if not options:
            return self._options

        unknown = set(options) - OPTION_NAMES
        if unknown:
            raise ConfigurationError(f"Unknown cache options: {', '.join(sorted(unknown))}")

        if "default_duration" in options:
            options["default_duration"] = parse_duration(
                options["default_duration"],
                self._options.default_duration,
                options.get("logger", self._options.logger),
            )

        previous = self._options
        resolved = replace(previous, **options)

        if resolved.backend != previous.backend or resolved.backend_options != previous.backend_options:
            storage = self._create_storage(resolved)
            self._retired.append(self.storage)
            self.storage = storage
            resolved.logger.info("switched cache backend to %s", resolved.backend)
        else:
            self.storage.logger = resolved.logger

        if "prefix" in options:
            self._keys.prefix = resolved.prefix

        self._options = resolved
        return resolved

    def _create_storage(self, options: CacheOptions) -> BaseStorage:
        try:
            storage_class = BACKENDS[options.backend]
        except KeyError:
            raise ConfigurationError(
                f"Unsupported cache backend {options.backend!r}, expected one of: {', '.join(BACKENDS)}"
            ) from None
        try:
            return storage_class(keys=self._keys, logger=options.logger, **options.backend_options)
        except (TypeError, RuntimeError) as exc:
            raise ConfigurationError(f"Could not set up the {options.backend} backend: {exc}") from exc

    def middleware(
        self,
        duration: tp.Union[int, float, str, None] = None,
        toggle: tp.Optional[Toggle] = None,
    ) -> tp.Callable[[_ASGIApp], CacheMiddleware]:
        """
        Returns an installer that wraps an ASGI application with the cache.

        :param duration: Time to live as milliseconds or a string like ``"1 hour"``
        :param toggle: Called with each :class:`apicache.Request`; falsy skips the cache
        """
        parsed = parse_duration(duration, self._options.default_duration, self._options.logger)

        def install(app: _ASGIApp) -> CacheMiddleware:
            return CacheMiddleware(app, cache=self, duration=parsed, toggle=toggle)

        return install

    async def clear(self, url: tp.Optional[str] = None) -> bool:
        """
        Removes the entry stored for ``url`` and its group memberships.

        Without a URL every entry is removed, see :meth:`clear_all`.
        """
        if url is None:
            return await self.clear_all()

        self._options.logger.info("clearing key: %s", url)
        try:
            await self.storage.delete(url)
        except BackendUnavailable as exc:
            self._options.logger.error("could not clear %s: %s", url, exc, exc_info=exc)
            return False
        return True

    async def clear_group(self, name: str) -> bool:
        """Invalidates every entry tagged with the group."""
        self._options.logger.info("clearing group: %s", name)
        try:
            await self.storage.delete_group(name)
        except BackendUnavailable as exc:
            self._options.logger.error("could not clear group %s: %s", name, exc, exc_info=exc)
            return False
        return True

    async def clear_all(self) -> bool:
        """Removes every entry the cache owns; other data sharing the backend is left alone."""
        self._options.logger.info("clearing entire index")
        try:
            await self.storage.clear_all()
        except BackendUnavailable as exc:
            self._options.logger.error("could not clear the cache: %s", exc, exc_info=exc)
            return False
        return True

    async def aclose(self) -> None:
        """Close the storage backend, and any it replaced, and release resources."""
        while self._retired:
            await self._retired.pop().aclose()
        await self.storage.aclose()

    def __repr__(self) -> str:
        return f"ApiCache(backend={self._options.backend!r}, prefix={self._options.prefix!r})"
