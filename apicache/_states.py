from __future__ import annotations

import logging
import typing as tp
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from apicache._models import MARKER_HEADER, CachedResponse, Request

__all__ = (
    "CacheOptions",
    "State",
    "AnyState",
    "EmissionState",
    "Entry",
    "Lookup",
    "Passthrough",
    "Replay",
    "Capture",
    "StoreAndEmit",
    "EmitOnly",
    "DEFAULT_CONTENT_TYPE",
)

DEFAULT_CONTENT_TYPE = "application/json; charset=utf-8"
CACHE_VALIDITY_HEADERS = ("Cache-Control", "Expires")

Toggle = tp.Callable[[Request], tp.Any]


@dataclass
class CacheOptions:
    """
    Process-wide configuration of an :class:`apicache.ApiCache`.

    Examples:
        >>> options = CacheOptions()
        >>> options.default_duration
        3600000

        >>> options = CacheOptions(backend="redis", backend_options={"url": "redis://localhost"})
    """

    enabled: bool = True
    """When False, every request goes straight to the application."""

    default_duration: int = 3600000
    """Time to live in milliseconds, used when a route's duration is missing or malformed."""

    backend: tp.Literal["memory", "redis"] = "memory"
    """Which storage holds the entries: the process-local map or a redis server."""

    backend_options: tp.Dict[str, tp.Any] = field(default_factory=dict)
    """
    Keyword arguments for the storage. For redis either ``client``, ``url``
    or any ``redis.asyncio.Redis`` connection argument.
    """

    prefix: str = "apicache"
    """Namespace for every key the cache writes."""

    methods: tp.Tuple[str, ...] = ("GET",)
    """
    Request methods whose responses are looked up and stored. Any other method
    goes straight to the application, so writes always reach their handlers.
    """

    on_hit: tp.Optional[tp.Callable[[str], tp.Any]] = None
    """Called with the URL whenever a response is served from the cache."""

    on_miss: tp.Optional[tp.Callable[[str], tp.Any]] = None
    """Called with the URL whenever a lookup finds nothing."""

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("apicache"))
    """Where the cache reports what it does."""


@dataclass
class State(ABC):
    options: CacheOptions

    @abstractmethod
    def next(self, *args: tp.Any, **kwargs: tp.Any) -> tp.Union["State", None]:
        raise NotImplementedError("Subclasses must implement this method")


@dataclass
class Entry(State):
    """
    The entry point of the cache state machine.

    Decides whether the cache takes part in the request at all. Caching can
    be disabled globally or skipped by the client with the ``x-apicache-bypass``
    header. Only the configured methods are cached, and the toggle predicate
    can switch the cache off per route.

    State Transitions:
    -----------------
    - Passthrough: When the cache must stay out of the way
    - Lookup: Otherwise
    """

    duration: int
    toggle: tp.Optional[Toggle] = None

    def next(self, request: Request) -> tp.Union["Passthrough", "Lookup"]:
        if not self.options.enabled:
            return Passthrough(options=self.options, reason="caching is disabled")

        if request.bypass:
            self.options.logger.debug("bypass detected, skipping cache.")
            return Passthrough(options=self.options, reason="bypass header")

        if request.method.upper() not in {method.upper() for method in self.options.methods}:
            return Passthrough(options=self.options, reason="method is not cached")

        if self.toggle is not None and not self.toggle(request):
            return Passthrough(options=self.options, reason="disabled for this route")

        return Lookup(options=self.options, request=request, duration=self.duration)


@dataclass
class Lookup(State):
    """
    The request is cacheable and the storage has been asked for its URL.

    State Transitions:
    -----------------
    - Replay: A stored response exists
    - Capture: Nothing is stored yet
    - Passthrough: The storage could not be reached (see :meth:`fail`)
    """

    request: Request
    duration: int

    def next(self, cached: tp.Optional[CachedResponse]) -> tp.Union["Replay", "Capture"]:
        if cached is not None:
            self.options.logger.debug('returning cached version of "%s"', self.request.url)
            return Replay(options=self.options, request=self.request, cached=cached)

        self.options.logger.debug('path "%s" not found in cache', self.request.url)
        return Capture(options=self.options, request=self.request, duration=self.duration)

    def fail(self, error: Exception) -> "Passthrough":
        self.options.logger.error(
            'cache lookup failed for "%s", serving it live: %s', self.request.url, error, exc_info=error
        )
        return Passthrough(options=self.options, reason="storage unavailable")


@dataclass
class Passthrough(State):
    reason: str

    def next(self) -> None:
        return None


@dataclass
class Replay(State):
    """Serve a stored response without calling the application."""

    request: Request
    cached: CachedResponse

    @property
    def response(self) -> CachedResponse:
        return self.cached.with_header(MARKER_HEADER, "HIT")

    def next(self) -> None:
        return None


@dataclass
class Capture(State):
    """
    The application is producing the response; the cache is waiting for it.

    State Transitions:
    -----------------
    - StoreAndEmit: The response can be stored (status below 400 and no bypass header)
    - EmitOnly: Otherwise
    """

    request: Request
    duration: int

    def candidate(
        self,
        status: int,
        headers: tp.Iterable[tp.Tuple[str, str]],
        body: bytes,
    ) -> CachedResponse:
        """
        Build the response that would be stored.

        Only the content type and the headers that describe validity are kept;
        the content type defaults to JSON when the application set none.
        """
        sent = {key.lower(): value for key, value in headers}
        stored = {"Content-Type": sent.get("content-type", DEFAULT_CONTENT_TYPE)}
        for name in CACHE_VALIDITY_HEADERS:
            if name.lower() in sent:
                stored[name] = sent[name.lower()]
        return CachedResponse(status=status, headers=stored, body=body)

    def next(self, candidate: CachedResponse) -> tp.Union["StoreAndEmit", "EmitOnly"]:
        if not self.request.bypass and candidate.status < 400:
            self.options.logger.debug(
                'adding cache entry for "%s" @ %d milliseconds', self.request.url, self.duration
            )
            try:
                groups = self.request.groups
            except TypeError as exc:
                self.options.logger.warning('ignoring cache groups of "%s": %s', self.request.url, exc)
                groups = []
            return StoreAndEmit(
                options=self.options,
                request=self.request,
                response=candidate,
                duration=self.duration,
                groups=groups,
            )
        return EmitOnly(options=self.options, response=candidate)


@dataclass
class StoreAndEmit(State):
    request: Request
    response: CachedResponse
    duration: int
    groups: tp.List[str] = field(default_factory=list)

    def next(self) -> None:
        return None


@dataclass
class EmitOnly(State):
    response: CachedResponse

    def next(self) -> None:
        return None


AnyState = tp.Union[Entry, Lookup, Passthrough, Replay, Capture]
EmissionState = tp.Union[StoreAndEmit, EmitOnly]
