from __future__ import annotations

import typing as t

import anyio
from typing_extensions import assert_never

from apicache._durations import parse_duration
from apicache._exceptions import BackendUnavailable
from apicache._models import HEADERS_ENCODING, MARKER_HEADER, Request
from apicache._states import (
    AnyState,
    Capture,
    Entry,
    Lookup,
    Passthrough,
    Replay,
    StoreAndEmit,
    Toggle,
)
from apicache._storages import BaseStorage

if t.TYPE_CHECKING:  # pragma: no cover
    from apicache._cache import ApiCache

__all__ = ("CacheMiddleware", "ResponseInterceptor")

_Scope = t.MutableMapping[str, t.Any]
_Message = t.MutableMapping[str, t.Any]
_Receive = t.Callable[[], t.Awaitable[_Message]]
_Send = t.Callable[[_Message], t.Awaitable[None]]
_ASGIApp = t.Callable[[_Scope, _Receive, _Send], t.Awaitable[None]]
_RawHeaders = t.List[t.Tuple[bytes, bytes]]
_ResponseHook = t.Callable[[int, _RawHeaders, bytes], t.Awaitable[None]]


class ResponseInterceptor:
    """
    Stands in for the ASGI ``send`` callable while the application responds.

    The original ``send`` is handed over once, at construction, and is the
    only way the response reaches the client. The start and body messages are
    held back until the final body message arrives; ``on_response`` is then
    awaited with the full status, headers and body, and the response is sent
    through the original ``send`` exactly once, with ``headers`` appended.

    Any other message, such as ``http.response.pathsend``, first releases the
    held start message. The rest of that response is forwarded as it comes
    and never reaches ``on_response``.

    Args:
        send: The server's ``send`` callable.
        on_response: Awaited with the complete response before it is sent.
        headers: Extra headers appended to the response start.
    """

    def __init__(
        self,
        send: _Send,
        on_response: _ResponseHook,
        headers: t.Sequence[t.Tuple[bytes, bytes]] = (),
    ) -> None:
        self._send = send
        self._on_response = on_response
        self._headers = list(headers)
        self._start: t.Optional[_Message] = None
        self._chunks: t.List[bytes] = []
        self.emitted = False
        self.released = False

    @property
    def started(self) -> bool:
        return self._start is not None

    async def __call__(self, message: _Message) -> None:
        message_type = message["type"]

        if message_type == "http.response.start":
            if self._start is not None:
                raise RuntimeError("Response already started")
            self._start = message
        elif message_type == "http.response.body" and not self.released:
            if self.emitted:
                raise RuntimeError("Response already completed")
            if self._start is None:
                raise RuntimeError("Response body sent before the response started")
            self._chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                await self._on_response(self.status, list(self._start.get("headers", [])), self.body)
                await self._emit()
        else:
            if self.started and not self.emitted:
                await self._release()
            await self._send(message)

    @property
    def status(self) -> int:
        assert self._start is not None
        return int(self._start.get("status", 200))

    @property
    def body(self) -> bytes:
        return b"".join(self._chunks)

    async def flush(self) -> None:
        """Send a response the application started but never finished, without capturing it."""
        if self.started and not self.emitted:
            await self._emit()

    async def _emit(self) -> None:
        if self.emitted:
            return
        self.emitted = True

        await self._send_start()
        await self._send({"type": "http.response.body", "body": self.body, "more_body": False})

    async def _release(self) -> None:
        self.emitted = True
        self.released = True

        await self._send_start()
        if self._chunks:
            await self._send({"type": "http.response.body", "body": self.body, "more_body": True})

    async def _send_start(self) -> None:
        assert self._start is not None
        start = dict(self._start)
        start["headers"] = [*self._start.get("headers", []), *self._headers]
        await self._send(start)


class CacheMiddleware:
    """
    ASGI middleware that serves responses from an :class:`apicache.ApiCache`.

    The duration is parsed once, when the middleware is installed. Responses
    are keyed on the raw path and query string only, and only the methods in
    the cache's ``methods`` option are cached. Any storage failure on the way
    in is logged and the request is served live.

    Args:
        app: The ASGI application to wrap.
        cache: The cache that owns the options and the storage.
        duration: Time to live as milliseconds or a string like ``"5 minutes"``.
            Defaults to the cache's ``default_duration``.
        toggle: Called with the :class:`apicache.Request`; a falsy result skips the cache.

    Example:
        ```python
        from starlette.applications import Starlette
        from apicache import ApiCache
        from apicache.asgi import CacheMiddleware

        cache = ApiCache()
        app = Starlette(routes=routes)
        app.add_middleware(CacheMiddleware, cache=cache, duration="5 minutes")
        ```
    """

    def __init__(
        self,
        app: _ASGIApp,
        cache: ApiCache,
        duration: t.Union[int, float, str, None] = None,
        toggle: t.Optional[Toggle] = None,
    ) -> None:
        self.app = app
        self.cache = cache
        self.duration = parse_duration(duration, cache.options.default_duration, cache.options.logger)
        self.toggle = toggle

    async def __call__(self, scope: _Scope, receive: _Receive, send: _Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        options = self.cache.options
        storage = self.cache.storage
        request = Request.from_scope(scope)
        state: AnyState = Entry(options=options, duration=self.duration, toggle=self.toggle)

        while True:
            if isinstance(state, Entry):
                state = state.next(request)
            elif isinstance(state, Lookup):
                state = await self._handle_lookup(state, storage)
            elif isinstance(state, Passthrough):
                await self.app(scope, receive, send)
                return
            elif isinstance(state, Replay):
                await self._handle_replay(state, send)
                return
            elif isinstance(state, Capture):
                await self._handle_capture(state, storage, scope, receive, send)
                return
            else:
                assert_never(state)

    async def _handle_lookup(self, state: Lookup, storage: BaseStorage) -> AnyState:
        try:
            cached = await storage.get(state.request.url)
        except BackendUnavailable as exc:
            return state.fail(exc)
        return state.next(cached)

    async def _handle_replay(self, state: Replay, send: _Send) -> None:
        response = state.response
        if state.options.on_hit is not None:
            state.options.on_hit(state.request.url)

        headers = response.raw_headers()
        headers.append((b"content-length", str(len(response.body)).encode(HEADERS_ENCODING)))
        await send({"type": "http.response.start", "status": response.status, "headers": headers})
        await send({"type": "http.response.body", "body": response.body, "more_body": False})

    async def _handle_capture(
        self,
        state: Capture,
        storage: BaseStorage,
        scope: _Scope,
        receive: _Receive,
        send: _Send,
    ) -> None:
        if state.options.on_miss is not None:
            state.options.on_miss(state.request.url)

        async def on_response(status: int, headers: _RawHeaders, body: bytes) -> None:
            decoded = [(key.decode(HEADERS_ENCODING), value.decode(HEADERS_ENCODING)) for key, value in headers]
            outcome = state.next(state.candidate(status, decoded, body))
            if isinstance(outcome, StoreAndEmit):
                await self._store(outcome, storage)

        interceptor = ResponseInterceptor(
            send,
            on_response,
            headers=[(MARKER_HEADER.encode(HEADERS_ENCODING), b"MISS")],
        )
        await self.app(scope, receive, interceptor)
        await interceptor.flush()

    async def _store(self, state: StoreAndEmit, storage: BaseStorage) -> None:
        log = state.options.logger
        url = state.request.url

        if state.groups:
            log.debug("group detected: %s", ", ".join(state.groups))

            async def register(group: str) -> None:
                try:
                    await storage.add_member(group, url)
                except BackendUnavailable as exc:
                    log.error('could not add "%s" to group %s: %s', url, group, exc)

            async with anyio.create_task_group() as task_group:
                for group in state.groups:
                    task_group.start_soon(register, group)

        try:
            await storage.set(url, state.response, state.duration)
        except BackendUnavailable as exc:
            log.error('could not store "%s": %s', url, exc, exc_info=exc)
