from __future__ import annotations

import typing as tp
from dataclasses import dataclass, field
from types import MappingProxyType

HEADERS_ENCODING = "iso-8859-1"

BYPASS_HEADER = "x-apicache-bypass"
MARKER_HEADER = "x-apicache"
GROUP_STATE_KEY = "apicache_group"

__all__ = ("CachedResponse", "Request")


@dataclass(frozen=True)
class CachedResponse:
    status: int
    headers: tp.Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        # Stored entries are replaced wholesale, never edited in place
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def with_header(self, name: str, value: str) -> "CachedResponse":
        headers = dict(self.headers)
        headers[name] = value
        return CachedResponse(status=self.status, headers=headers, body=self.body)

    def raw_headers(self) -> tp.List[tp.Tuple[bytes, bytes]]:
        return [
            (key.encode(HEADERS_ENCODING), value.encode(HEADERS_ENCODING)) for key, value in self.headers.items()
        ]


@dataclass
class Request:
    """
    A read-only view of an ASGI HTTP scope.

    ``state`` is the scope's own state dict, so values handlers assign to
    ``request.state`` after the view was built are still visible through it.
    """

    method: str
    url: str
    headers: tp.Mapping[str, str] = field(default_factory=dict)
    state: tp.Dict[str, tp.Any] = field(default_factory=dict)

    @classmethod
    def from_scope(cls, scope: tp.MutableMapping[str, tp.Any]) -> "Request":
        raw_path = scope.get("raw_path")
        if raw_path:
            path = raw_path.decode(HEADERS_ENCODING)
        else:
            path = scope.get("path", "/")
        query_string = scope.get("query_string", b"").decode(HEADERS_ENCODING)
        url = f"{path}?{query_string}" if query_string else path

        headers = {
            key.decode(HEADERS_ENCODING).lower(): value.decode(HEADERS_ENCODING)
            for key, value in scope.get("headers", [])
        }
        return cls(
            method=scope.get("method", "GET"),
            url=url,
            headers=headers,
            state=scope.setdefault("state", {}),
        )

    @property
    def bypass(self) -> bool:
        return BYPASS_HEADER in self.headers

    @property
    def groups(self) -> tp.List[str]:
        assigned = self.state.get(GROUP_STATE_KEY)
        if not assigned:
            return []
        if isinstance(assigned, str):
            return [assigned]
        if not isinstance(assigned, tp.Iterable):
            raise TypeError(f"{GROUP_STATE_KEY} must be a string or a sequence of strings, got {assigned!r}")
        return [str(group) for group in assigned]
