from __future__ import annotations

import typing as t

from apicache._models import GROUP_STATE_KEY

try:
    import fastapi
except ImportError as e:
    raise ImportError(
        "fastapi is required to use apicache.fastapi module. "
        "Please install apicache with the 'fastapi' extra, "
        "e.g., 'pip install apicache[fastapi]'."
    ) from e


def cache_group(*names: str) -> t.Any:
    """
    Tag a route's cached response with one or more groups.

    Every group can later be invalidated at once with
    :meth:`apicache.ApiCache.clear_group`, typically after a write that makes
    the cached responses stale. Groups already assigned to the request are kept.

    Args:
        *names: Group names to register the response under.

    Returns:
        A dependency that records the groups on ``request.state``.

    Examples:
        >>> from fastapi import FastAPI
        >>> from apicache import ApiCache
        >>> from apicache.fastapi import cache_group
        >>>
        >>> cache = ApiCache()
        >>> api = FastAPI()
        >>>
        >>> @api.get("/users", dependencies=[cache_group("users")])
        >>> async def list_users():
        ...     return [{"name": "ada"}]
        >>>
        >>> @api.post("/users")
        >>> async def create_user():
        ...     await cache.clear_group("users")
        ...     return {"created": True}
        >>>
        >>> app = cache.middleware("5 minutes")(api)
    """
    if not names:
        raise ValueError("cache_group() needs at least one group name")

    def tag_request(request: fastapi.Request) -> None:
        assigned = getattr(request.state, GROUP_STATE_KEY, None)
        if assigned is None:
            groups: t.List[str] = []
        elif isinstance(assigned, str):
            groups = [assigned]
        else:
            groups = list(assigned)
        groups.extend(name for name in names if name not in groups)
        setattr(request.state, GROUP_STATE_KEY, groups)

    return fastapi.Depends(tag_request)
