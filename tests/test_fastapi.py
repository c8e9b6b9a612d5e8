from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI, Request

from apicache import ApiCache
from apicache.fastapi import cache_group


def test_cache_group_needs_a_name() -> None:
    with pytest.raises(ValueError, match="at least one group name"):
        cache_group()


@pytest.mark.anyio
async def test_cache_group_with_fastapi() -> None:
    cache = ApiCache()
    api = FastAPI()
    calls = {"users": 0, "user": 0}
    users = {1: "ada", 2: "grace"}

    @api.get("/users", dependencies=[cache_group("users")])
    async def list_users() -> list:
        calls["users"] += 1
        return sorted(users.values())

    @api.get("/users/{user_id}", dependencies=[cache_group("users"), cache_group("user")])
    async def get_user(user_id: int, request: Request) -> dict:
        calls["user"] += 1
        return {"name": users[user_id], "groups": request.state.apicache_group}

    @api.put("/users/{user_id}")
    async def rename_user(user_id: int, name: str) -> dict:
        users[user_id] = name
        await cache.clear_group("users")
        return {"name": name}

    app = cache.middleware("5 minutes")(api)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        first = await client.get("/users")
        assert first.json() == ["ada", "grace"]
        assert first.headers["x-apicache"] == "MISS"

        user = await client.get("/users/1")
        assert user.json() == {"name": "ada", "groups": ["users", "user"]}

        cached = await client.get("/users")
        assert cached.headers["x-apicache"] == "HIT"
        assert calls == {"users": 1, "user": 1}

        assert await cache.storage.members("users") == ["/users", "/users/1"]
        assert await cache.storage.members("user") == ["/users/1"]

        renamed = await client.put("/users/1", params={"name": "lovelace"})
        assert renamed.json() == {"name": "lovelace"}

        refreshed = await client.get("/users")
        assert refreshed.headers["x-apicache"] == "MISS"
        assert refreshed.json() == ["grace", "lovelace"]

        user = await client.get("/users/1")
        assert user.json()["name"] == "lovelace"

    assert calls == {"users": 2, "user": 2}
