import json

import httpx
import pytest

from photo_attendance import redis_config
from photo_attendance.redis_config import NullCache, UpstashRestCache


async def test_upstash_cache_sends_redis_commands():
    commands = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer token-1"
        command = json.loads(request.content)
        commands.append(command)
        if command[0] == "GET":
            return httpx.Response(200, json={"result": "1"})
        return httpx.Response(200, json={"result": "OK"})

    cache = UpstashRestCache("https://cache.test/", "token-1", transport=httpx.MockTransport(handler))
    await cache.setex("attendance:E1:2024-01-01", 60, "1")
    value = await cache.get("attendance:E1:2024-01-01")
    await cache.delete("attendance:E1:2024-01-01")
    await cache.close()

    assert value == "1"
    assert commands[0] == ["SETEX", "attendance:E1:2024-01-01", "60", "1"]
    assert commands[-1] == ["DEL", "attendance:E1:2024-01-01"]


async def test_upstash_error_payload_raises():
    cache = UpstashRestCache(
        "https://cache.test",
        "token-1",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"error": "WRONGPASS"})
        ),
    )

    with pytest.raises(RuntimeError, match="WRONGPASS"):
        await cache.get("key")


@pytest.mark.parametrize("backend", ["none", "memcached"])
async def test_disabled_or_unknown_backend_uses_null_cache(monkeypatch, backend):
    monkeypatch.setattr(redis_config.settings, "CACHE_BACKEND", backend)

    cache = await redis_config._build_cache_client()

    assert isinstance(cache, NullCache)
    assert await cache.get("anything") is None
