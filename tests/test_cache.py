import asyncio

import pytest

from ocpi_bridge.cache import TOKEN_ID_TO_AUTH_REF_NAMESPACE, MemoryCache, RedisCache


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiry = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def getdel(self, key):
        return self.data.pop(key, None)


@pytest.mark.asyncio
async def test_get_and_remove_returns_value_once(cache):
    await cache.set("TAG1", "ref-1", namespace=TOKEN_ID_TO_AUTH_REF_NAMESPACE)

    assert await cache.get_and_remove("TAG1", TOKEN_ID_TO_AUTH_REF_NAMESPACE) == "ref-1"
    assert await cache.get_and_remove("TAG1", TOKEN_ID_TO_AUTH_REF_NAMESPACE) is None


@pytest.mark.asyncio
async def test_concurrent_consumers_see_value_at_most_once(cache):
    await cache.set("TAG1", "ref-1", namespace=TOKEN_ID_TO_AUTH_REF_NAMESPACE)

    results = await asyncio.gather(
        *(cache.get_and_remove("TAG1", TOKEN_ID_TO_AUTH_REF_NAMESPACE) for _ in range(5))
    )

    assert results.count("ref-1") == 1


@pytest.mark.asyncio
async def test_namespaces_are_separate(cache):
    await cache.set("TAG1", "a", namespace="one")
    await cache.set("TAG1", "b", namespace="two")
    await cache.set("TAG1", "c")

    assert await cache.get("TAG1", namespace="one") == "a"
    assert await cache.get("TAG1", namespace="two") == "b"
    assert await cache.get("TAG1") == "c"
    assert await cache.remove("TAG1", namespace="one") is True
    assert await cache.remove("TAG1", namespace="one") is False
    assert await cache.get("TAG1", namespace="two") == "b"


@pytest.mark.asyncio
async def test_memory_cache_expires_entries():
    now = [100.0]
    cache = MemoryCache(timer=lambda: now[0])

    await cache.set("TAG1", "ref-1", expire_seconds=10)
    assert await cache.get("TAG1") == "ref-1"

    now[0] = 111.0
    assert await cache.get("TAG1") is None


@pytest.mark.asyncio
async def test_redis_cache_prefixes_keys_and_uses_getdel():
    client = FakeRedis()
    cache = RedisCache(client)

    await cache.set("TAG1", "ref-1", namespace=TOKEN_ID_TO_AUTH_REF_NAMESPACE, expire_seconds=600)

    assert client.data == {"token_id_to_auth_ref:TAG1": "ref-1"}
    assert client.expiry["token_id_to_auth_ref:TAG1"] == 600
    assert await cache.get_and_remove("TAG1", TOKEN_ID_TO_AUTH_REF_NAMESPACE) == "ref-1"
    assert client.data == {}
