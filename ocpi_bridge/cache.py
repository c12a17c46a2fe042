"""Namespaced key/value cache used to stage short-lived associations.

``get_and_remove`` is a single atomic step: under concurrent consumers of the
same key at most one of them observes the value.
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import redis.asyncio as aioredis
from cachetools import TLRUCache

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"
TOKEN_ID_TO_AUTH_REF_NAMESPACE = "token_id_to_auth_ref"


def _key(key: str, namespace: Optional[str]) -> str:
    return f"{namespace or DEFAULT_NAMESPACE}:{key}"


class Cache(ABC):
    @abstractmethod
    async def get(self, key: str, namespace: Optional[str] = None) -> Optional[str]:
        ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: str,
        namespace: Optional[str] = None,
        expire_seconds: Optional[int] = None,
    ) -> bool:
        ...

    @abstractmethod
    async def remove(self, key: str, namespace: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    async def get_and_remove(self, key: str, namespace: Optional[str] = None) -> Optional[str]:
        ...

    async def close(self) -> None:
        return None


class RedisCache(Cache):
    """Cache backed by Redis; ``get_and_remove`` maps onto ``GETDEL``."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str, namespace: Optional[str] = None) -> Optional[str]:
        return await self._client.get(_key(key, namespace))

    async def set(
        self,
        key: str,
        value: str,
        namespace: Optional[str] = None,
        expire_seconds: Optional[int] = None,
    ) -> bool:
        result = await self._client.set(_key(key, namespace), value, ex=expire_seconds)
        return bool(result)

    async def remove(self, key: str, namespace: Optional[str] = None) -> bool:
        return await self._client.delete(_key(key, namespace)) == 1

    async def get_and_remove(self, key: str, namespace: Optional[str] = None) -> Optional[str]:
        return await self._client.getdel(_key(key, namespace))

    async def close(self) -> None:
        try:
            await self._client.aclose()
            logger.info("Redis cache client disconnected")
        except Exception:
            logger.exception("Error closing Redis cache client")


def _time_to_use(_key: str, item: Tuple[str, Optional[int]], now: float) -> float:
    expire_seconds = item[1]
    return now + expire_seconds if expire_seconds else math.inf


class MemoryCache(Cache):
    """In-process cache used when no Redis URL is configured.

    All operations run on the event loop thread without awaiting in between,
    so ``get_and_remove`` is atomic with respect to other tasks.
    """

    def __init__(self, maxsize: int = 10_000, timer=time.monotonic) -> None:
        self._entries: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=timer)

    async def get(self, key: str, namespace: Optional[str] = None) -> Optional[str]:
        item = self._entries.get(_key(key, namespace))
        return item[0] if item else None

    async def set(
        self,
        key: str,
        value: str,
        namespace: Optional[str] = None,
        expire_seconds: Optional[int] = None,
    ) -> bool:
        self._entries[_key(key, namespace)] = (value, expire_seconds)
        return True

    async def remove(self, key: str, namespace: Optional[str] = None) -> bool:
        return self._entries.pop(_key(key, namespace), None) is not None

    async def get_and_remove(self, key: str, namespace: Optional[str] = None) -> Optional[str]:
        item = self._entries.pop(_key(key, namespace), None)
        return item[0] if item else None
