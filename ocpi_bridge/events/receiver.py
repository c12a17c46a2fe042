"""Consume change events from a Redis stream consumer group."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Tuple

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from .dispatcher import ChangeEvent, EventDispatcher

logger = logging.getLogger(__name__)


class RedisStreamReceiver:
    """Read ``stream`` as ``consumer`` in ``group`` and dispatch every entry.

    Entries are acknowledged once dispatched, so delivery is at least once.
    Entries that cannot be parsed are logged and acknowledged as well.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        dispatcher: EventDispatcher,
        stream: str,
        group: str,
        consumer: str,
        block_ms: int = 5000,
        batch_size: int = 10,
    ) -> None:
        self.client = client
        self.dispatcher = dispatcher
        self.stream = stream
        self.group = group
        self.consumer = consumer
        self.block_ms = block_ms
        self.batch_size = batch_size
        self._stopped = asyncio.Event()

    async def ensure_group(self) -> None:
        try:
            await self.client.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info(f"Created consumer group {self.group} on {self.stream}")
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def handle_entry(self, entry_id: str, fields: Dict[str, Any]) -> None:
        try:
            event = ChangeEvent.from_dict(json.loads(fields["data"]))
        except (KeyError, TypeError, ValueError) as exc:
            logger.error(f"Malformed change event {entry_id} on {self.stream}: {exc}")
        else:
            await self.dispatcher.dispatch(event)
        await self.client.xack(self.stream, self.group, entry_id)

    async def poll(self) -> int:
        response: List[Tuple[str, List[Tuple[str, Dict[str, Any]]]]] = await self.client.xreadgroup(
            self.group,
            self.consumer,
            {self.stream: ">"},
            count=self.batch_size,
            block=self.block_ms,
        )
        handled = 0
        for _stream, entries in response or []:
            for entry_id, fields in entries:
                await self.handle_entry(entry_id, fields)
                handled += 1
        return handled

    async def run(self) -> None:
        await self.ensure_group()
        logger.info(f"Consuming change events from {self.stream} as {self.group}/{self.consumer}")
        while not self._stopped.is_set():
            try:
                await self.poll()
            except asyncio.CancelledError:
                raise
            except RedisConnectionError as exc:
                logger.error(f"Redis connection lost: {exc}; retrying")
                await asyncio.sleep(1)

    def stop(self) -> None:
        self._stopped.set()
