"""Process entry point: HTTP API, OCPP central system and change-event consumer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as aioredis
import uvicorn
from fastapi import FastAPI
from websockets import serve

from .api import create_app
from .broadcast import CdrBroadcaster, LocationsBroadcaster, PartnerClient, SessionBroadcaster
from .cache import Cache, MemoryCache, RedisCache
from .central_server import CentralSystem, OcppStationCommandService
from .config import Settings, load_settings
from .events import EventDispatcher, RedisStreamReceiver
from .handlers import LocationEventHandlers, SessionEventHandlers, build_registry
from .services.billing import CostCalculator
from .services.commands import CommandsService
from .services.executor import CommandExecutor
from .services.tokens import TokensService
from .store import DataStore, InMemoryStore

logger = logging.getLogger(__name__)


@dataclass
class Bridge:
    settings: Settings
    store: DataStore
    cache: Cache
    http: httpx.AsyncClient
    stations: OcppStationCommandService
    executor: CommandExecutor
    dispatcher: EventDispatcher
    app: FastAPI


def build_bridge(
    settings: Settings,
    store: Optional[DataStore] = None,
    cache: Optional[Cache] = None,
    http: Optional[httpx.AsyncClient] = None,
) -> Bridge:
    """Assemble every collaborator once; nothing is looked up later."""
    store = store or InMemoryStore()
    if cache is None:
        cache = RedisCache.from_url(settings.redis_url) if settings.redis_url else MemoryCache()
    http = http or httpx.AsyncClient(timeout=settings.partner_timeout)

    partners = PartnerClient(http, store)
    stations = OcppStationCommandService()
    tokens = TokensService(store, partners)
    executor = CommandExecutor(stations, partners, cache, settings.auth_ref_cache_ttl)
    commands = CommandsService(store, tokens, executor, settings.commands_timeout)

    session_handlers = SessionEventHandlers(
        store,
        cache,
        SessionBroadcaster(partners, store),
        CdrBroadcaster(partners, store, CostCalculator(store)),
    )
    location_handlers = LocationEventHandlers(store, LocationsBroadcaster(partners, store))
    dispatcher = EventDispatcher(build_registry(session_handlers, location_handlers))

    app = create_app(store, commands, tokens, settings.commands_timeout)
    return Bridge(settings, store, cache, http, stations, executor, dispatcher, app)


async def run_http_api(bridge: Bridge) -> None:
    config = uvicorn.Config(
        bridge.app,
        host=bridge.settings.http_host,
        port=bridge.settings.http_port,
        loop="asyncio",
        log_level=bridge.settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()


async def run_event_consumer(bridge: Bridge) -> None:
    settings = bridge.settings
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    receiver = RedisStreamReceiver(
        client,
        bridge.dispatcher,
        settings.event_stream,
        settings.event_group,
        settings.event_consumer,
    )
    try:
        await receiver.run()
    finally:
        await client.aclose()


async def main() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())
    bridge = build_bridge(settings)

    async def handler(websocket, path=None):
        if path is None:
            try:
                path = websocket.request.path
            except AttributeError:
                path = websocket.path if hasattr(websocket, "path") else ""
        cp_id = path.rsplit("/", 1)[-1] if path else "UNKNOWN"
        logger.info(f"[Central] New connection for Charge Point ID: {cp_id}")

        central = CentralSystem(cp_id, websocket)
        bridge.stations.register(central)
        try:
            await central.start()
        finally:
            bridge.stations.unregister(cp_id)
            logger.info(f"[Central] Disconnected: {cp_id}")

    tasks = [asyncio.create_task(run_http_api(bridge), name="http-api")]
    if settings.redis_url:
        tasks.append(asyncio.create_task(run_event_consumer(bridge), name="event-consumer"))
    else:
        logger.warning("REDIS_URL not set; change events will not be consumed")

    try:
        async with serve(
            handler,
            host=settings.ocpp_host,
            port=settings.ocpp_port,
            subprotocols=["ocpp1.6"],
        ):
            logger.info(
                f"⚡ OCPI bridge | OCPP ws://{settings.ocpp_host}:{settings.ocpp_port}/ocpp/<ChargePointID> "
                f"| HTTP :{settings.http_port} | OCPI {settings.ocpi_version}"
            )
            await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await bridge.executor.drain()
        await bridge.http.aclose()
        await bridge.cache.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
