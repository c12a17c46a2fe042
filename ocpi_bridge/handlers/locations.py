"""Location, EVSE, connector and charging station events → location pushes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..broadcast import mappers
from ..broadcast.locations import LocationsBroadcaster
from ..events.dispatcher import ChangeEvent
from ..models import ChargingStation, Connector, Evse
from ..store import DataStore
from ..timeutil import parse_timestamp, utcnow
from .common import resolve_tenant

logger = logging.getLogger(__name__)

# identity and audit fields carried by every connector update
CONNECTOR_METADATA_FIELDS = frozenset(
    {
        "id",
        "evseId",
        "stationId",
        "tenant",
        "tenantId",
        "chargingStation",
        "updatedAt",
        "createdAt",
        "timestamp",
    }
)


def is_status_only_update(payload: Dict[str, Any]) -> bool:
    return set(payload) - CONNECTOR_METADATA_FIELDS == {"status"}


def _find_connector(station: ChargingStation, connector_id: Any) -> Optional[Connector]:
    for connector in station.connectors:
        if str(connector.id) == str(connector_id):
            return connector
    return None


class LocationEventHandlers:
    def __init__(self, store: DataStore, locations: LocationsBroadcaster) -> None:
        self.store = store
        self.locations = locations

    async def _station(self, station_id: Any) -> Optional[ChargingStation]:
        station = await self.store.get_charging_station(str(station_id)) if station_id else None
        if station is None:
            logger.error(f"Charging Station not found for ID {station_id}, cannot broadcast.")
            return None
        if station.location_id is None:
            logger.error(f"Charging Station {station_id} has no location, cannot broadcast.")
            return None
        return station

    async def on_location_insert(self, event: ChangeEvent) -> None:
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        location_id = event.payload.get("id")
        location = await self.store.get_location(int(location_id)) if location_id is not None else None
        if location is None:
            logger.error(f"Location {location_id} not found, cannot broadcast.")
            return
        await self.locations.put_location(tenant, location)

    async def on_location_update(self, event: ChangeEvent) -> None:
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        location_id = event.payload.get("id")
        if location_id is None:
            logger.error(f"Location update {event.event_id} has no id, cannot broadcast.")
            return
        await self.locations.patch_location(tenant, int(location_id), event.payload)

    async def on_evse_insert(self, event: ChangeEvent) -> None:
        payload = event.payload
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        station = await self._station(payload.get("stationId"))
        if station is None:
            return
        evse_id = int(payload["id"])
        evse = next((e for e in station.evses if e.id == evse_id), None)
        if evse is None:
            evse = Evse(
                id=evse_id,
                station_id=station.id,
                updated_at=parse_timestamp(payload.get("updatedAt")) or utcnow(),
            )
        await self.locations.put_evse(tenant, station, evse)

    async def on_evse_update(self, event: ChangeEvent) -> None:
        payload = event.payload
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        station = await self._station(payload.get("stationId"))
        if station is None:
            return
        await self.locations.patch_evse(tenant, station, int(payload["id"]), payload)

    async def on_connector_insert(self, event: ChangeEvent) -> None:
        payload = event.payload
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        station = await self._station(payload.get("stationId"))
        if station is None:
            return
        connector = _find_connector(station, payload.get("id"))
        if connector is None:
            logger.error(f"Connector {payload.get('id')} not found on {station.id}, cannot broadcast.")
            return
        await self.locations.put_connector(tenant, station, connector)

    async def on_connector_update(self, event: ChangeEvent) -> None:
        payload = event.payload
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        station = await self._station(payload.get("stationId"))
        if station is None:
            return
        connector = _find_connector(station, payload.get("id"))
        if connector is None:
            logger.error(f"Connector {payload.get('id')} not found on {station.id}, cannot broadcast.")
            return

        if not is_status_only_update(payload):
            await self.locations.patch_connector(tenant, station, connector, payload)
            return

        evse_id = payload.get("evseId", connector.evse_id)
        siblings = [c for c in station.connectors if c.evse_id == evse_id]
        if not siblings:
            logger.error(f"No connectors found for EVSE {evse_id} on {station.id}, cannot aggregate status.")
            return
        status = mappers.evse_status_from_connectors(siblings)
        logger.debug(f"Aggregated EVSE status {status} for EVSE {evse_id} on {station.id}")
        await self.locations.patch_evse_status(tenant, station, evse_id, status, payload.get("updatedAt"))

    async def on_charging_station_update(self, event: ChangeEvent) -> None:
        payload = event.payload
        if "isOnline" not in payload:
            logger.debug(f"Charging station update {payload.get('id')} does not change availability")
            return
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        station = await self._station(payload.get("id"))
        if station is None:
            return
        station.is_online = bool(payload["isOnline"])
        for evse in station.evses:
            await self.locations.patch_evse_status(
                tenant,
                station,
                evse.id,
                mappers.evse_status(station, evse.id),
                payload.get("updatedAt"),
            )
