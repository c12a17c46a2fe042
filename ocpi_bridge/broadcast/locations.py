"""Location, EVSE and connector pushes to partner receiver endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..models import ChargingStation, Connector, Evse, Location, Tenant
from ..store import DataStore
from ..timeutil import to_iso, utcnow
from . import mappers
from .pusher import PartnerClient

logger = logging.getLogger(__name__)

LOCATIONS_MODULE = "locations"


def _location_path(tenant: Tenant, location_id: Any, *parts: Any) -> str:
    path = f"/{tenant.country_code}/{tenant.party_id}/{location_id}"
    for part in parts:
        path += f"/{part}"
    return path


class LocationsBroadcaster:
    def __init__(self, partners: PartnerClient, store: DataStore) -> None:
        self.partners = partners
        self.store = store

    async def put_location(self, tenant: Tenant, location: Location) -> int:
        stations = await self.store.list_charging_stations(location.id)
        body = mappers.location_to_ocpi(tenant, location, stations)
        logger.info(f"→ PUT location {location.id} ({len(body['evses'])} evses)")
        return await self.partners.broadcast(
            tenant, LOCATIONS_MODULE, "PUT", _location_path(tenant, location.id), body
        )

    async def patch_location(self, tenant: Tenant, location_id: int, payload: Dict[str, Any]) -> int:
        body = mappers.location_patch(payload)
        logger.info(f"→ PATCH location {location_id}: {sorted(body)}")
        return await self.partners.broadcast(
            tenant, LOCATIONS_MODULE, "PATCH", _location_path(tenant, location_id), body
        )

    async def put_evse(self, tenant: Tenant, station: ChargingStation, evse: Evse) -> int:
        body = mappers.evse_to_ocpi(station, evse)
        logger.info(f"→ PUT evse {body['uid']} at location {station.location_id}")
        return await self.partners.broadcast(
            tenant,
            LOCATIONS_MODULE,
            "PUT",
            _location_path(tenant, station.location_id, body["uid"]),
            body,
        )

    async def patch_evse(
        self, tenant: Tenant, station: ChargingStation, evse_id: int, payload: Dict[str, Any]
    ) -> int:
        evse_uid = mappers.uid_format(station.id, evse_id)
        body = {
            "status": mappers.evse_status(station, evse_id),
            "last_updated": to_iso(payload.get("updatedAt") or utcnow()),
        }
        logger.info(f"→ PATCH evse {evse_uid} at location {station.location_id}")
        return await self.partners.broadcast(
            tenant,
            LOCATIONS_MODULE,
            "PATCH",
            _location_path(tenant, station.location_id, evse_uid),
            body,
        )

    async def patch_evse_status(
        self, tenant: Tenant, station: ChargingStation, evse_id: int, status: str, updated_at: Any = None
    ) -> int:
        evse_uid = mappers.uid_format(station.id, evse_id)
        body = {"status": status, "last_updated": to_iso(updated_at or utcnow())}
        logger.info(f"→ PATCH evse {evse_uid} status={status}")
        return await self.partners.broadcast(
            tenant,
            LOCATIONS_MODULE,
            "PATCH",
            _location_path(tenant, station.location_id, evse_uid),
            body,
        )

    async def put_connector(self, tenant: Tenant, station: ChargingStation, connector: Connector) -> int:
        evse_uid = mappers.uid_format(station.id, connector.evse_id)
        body = mappers.connector_to_ocpi(connector)
        logger.info(f"→ PUT connector {body['id']} on evse {evse_uid}")
        return await self.partners.broadcast(
            tenant,
            LOCATIONS_MODULE,
            "PUT",
            _location_path(tenant, station.location_id, evse_uid, body["id"]),
            body,
        )

    async def patch_connector(
        self, tenant: Tenant, station: ChargingStation, connector: Connector, payload: Dict[str, Any]
    ) -> int:
        evse_uid = mappers.uid_format(station.id, connector.evse_id)
        body = mappers.connector_patch(payload)
        logger.info(f"→ PATCH connector {connector.connector_id} on evse {evse_uid}: {sorted(body)}")
        return await self.partners.broadcast(
            tenant,
            LOCATIONS_MODULE,
            "PATCH",
            _location_path(tenant, station.location_id, evse_uid, connector.connector_id),
            body,
        )
