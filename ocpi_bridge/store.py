"""Data-store interface for the core platform plus an in-memory backend.

The bridge only ever performs point lookups and narrow range scans against
the core store.  :class:`InMemoryStore` is a placeholder used for local runs
and tests until a real client is plugged in.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from datetime import datetime
from itertools import count
from typing import Any, Dict, List, Optional, Tuple

from .models import (
    Authorization,
    ChargingStation,
    Connector,
    Evse,
    Location,
    LocationBilling,
    MeterValue,
    StatusEvent,
    Tariff,
    Tenant,
    TenantPartner,
    Transaction,
)
from .timeutil import utcnow


class DataStore(ABC):
    """Read/write operations the bridge needs from the core data store."""

    @abstractmethod
    async def get_tenant_partner(self, partner_id: int) -> Optional[TenantPartner]:
        ...

    @abstractmethod
    async def get_tenant_partner_by_server_token(self, token: str) -> Optional[TenantPartner]:
        ...

    @abstractmethod
    async def list_tenant_partners(self, tenant_id: int) -> List[TenantPartner]:
        ...

    @abstractmethod
    async def get_tenant(self, tenant_id: int) -> Optional[Tenant]:
        ...

    @abstractmethod
    async def get_charging_station(self, station_id: str) -> Optional[ChargingStation]:
        ...

    @abstractmethod
    async def get_location(self, location_id: int) -> Optional[Location]:
        ...

    @abstractmethod
    async def list_charging_stations(self, location_id: int) -> List[ChargingStation]:
        ...

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        """Return the transaction with meter values and authorization joined."""

    @abstractmethod
    async def update_transaction_custom_data(
        self, transaction_id: int, custom_data: Dict[str, Any]
    ) -> None:
        ...

    @abstractmethod
    async def get_authorization(self, authorization_id: int) -> Optional[Authorization]:
        ...

    @abstractmethod
    async def get_authorization_by_token(
        self, id_token: str, id_token_type: str, tenant_partner_id: int
    ) -> Optional[Authorization]:
        ...

    @abstractmethod
    async def read_authorizations(
        self, id_token: str, id_token_type: str, country_code: str, party_id: str
    ) -> List[Authorization]:
        ...

    @abstractmethod
    async def get_group_authorizations(
        self, group_id: str, tenant_partner_id: int
    ) -> List[Authorization]:
        ...

    @abstractmethod
    async def create_authorization(self, **fields: Any) -> Authorization:
        ...

    @abstractmethod
    async def update_authorization(
        self,
        id_token: str,
        id_token_type: str,
        tenant_partner_id: int,
        changes: Dict[str, Any],
    ) -> Optional[Authorization]:
        ...

    @abstractmethod
    async def get_tariff(self, tariff_id: int) -> Optional[Tariff]:
        ...

    @abstractmethod
    async def get_status_events(
        self,
        station_id: str,
        connector_id: int,
        tenant_id: int,
        start: datetime,
        end: datetime,
    ) -> List[StatusEvent]:
        """Status events in ``[start, end]`` ordered by timestamp ascending."""

    @abstractmethod
    async def get_location_billing(self, location_id: int) -> Optional[LocationBilling]:
        ...


class InMemoryStore(DataStore):
    """Simple in-memory store for partners, stations, transactions and tokens.

    Reads hand out copies so callers cannot mutate stored rows by accident.
    """

    def __init__(self) -> None:
        self.tenants: Dict[int, Tenant] = {}
        self.partners: Dict[int, TenantPartner] = {}
        self.stations: Dict[str, ChargingStation] = {}
        self.locations: Dict[int, Location] = {}
        self.transactions: Dict[int, Transaction] = {}
        self.meter_values: Dict[int, List[MeterValue]] = {}
        self.authorizations: Dict[int, Authorization] = {}
        self.tariffs: Dict[int, Tariff] = {}
        self.billing: Dict[int, LocationBilling] = {}
        self.status_events: Dict[Tuple[str, int, int], List[StatusEvent]] = {}
        self._authorization_seq = count(1)
        self._meter_value_seq = count(1)

    # Seeding helpers -------------------------------------------------------

    def add_tenant(self, tenant: Tenant) -> Tenant:
        self.tenants[tenant.id] = tenant
        return tenant

    def add_partner(self, partner: TenantPartner) -> TenantPartner:
        self.partners[partner.id] = partner
        return partner

    def add_location(self, location: Location) -> Location:
        self.locations[location.id] = location
        return location

    def add_station(self, station: ChargingStation) -> ChargingStation:
        self.stations[station.id] = station
        return station

    def add_evse(self, station_id: str, evse_id: int) -> Evse:
        evse = Evse(id=evse_id, station_id=station_id)
        self.stations[station_id].evses.append(evse)
        return evse

    def add_connector(self, connector: Connector) -> Connector:
        self.stations[connector.station_id].connectors.append(connector)
        return connector

    def add_transaction(self, transaction: Transaction) -> Transaction:
        self.transactions[transaction.id] = transaction
        return transaction

    def add_meter_value(
        self,
        transaction_id: int,
        timestamp: datetime,
        tariff_id: Optional[int] = None,
        sampled_value: Optional[List[Dict[str, Any]]] = None,
    ) -> MeterValue:
        meter_value = MeterValue(
            id=next(self._meter_value_seq),
            transaction_id=transaction_id,
            timestamp=timestamp,
            tariff_id=tariff_id,
            sampled_value=sampled_value or [],
        )
        self.meter_values.setdefault(transaction_id, []).append(meter_value)
        return meter_value

    def add_authorization(self, authorization: Authorization) -> Authorization:
        self.authorizations[authorization.id] = authorization
        return authorization

    def add_tariff(self, tariff: Tariff) -> Tariff:
        self.tariffs[tariff.id] = tariff
        return tariff

    def add_billing(self, billing: LocationBilling) -> LocationBilling:
        self.billing[billing.location_id] = billing
        return billing

    def add_status_event(
        self, station_id: str, connector_id: int, tenant_id: int, event: StatusEvent
    ) -> None:
        self.status_events.setdefault((station_id, connector_id, tenant_id), []).append(event)

    # DataStore -------------------------------------------------------------

    async def get_tenant_partner(self, partner_id: int) -> Optional[TenantPartner]:
        return self.partners.get(partner_id)

    async def get_tenant_partner_by_server_token(self, token: str) -> Optional[TenantPartner]:
        for partner in self.partners.values():
            if partner.server_token and partner.server_token == token:
                return partner
        return None

    async def list_tenant_partners(self, tenant_id: int) -> List[TenantPartner]:
        return [p for p in self.partners.values() if p.tenant.id == tenant_id]

    async def get_tenant(self, tenant_id: int) -> Optional[Tenant]:
        return self.tenants.get(tenant_id)

    async def get_charging_station(self, station_id: str) -> Optional[ChargingStation]:
        station = self.stations.get(station_id)
        return copy.deepcopy(station) if station else None

    async def get_location(self, location_id: int) -> Optional[Location]:
        location = self.locations.get(location_id)
        return copy.deepcopy(location) if location else None

    async def list_charging_stations(self, location_id: int) -> List[ChargingStation]:
        return [copy.deepcopy(s) for s in self.stations.values() if s.location_id == location_id]

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            return None
        result = copy.deepcopy(transaction)
        result.meter_values = copy.deepcopy(self.meter_values.get(transaction_id, []))
        if result.authorization_id is not None:
            result.authorization = await self.get_authorization(result.authorization_id)
        return result

    async def update_transaction_custom_data(
        self, transaction_id: int, custom_data: Dict[str, Any]
    ) -> None:
        transaction = self.transactions[transaction_id]
        transaction.custom_data = dict(custom_data)
        transaction.updated_at = utcnow()

    async def get_authorization(self, authorization_id: int) -> Optional[Authorization]:
        authorization = self.authorizations.get(authorization_id)
        return self._joined(authorization) if authorization else None

    async def get_authorization_by_token(
        self, id_token: str, id_token_type: str, tenant_partner_id: int
    ) -> Optional[Authorization]:
        for authorization in self.authorizations.values():
            if (
                authorization.id_token == id_token
                and authorization.id_token_type == id_token_type
                and authorization.tenant_partner_id == tenant_partner_id
            ):
                return self._joined(authorization)
        return None

    async def read_authorizations(
        self, id_token: str, id_token_type: str, country_code: str, party_id: str
    ) -> List[Authorization]:
        matches = []
        for authorization in self.authorizations.values():
            partner = self.partners.get(authorization.tenant_partner_id)
            if (
                partner is not None
                and authorization.id_token == id_token
                and authorization.id_token_type == id_token_type
                and partner.country_code == country_code
                and partner.party_id == party_id
            ):
                matches.append(self._joined(authorization))
        return matches

    async def get_group_authorizations(
        self, group_id: str, tenant_partner_id: int
    ) -> List[Authorization]:
        return [
            self._joined(a)
            for a in self.authorizations.values()
            if a.id_token == group_id and a.tenant_partner_id == tenant_partner_id
        ]

    async def create_authorization(self, **fields: Any) -> Authorization:
        authorization_id = next(self._authorization_seq)
        while authorization_id in self.authorizations:
            authorization_id = next(self._authorization_seq)
        authorization = Authorization(id=authorization_id, **fields)
        self.authorizations[authorization.id] = authorization
        return self._joined(authorization)

    async def update_authorization(
        self,
        id_token: str,
        id_token_type: str,
        tenant_partner_id: int,
        changes: Dict[str, Any],
    ) -> Optional[Authorization]:
        for authorization in self.authorizations.values():
            if (
                authorization.id_token == id_token
                and authorization.id_token_type == id_token_type
                and authorization.tenant_partner_id == tenant_partner_id
            ):
                for key, value in changes.items():
                    setattr(authorization, key, copy.deepcopy(value))
                return self._joined(authorization)
        return None

    async def get_tariff(self, tariff_id: int) -> Optional[Tariff]:
        return self.tariffs.get(tariff_id)

    async def get_status_events(
        self,
        station_id: str,
        connector_id: int,
        tenant_id: int,
        start: datetime,
        end: datetime,
    ) -> List[StatusEvent]:
        events = self.status_events.get((station_id, connector_id, tenant_id), [])
        return sorted(
            (e for e in events if start <= e.timestamp <= end),
            key=lambda e: e.timestamp,
        )

    async def get_location_billing(self, location_id: int) -> Optional[LocationBilling]:
        return self.billing.get(location_id)

    def _joined(self, authorization: Authorization) -> Authorization:
        result = copy.deepcopy(authorization)
        result.tenant_partner = self.partners.get(authorization.tenant_partner_id)
        if authorization.group_authorization_id is not None:
            group = self.authorizations.get(authorization.group_authorization_id)
            result.group_id_token = group.id_token if group else None
        return result
