"""Core-platform records as seen by the bridge.

These mirror the rows the core data store returns.  The bridge reads them,
occasionally patches authorization and transaction metadata, and never owns
their lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .timeutil import utcnow


@dataclass
class Tenant:
    id: int
    country_code: str
    party_id: str


@dataclass
class PartnerEndpoint:
    module: str
    role: str
    url: str


@dataclass
class TenantPartner:
    """A roaming partner registered against one tenant (the CPO)."""

    id: int
    tenant: Tenant
    country_code: str
    party_id: str
    # token the partner presents to us
    server_token: str = ""
    # token we present to the partner
    client_token: str = ""
    endpoints: List[PartnerEndpoint] = field(default_factory=list)

    @property
    def tenant_id(self) -> int:
        return self.tenant.id

    def endpoint_for(self, module: str, role: str = "RECEIVER") -> Optional[str]:
        for endpoint in self.endpoints:
            if endpoint.module == module and endpoint.role == role:
                return endpoint.url
        return None


@dataclass
class AdditionalInfo:
    additional_id_token: str
    type: str


@dataclass
class AuthorizationCustomData:
    # set only when the external uid was shortened by normalization
    original_token_uid: Optional[str] = None


@dataclass
class Authorization:
    id: int
    id_token: str
    id_token_type: Optional[str]
    tenant_id: int
    tenant_partner_id: int
    status: str = "Invalid"
    additional_info: Optional[List[AdditionalInfo]] = None
    real_time_auth: Optional[str] = None
    language1: Optional[str] = None
    group_authorization_id: Optional[int] = None
    custom_data: Optional[AuthorizationCustomData] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    # joined relations, filled in by the store on reads
    tenant_partner: Optional[TenantPartner] = None
    group_id_token: Optional[str] = None


@dataclass
class Connector:
    id: int
    station_id: str
    evse_id: int
    # identifier the station itself uses (OCPP connectorId)
    connector_id: int
    status: str = "Unknown"
    type: str = "IEC_62196_T2"
    format: str = "SOCKET"
    power_type: str = "AC_3_PHASE"
    max_voltage: int = 230
    max_amperage: int = 32
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Evse:
    id: int
    station_id: str
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ChargingStation:
    id: str
    location_id: Optional[int]
    is_online: bool = False
    evses: List[Evse] = field(default_factory=list)
    connectors: List[Connector] = field(default_factory=list)


@dataclass
class Location:
    id: int
    tenant_id: int
    name: str
    address: str = ""
    city: str = ""
    postal_code: Optional[str] = None
    country: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    time_zone: Optional[str] = None
    publish: bool = True
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class MeterValue:
    id: int
    transaction_id: int
    timestamp: datetime
    tariff_id: Optional[int] = None
    sampled_value: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Transaction:
    id: int
    transaction_id: str
    station_id: str
    evse_id: Optional[int]
    connector_id: Optional[int]
    location_id: Optional[int]
    tenant_id: int
    authorization_id: Optional[int] = None
    tariff_id: Optional[int] = None
    is_active: bool = True
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_kwh: float = 0.0
    meter_values: List[MeterValue] = field(default_factory=list)
    custom_data: Dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)
    authorization: Optional[Authorization] = None


@dataclass
class Tariff:
    id: int
    currency: str = "EUR"
    price_per_kwh: float = 0.0
    price_per_min: float = 0.0
    price_per_session: float = 0.0


@dataclass(frozen=True)
class StatusEvent:
    timestamp: datetime
    connector_status: str


@dataclass
class LocationBilling:
    """Per-location row of the external billing table."""

    location_id: int
    charge_method: str
    # currency units per idle minute
    idle_rate: float = 0.0
