import json
from datetime import datetime, timezone

import httpx
import pytest

from ocpi_bridge.broadcast import CdrBroadcaster, LocationsBroadcaster, PartnerClient, SessionBroadcaster
from ocpi_bridge.cache import MemoryCache
from ocpi_bridge.models import (
    AdditionalInfo,
    Authorization,
    ChargingStation,
    Connector,
    Location,
    PartnerEndpoint,
    Tariff,
    Tenant,
    TenantPartner,
    Transaction,
)
from ocpi_bridge.ocpp_local import StationCommandResult, StationCommandService
from ocpi_bridge.services.billing import CostCalculator
from ocpi_bridge.store import InMemoryStore

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

SESSIONS_URL = "https://msp.example/ocpi/2.2.1/sessions"
CDRS_URL = "https://msp.example/ocpi/2.2.1/cdrs"
LOCATIONS_URL = "https://msp.example/ocpi/2.2.1/locations"
RESPONSE_URL = "https://msp.example/ocpi/2.2.1/commands/START_SESSION/abc"


class PartnerRecorder:
    """Fake partner receiver that records every request it gets."""

    def __init__(self, status_code: int = 1000, http_status: int = 200, data=None):
        self.status_code = status_code
        self.http_status = http_status
        self.data = data
        self.requests: list[tuple[str, str, dict | None]] = []
        self.headers: list[httpx.Headers] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, str(request.url), body))
        self.headers.append(request.headers)
        payload = {"status_code": self.status_code, "timestamp": "2025-01-01T12:00:00Z"}
        if self.data is not None:
            payload["data"] = self.data
        return httpx.Response(self.http_status, json=payload)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def to(self, url_prefix: str) -> list[tuple[str, str, dict | None]]:
        return [r for r in self.requests if r[1].startswith(url_prefix)]


class DummyStations(StationCommandService):
    def __init__(self, status: str = "Accepted"):
        self.status = status
        self.calls: list[tuple[str, object]] = []

    async def start_transaction(self, request):
        self.calls.append(("start", request))
        return StationCommandResult(self.status)

    async def stop_transaction(self, request):
        self.calls.append(("stop", request))
        return StationCommandResult(self.status)

    async def unlock_connector(self, request):
        self.calls.append(("unlock", request))
        return StationCommandResult(self.status)

    async def reserve_now(self, request):
        self.calls.append(("reserve", request))
        return StationCommandResult(self.status)


@pytest.fixture
def store():
    store = InMemoryStore()
    tenant = store.add_tenant(Tenant(id=1, country_code="NL", party_id="CPO"))
    store.add_partner(
        TenantPartner(
            id=10,
            tenant=tenant,
            country_code="DE",
            party_id="MSP",
            server_token="server-token",
            client_token="client-token",
            endpoints=[
                PartnerEndpoint("sessions", "RECEIVER", SESSIONS_URL),
                PartnerEndpoint("cdrs", "RECEIVER", CDRS_URL),
                PartnerEndpoint("locations", "RECEIVER", LOCATIONS_URL),
            ],
        )
    )
    store.add_location(
        Location(id=5, tenant_id=1, name="Depot", city="Amsterdam", country="NLD", latitude=52.37, longitude=4.89)
    )
    store.add_station(ChargingStation(id="CS-01", location_id=5, is_online=True))
    store.add_evse("CS-01", 1)
    store.add_connector(Connector(id=101, station_id="CS-01", evse_id=1, connector_id=1, status="Available"))
    store.add_connector(Connector(id=102, station_id="CS-01", evse_id=1, connector_id=2, status="Available"))
    store.add_tariff(Tariff(id=7, currency="EUR", price_per_kwh=0.5))
    store.add_authorization(
        Authorization(
            id=1,
            id_token="TAG1",
            id_token_type="ISO14443",
            tenant_id=1,
            tenant_partner_id=10,
            status="Accepted",
            additional_info=[
                AdditionalInfo("NL-MSP-C12345678-X", "eMAID"),
                AdditionalInfo("NL-MSP-C12345678-X", "visual_number"),
                AdditionalInfo("MSP", "issuer"),
            ],
        )
    )
    store.add_transaction(
        Transaction(
            id=42,
            transaction_id="1001",
            station_id="CS-01",
            evse_id=1,
            connector_id=1,
            location_id=5,
            tenant_id=1,
            authorization_id=1,
            tariff_id=7,
            start_time=T0,
        )
    )
    return store


@pytest.fixture
def tenant(store):
    return store.tenants[1]


@pytest.fixture
def partner(store):
    return store.partners[10]


@pytest.fixture
def recorder():
    return PartnerRecorder()


@pytest.fixture
def partners(recorder, store):
    return PartnerClient(recorder.client(), store)


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def session_broadcaster(partners, store):
    return SessionBroadcaster(partners, store)


@pytest.fixture
def cdr_broadcaster(partners, store):
    return CdrBroadcaster(partners, store, CostCalculator(store))


@pytest.fixture
def locations_broadcaster(partners, store):
    return LocationsBroadcaster(partners, store)


@pytest.fixture
def make_token():
    def _make(**overrides):
        token = {
            "country_code": "DE",
            "party_id": "MSP",
            "uid": "TAG1",
            "type": "RFID",
            "contract_id": "NL-MSP-C12345678-X",
            "issuer": "MSP",
            "valid": True,
            "whitelist": "ALLOWED",
            "last_updated": "2025-01-01T11:00:00Z",
        }
        token.update(overrides)
        return token

    return _make
