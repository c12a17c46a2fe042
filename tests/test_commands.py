import pytest

from ocpi_bridge.api.models import (
    CommandResponseType,
    CommandResultType,
    CommandType,
    ReserveNow,
    StartSession,
    StopSession,
    Token,
    UnlockConnector,
)
from ocpi_bridge.cache import TOKEN_ID_TO_AUTH_REF_NAMESPACE
from ocpi_bridge.models import TenantPartner
from ocpi_bridge.ocpp_local import (
    StartTransactionRequest,
    StationCommandResult,
    StationUnavailableError,
    StopTransactionRequest,
    UnlockConnectorRequest,
)
from ocpi_bridge.services.commands import CommandsService
from ocpi_bridge.services.executor import CommandExecutor, to_command_result
from ocpi_bridge.services.tokens import TokensService

from conftest import RESPONSE_URL, T0, DummyStations


@pytest.fixture
def stations():
    return DummyStations()


@pytest.fixture
def executor(stations, partners, cache):
    return CommandExecutor(stations, partners, cache)


@pytest.fixture
def service(store, executor):
    return CommandsService(store, TokensService(store), executor, timeout=30)


@pytest.fixture
def start_command(make_token):
    def _make(**overrides):
        fields = {
            "response_url": RESPONSE_URL,
            "token": Token(**make_token()),
            "location_id": "5",
            "evse_uid": "CS-01-1",
            "connector_id": "102",
            "authorization_reference": "ref-1",
        }
        fields.update(overrides)
        return StartSession(**fields)

    return _make


@pytest.fixture
def stranger(store):
    return store.add_partner(
        TenantPartner(id=11, tenant=store.tenants[1], country_code="FR", party_id="XYZ")
    )


def _result(response):
    return response.data.result


# StartSession ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_session_accepted_and_executed(service, executor, stations, partner, recorder, cache, start_command):
    response = await service.post_command(CommandType.START_SESSION, start_command(), partner)

    assert response.status_code == 1000
    assert _result(response) == CommandResponseType.ACCEPTED
    assert response.data.timeout == 30

    await executor.drain()

    assert stations.calls == [
        ("start", StartTransactionRequest(station_id="CS-01", id_tag="TAG1", connector_id=2))
    ]
    assert await cache.get("TAG1", namespace=TOKEN_ID_TO_AUTH_REF_NAMESPACE) == "ref-1"
    assert recorder.to(RESPONSE_URL) == [("POST", RESPONSE_URL, {"result": "ACCEPTED"})]


@pytest.mark.asyncio
async def test_start_session_long_uid_uses_normalized_id_tag(service, executor, stations, partner, start_command, make_token):
    uid = "DE-MSP-0123456789abcdefghijklmnop"
    command = start_command(token=Token(**make_token(uid=uid)), authorization_reference=None)

    await service.start_session(command, partner)
    await executor.drain()

    request = stations.calls[0][1]
    assert len(request.id_tag) == 20
    assert request.id_tag != uid


@pytest.mark.asyncio
async def test_start_session_rejects_foreign_token(service, stations, partner, recorder, start_command, make_token):
    command = start_command(token=Token(**make_token(country_code="FR", party_id="XYZ")))

    response = await service.start_session(command, partner)

    assert response.status_code == 2001
    assert _result(response) == CommandResponseType.REJECTED
    assert response.data.message.text == "Token information does not match credentials"
    assert stations.calls == []
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_start_session_requires_evse_uid(service, partner, start_command):
    response = await service.start_session(start_command(evse_uid=None), partner)
    assert _result(response) == CommandResponseType.REJECTED
    assert response.status_message == "EVSE UID required by this CPO"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"evse_uid": "CS-99-1"},
        {"location_id": "6"},
    ],
)
async def test_start_session_unknown_station(service, stations, partner, start_command, overrides):
    response = await service.start_session(start_command(**overrides), partner)
    assert _result(response) == CommandResponseType.REJECTED
    assert response.status_message == "Unknown charging station"
    assert stations.calls == []


@pytest.mark.asyncio
async def test_start_session_offline_station(service, store, stations, partner, start_command):
    store.stations["CS-01"].is_online = False

    response = await service.start_session(start_command(), partner)

    assert response.status_message == "Charging station is offline"
    assert stations.calls == []


@pytest.mark.asyncio
async def test_start_session_unknown_connector(service, partner, start_command):
    response = await service.start_session(start_command(connector_id="999"), partner)
    assert response.status_message == "Unknown connector"


@pytest.mark.asyncio
async def test_start_session_token_save_failure(store, executor, partner, start_command):
    class FailingTokens(TokensService):
        async def upsert_token(self, token, tenant_id, tenant_partner_id):
            raise RuntimeError("authorization table locked")

    service = CommandsService(store, FailingTokens(store), executor)

    response = await service.start_session(start_command(), partner)

    assert response.status_code == 2000
    assert _result(response) == CommandResponseType.REJECTED
    assert response.data.message.text == "Unable to save token"


@pytest.mark.asyncio
async def test_station_unavailable_reports_failed_result(store, partners, cache, partner, recorder, start_command):
    class OfflineStations(DummyStations):
        async def start_transaction(self, request):
            raise StationUnavailableError("CS-01 is not connected")

    executor = CommandExecutor(OfflineStations(), partners, cache)
    service = CommandsService(store, TokensService(store), executor)

    response = await service.start_session(start_command(), partner)
    await executor.drain()

    assert _result(response) == CommandResponseType.ACCEPTED
    (_, _, body), = recorder.to(RESPONSE_URL)
    assert body["result"] == "FAILED"
    assert body["message"]["text"] == "CS-01 is not connected"


# StopSession -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_stop_session_accepted(service, executor, stations, partner):
    command = StopSession(response_url=RESPONSE_URL, session_id="42")

    response = await service.post_command(CommandType.STOP_SESSION, command, partner)
    await executor.drain()

    assert _result(response) == CommandResponseType.ACCEPTED
    assert stations.calls == [
        ("stop", StopTransactionRequest(station_id="CS-01", transaction_id="1001"))
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", ["999", "not-a-number"])
async def test_stop_session_unknown(service, stations, partner, session_id):
    command = StopSession(response_url=RESPONSE_URL, session_id=session_id)

    response = await service.stop_session(command, partner)

    assert response.status_code == 2001
    assert _result(response) == CommandResponseType.UNKNOWN_SESSION
    assert stations.calls == []


@pytest.mark.asyncio
async def test_stop_session_already_stopped(service, store, stations, partner, recorder):
    store.transactions[42].is_active = False
    command = StopSession(response_url=RESPONSE_URL, session_id="42")

    response = await service.stop_session(command, partner)

    assert _result(response) == CommandResponseType.REJECTED
    assert response.data.message.text == "Session is already stopped"
    assert stations.calls == []
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_stop_session_of_another_partner(service, stations, stranger):
    command = StopSession(response_url=RESPONSE_URL, session_id="42")

    response = await service.stop_session(command, stranger)

    assert _result(response) == CommandResponseType.REJECTED
    assert stations.calls == []


# UnlockConnector / ReserveNow / CancelReservation ----------------------------


@pytest.mark.asyncio
async def test_unlock_connector_translates_connector(store, partners, cache, partner, recorder):
    stations = DummyStations(status="Unlocked")
    executor = CommandExecutor(stations, partners, cache)
    service = CommandsService(store, TokensService(store), executor)
    command = UnlockConnector(
        response_url=RESPONSE_URL, location_id="5", evse_uid="CS-01-1", connector_id="101"
    )

    response = await service.post_command(CommandType.UNLOCK_CONNECTOR, command, partner)
    await executor.drain()

    assert _result(response) == CommandResponseType.ACCEPTED
    assert stations.calls == [("unlock", UnlockConnectorRequest(station_id="CS-01", connector_id=1))]
    assert recorder.to(RESPONSE_URL)[0][2] == {"result": "ACCEPTED"}


@pytest.mark.asyncio
async def test_unlock_connector_requires_connector_id(service, partner):
    command = UnlockConnector(response_url=RESPONSE_URL, location_id="5", evse_uid="CS-01-1")
    response = await service.unlock_connector(command, partner)
    assert response.status_message == "Connector ID required by this CPO"


@pytest.mark.asyncio
async def test_reserve_now_on_multi_connector_evse_reserves_any(service, executor, stations, partner, make_token):
    command = ReserveNow(
        response_url=RESPONSE_URL,
        token=Token(**make_token()),
        expiry_date=T0,
        reservation_id="77",
        location_id="5",
        evse_uid="CS-01-1",
    )

    response = await service.post_command(CommandType.RESERVE_NOW, command, partner)
    await executor.drain()

    assert _result(response) == CommandResponseType.ACCEPTED
    kind, request = stations.calls[0]
    assert kind == "reserve"
    assert request.connector_id == 0
    assert request.reservation_id == 77
    assert request.id_tag == "TAG1"


@pytest.mark.asyncio
async def test_reserve_now_with_non_numeric_reservation_fails(service, executor, stations, partner, recorder, make_token):
    command = ReserveNow(
        response_url=RESPONSE_URL,
        token=Token(**make_token()),
        expiry_date=T0,
        reservation_id="R-77",
        location_id="5",
        evse_uid="CS-01-1",
    )

    await service.reserve_now(command, partner)
    await executor.drain()

    assert stations.calls == []
    assert recorder.to(RESPONSE_URL)[0][2]["result"] == "FAILED"


@pytest.mark.asyncio
async def test_cancel_reservation_not_supported(service, stations, partner):
    response = await service.post_command(CommandType.CANCEL_RESERVATION, None, partner)
    assert response.status_code == 1000
    assert _result(response) == CommandResponseType.NOT_SUPPORTED
    assert stations.calls == []


@pytest.mark.asyncio
async def test_unknown_command_type(service, partner):
    response = await service.post_command("SELF_DESTRUCT", None, partner)
    assert response.status_code == 2000
    assert _result(response) == CommandResponseType.NOT_SUPPORTED


@pytest.mark.parametrize(
    "status, expected",
    [
        ("Accepted", CommandResultType.ACCEPTED),
        ("Unlocked", CommandResultType.ACCEPTED),
        ("Rejected", CommandResultType.REJECTED),
        ("UnlockFailed", CommandResultType.FAILED),
        ("Occupied", CommandResultType.EVSE_OCCUPIED),
        ("Faulted", CommandResultType.EVSE_INOPERATIVE),
        ("NotSupported", CommandResultType.NOT_SUPPORTED),
        ("Whatever", CommandResultType.FAILED),
    ],
)
def test_station_status_maps_to_command_result(status, expected):
    assert to_command_result(StationCommandResult(status)).result == expected
