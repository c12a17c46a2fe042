import base64

import httpx
import pytest

from ocpi_bridge.api import decode_token
from ocpi_bridge.central import build_bridge
from ocpi_bridge.config import Settings

from conftest import RESPONSE_URL

RAW_AUTH = {"Authorization": "Token server-token"}
ENCODED_AUTH = {"Authorization": "Token " + base64.b64encode(b"server-token").decode()}
TOKENS = "/ocpi/2.2.1/tokens"


@pytest.fixture
def bridge(store, recorder):
    return build_bridge(Settings(), store=store, http=recorder.client())


@pytest.fixture
def client(bridge):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=bridge.app), base_url="http://test")


def _start_body(make_token, **overrides):
    body = {
        "response_url": RESPONSE_URL,
        "token": make_token(),
        "location_id": "5",
        "evse_uid": "CS-01-1",
        "connector_id": "101",
    }
    body.update(overrides)
    return body


def test_decode_token_accepts_encoded_and_raw():
    assert decode_token(base64.b64encode(b"server-token").decode()) == "server-token"
    assert decode_token("server-token") == "server-token"


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer server-token"}, {"Authorization": "Token wrong-token"}],
)
async def test_commands_require_known_credentials(client, make_token, headers):
    resp = await client.post(
        "/ocpi/2.2.1/commands/START_SESSION", json=_start_body(make_token), headers=headers
    )
    assert resp.status_code == 401
    assert resp.json()["status_code"] == 2000


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [RAW_AUTH, ENCODED_AUTH])
async def test_start_session_is_accepted_then_reports_result(client, bridge, recorder, make_token, headers):
    resp = await client.post(
        "/ocpi/2.2.1/commands/START_SESSION", json=_start_body(make_token), headers=headers
    )

    assert resp.status_code == 200
    envelope = resp.json()
    assert envelope["status_code"] == 1000
    assert envelope["data"]["result"] == "ACCEPTED"
    assert envelope["data"]["timeout"] == 30

    await bridge.executor.drain()

    # no station is connected over OCPP in this test
    (method, url, body), = recorder.to(RESPONSE_URL)
    assert (method, url) == ("POST", RESPONSE_URL)
    assert body["result"] == "FAILED"


@pytest.mark.asyncio
async def test_invalid_command_payload(client, make_token):
    body = _start_body(make_token)
    del body["token"]

    resp = await client.post("/ocpi/2.2.1/commands/START_SESSION", json=body, headers=RAW_AUTH)

    assert resp.status_code == 200
    assert resp.json()["status_code"] == 2001
    assert resp.json()["data"]["result"] == "REJECTED"


@pytest.mark.asyncio
async def test_unknown_command_type(client):
    resp = await client.post("/ocpi/2.2.1/commands/SELF_DESTRUCT", json={}, headers=RAW_AUTH)
    assert resp.json()["status_code"] == 2000
    assert resp.json()["data"]["result"] == "NOT_SUPPORTED"


@pytest.mark.asyncio
async def test_cancel_reservation_not_supported(client):
    resp = await client.post(
        "/ocpi/2.2.1/commands/CANCEL_RESERVATION",
        json={"response_url": RESPONSE_URL, "reservation_id": "1"},
        headers=RAW_AUTH,
    )
    assert resp.json()["status_code"] == 1000
    assert resp.json()["data"]["result"] == "NOT_SUPPORTED"


@pytest.mark.asyncio
async def test_stop_unknown_session(client):
    resp = await client.post(
        "/ocpi/2.2.1/commands/STOP_SESSION",
        json={"response_url": RESPONSE_URL, "session_id": "999"},
        headers=RAW_AUTH,
    )
    assert resp.json()["status_code"] == 2001
    assert resp.json()["data"]["result"] == "UNKNOWN_SESSION"


@pytest.mark.asyncio
async def test_put_then_get_token(client, make_token):
    put = await client.put(f"{TOKENS}/DE/MSP/NEW1?type=RFID", json=make_token(uid="NEW1"), headers=RAW_AUTH)
    get = await client.get(f"{TOKENS}/DE/MSP/NEW1?type=RFID", headers=RAW_AUTH)

    assert put.status_code == 200
    assert put.json()["data"]["uid"] == "NEW1"
    assert get.status_code == 200
    assert get.json()["data"]["contract_id"] == "NL-MSP-C12345678-X"
    assert get.json()["data"]["whitelist"] == "ALLOWED"


@pytest.mark.asyncio
async def test_put_token_with_mismatched_uid(client, make_token):
    resp = await client.put(f"{TOKENS}/DE/MSP/OTHER", json=make_token(uid="NEW1"), headers=RAW_AUTH)
    assert resp.status_code == 400
    assert resp.json()["status_code"] == 2001


@pytest.mark.asyncio
async def test_token_path_must_match_credentials(client):
    resp = await client.get(f"{TOKENS}/FR/XYZ/TAG1", headers=RAW_AUTH)
    assert resp.status_code == 400
    assert resp.json()["status_code"] == 2001


@pytest.mark.asyncio
async def test_get_unknown_token(client):
    resp = await client.get(f"{TOKENS}/DE/MSP/NOPE", headers=RAW_AUTH)
    assert resp.status_code == 404
    assert resp.json()["status_code"] == 2004


@pytest.mark.asyncio
async def test_patch_token(client):
    resp = await client.patch(
        f"{TOKENS}/DE/MSP/TAG1",
        json={"valid": False, "last_updated": "2025-01-02T00:00:00Z"},
        headers=RAW_AUTH,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["valid"] is False


@pytest.mark.asyncio
async def test_patch_token_without_last_updated(client):
    resp = await client.patch(f"{TOKENS}/DE/MSP/TAG1", json={"valid": False}, headers=RAW_AUTH)
    assert resp.status_code == 400
    assert resp.json()["status_code"] == 2001


@pytest.mark.asyncio
async def test_invalid_token_body(client, make_token):
    token = make_token(uid="NEW1")
    del token["contract_id"]
    resp = await client.put(f"{TOKENS}/DE/MSP/NEW1", json=token, headers=RAW_AUTH)
    assert resp.status_code == 400
    assert resp.json()["status_code"] == 2001
