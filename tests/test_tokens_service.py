import asyncio

import pytest

from ocpi_bridge.api.models import AllowedType, Token, TokenPatch, TokenType
from ocpi_bridge.broadcast import PartnerClient
from ocpi_bridge.exceptions import InvalidParamError, MissingParamError, UnknownTokenError
from ocpi_bridge.models import PartnerEndpoint
from ocpi_bridge.services.token_identity import normalize_token
from ocpi_bridge.services.tokens import TokensService

from conftest import PartnerRecorder

LONG_UID = "DE-MSP-abcdefghijklmnopqrstuvwxyz01"
TOKENS_URL = "https://msp.example/ocpi/2.2.1/tokens"


@pytest.mark.asyncio
async def test_upsert_creates_then_updates(store, make_token):
    service = TokensService(store)
    before = len(store.authorizations)

    created = await service.upsert_token(Token(**make_token(uid="NEW1")), 1, 10)
    updated = await service.upsert_token(Token(**make_token(uid="NEW1", valid=False)), 1, 10)

    assert len(store.authorizations) == before + 1
    assert created.valid is True
    assert updated.valid is False


@pytest.mark.asyncio
async def test_long_uid_round_trips(store, make_token):
    service = TokensService(store)
    saved = await service.upsert_token(Token(**make_token(uid=LONG_UID)), 1, 10)

    stored = [a for a in store.authorizations.values() if a.id_token == normalize_token(LONG_UID)]
    fetched = await service.get_token("DE", "MSP", LONG_UID, TokenType.RFID)

    assert saved.uid == LONG_UID
    assert len(stored) == 1
    assert stored[0].custom_data.original_token_uid == LONG_UID
    assert fetched.uid == LONG_UID


@pytest.mark.asyncio
async def test_get_unknown_token_returns_none(store):
    service = TokensService(store)
    assert await service.get_token("DE", "MSP", "NOPE") is None
    assert await service.get_token("FR", "XYZ", "TAG1") is None


@pytest.mark.asyncio
async def test_patch_requires_last_updated(store):
    service = TokensService(store)
    with pytest.raises(MissingParamError):
        await service.patch_token("TAG1", TokenType.RFID, TokenPatch(valid=False), 1, 10)


@pytest.mark.asyncio
async def test_patch_unknown_token(store):
    service = TokensService(store)
    with pytest.raises(UnknownTokenError):
        await service.patch_token(
            "NOPE", TokenType.RFID, TokenPatch(last_updated="2025-01-02T00:00:00Z"), 1, 10
        )


@pytest.mark.asyncio
async def test_patch_merges_additional_info_and_keeps_status(store):
    service = TokensService(store)
    patched = await service.patch_token(
        "TAG1",
        TokenType.RFID,
        TokenPatch(issuer="Other Issuer", last_updated="2025-01-02T00:00:00Z"),
        1,
        10,
    )

    info = {i.type: i.additional_id_token for i in store.authorizations[1].additional_info}
    assert info == {
        "eMAID": "NL-MSP-C12345678-X",
        "visual_number": "NL-MSP-C12345678-X",
        "issuer": "Other Issuer",
    }
    assert store.authorizations[1].status == "Accepted"
    assert patched.issuer == "Other Issuer"


@pytest.mark.asyncio
async def test_patch_invalidates_when_valid_false(store):
    service = TokensService(store)
    patched = await service.patch_token(
        "TAG1",
        TokenType.RFID,
        TokenPatch(valid=False, last_updated="2025-01-02T00:00:00Z"),
        1,
        10,
    )
    assert patched.valid is False


@pytest.mark.asyncio
async def test_group_authorization_placeholder_is_reused(store, make_token):
    service = TokensService(store)
    await service.upsert_token(Token(**make_token(uid="A1", group_id="FLEET-1")), 1, 10)
    await service.upsert_token(Token(**make_token(uid="A2", group_id="FLEET-1")), 1, 10)

    groups = [a for a in store.authorizations.values() if a.id_token == "FLEET-1"]
    members = [a for a in store.authorizations.values() if a.id_token in ("A1", "A2")]

    assert len(groups) == 1
    assert groups[0].status == "Invalid"
    assert groups[0].id_token_type == "Central"
    assert {m.group_authorization_id for m in members} == {groups[0].id}

    token = await service.get_token("DE", "MSP", "A1")
    assert token.group_id == "FLEET-1"


@pytest.mark.asyncio
async def test_concurrent_group_creation_keeps_both_and_warns(store, caplog):
    class InterleavingStore(type(store)):
        async def get_group_authorizations(self, group_id, tenant_partner_id):
            await asyncio.sleep(0)
            return await super().get_group_authorizations(group_id, tenant_partner_id)

    racy = InterleavingStore()
    racy.__dict__.update(store.__dict__)
    service = TokensService(racy)

    first, second = await asyncio.gather(
        service.resolve_group_authorization("FLEET-9", 1, 10),
        service.resolve_group_authorization("FLEET-9", 1, 10),
    )

    groups = [a.id for a in racy.authorizations.values() if a.id_token == "FLEET-9"]
    assert first != second
    assert sorted(groups) == sorted([first, second])
    assert "Duplicate group authorizations for group FLEET-9" in caplog.text

    assert await service.resolve_group_authorization("FLEET-9", 1, 10) in groups


@pytest.fixture
def authorizer(store):
    def _make(**recorder_args):
        store.partners[10].endpoints.append(PartnerEndpoint("tokens", "SENDER", TOKENS_URL))
        recorder = PartnerRecorder(**recorder_args)
        return TokensService(store, PartnerClient(recorder.client(), store)), recorder

    return _make


@pytest.mark.asyncio
async def test_real_time_authorization_sends_station_evses(authorizer):
    service, recorder = authorizer(
        data={"allowed": "ALLOWED", "info": {"language": "en", "text": "Welcome"}}
    )

    result = await service.real_time_authorization(10, "TAG1", "ISO14443", 5, "CS-01")

    assert recorder.requests == [
        (
            "POST",
            f"{TOKENS_URL}/TAG1/authorize?type=RFID",
            {"location_id": "5", "evse_uids": ["CS-01-1"]},
        )
    ]
    assert result.allowed == AllowedType.ALLOWED
    assert result.reason == "Welcome"
    assert result.timestamp == "2025-01-01T12:00:00Z"


@pytest.mark.asyncio
async def test_real_time_authorization_without_location(authorizer):
    service, recorder = authorizer(data={"allowed": "BLOCKED"})

    result = await service.real_time_authorization(10, "APP-7", "Central")

    (method, url, body), = recorder.requests
    assert url == f"{TOKENS_URL}/APP-7/authorize?type=APP_USER"
    assert body is None
    assert result.allowed == AllowedType.BLOCKED
    assert result.reason is None


@pytest.mark.asyncio
async def test_real_time_authorization_rejects_station_at_other_location(authorizer):
    service, recorder = authorizer(data={"allowed": "ALLOWED"})

    with pytest.raises(InvalidParamError, match="Unknown charging station CS-01 at location 6"):
        await service.real_time_authorization(10, "TAG1", "ISO14443", 6, "CS-01")
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_real_time_authorization_unknown_partner(authorizer):
    service, _ = authorizer()
    with pytest.raises(InvalidParamError, match="Unknown tenant partner 99"):
        await service.real_time_authorization(99, "TAG1", "ISO14443")


@pytest.mark.asyncio
async def test_real_time_authorization_needs_tokens_endpoint(store, recorder):
    service = TokensService(store, PartnerClient(recorder.client(), store))
    with pytest.raises(InvalidParamError, match="no tokens endpoint"):
        await service.real_time_authorization(10, "TAG1", "ISO14443")
    assert recorder.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "recorder_args",
    [{"status_code": 2004}, {"http_status": 503}, {"data": {"allowed": "MAYBE"}}],
)
async def test_real_time_authorization_failure_is_invalid_param(authorizer, recorder_args):
    service, _ = authorizer(**recorder_args)
    with pytest.raises(InvalidParamError, match="Failed to authorize token TAG1"):
        await service.real_time_authorization(10, "TAG1", "ISO14443")
