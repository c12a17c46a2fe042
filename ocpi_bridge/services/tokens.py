"""Token upsert/patch/lookup against the core authorization table."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..api.models import (
    LocationReferences,
    RealTimeAuthorization,
    Token,
    TokenPatch,
    TokenType,
)
from ..broadcast.mappers import uid_format
from ..broadcast.pusher import PartnerClient
from ..exceptions import InvalidParamError, MissingParamError, PartnerPushError, UnknownTokenError
from ..store import DataStore
from ..timeutil import to_iso, utcnow
from .token_identity import (
    ID_TOKEN_TYPE_CENTRAL,
    STATUS_INVALID,
    authorization_to_token,
    merge_additional_info,
    normalize_token,
    to_id_token_type,
    to_token_type,
    token_to_authorization_fields,
)

logger = logging.getLogger(__name__)

TOKENS_MODULE = "tokens"
SENDER = "SENDER"


class TokensService:
    def __init__(self, store: DataStore, partners: Optional[PartnerClient] = None) -> None:
        self.store = store
        self.partners = partners

    async def get_token(
        self,
        country_code: str,
        party_id: str,
        uid: str,
        token_type: Optional[TokenType] = None,
    ) -> Optional[Token]:
        id_token = normalize_token(uid)
        id_token_type = to_id_token_type(token_type or TokenType.RFID)
        authorizations = await self.store.read_authorizations(
            id_token, id_token_type, country_code, party_id
        )
        if not authorizations:
            return None
        if len(authorizations) > 1:
            logger.warning(
                f"Multiple authorizations found for token uid {uid}, type {token_type}, "
                f"country code {country_code}, party id {party_id}; returning the first one"
            )
        return authorization_to_token(authorizations[0])

    async def upsert_token(self, token: Token, tenant_id: int, tenant_partner_id: int) -> Token:
        fields = token_to_authorization_fields(token.model_dump())
        id_token = fields["id_token"]
        id_token_type = fields["id_token_type"]

        existing = await self.store.get_authorization_by_token(
            id_token, id_token_type, tenant_partner_id
        )

        group_authorization_id = None
        if token.group_id:
            group_authorization_id = await self.resolve_group_authorization(
                token.group_id, tenant_id, tenant_partner_id
            )

        values: Dict[str, Any] = {
            "additional_info": fields.get("additional_info"),
            "custom_data": fields.get("custom_data"),
            "status": fields["status"],
            "language1": fields.get("language1"),
            "group_authorization_id": group_authorization_id,
            "real_time_auth": fields.get("real_time_auth") or "Always",
            "updated_at": token.last_updated,
        }
        if existing is not None:
            logger.debug(f"Updating authorization {existing.id} for token {token.uid}")
            authorization = await self.store.update_authorization(
                id_token, id_token_type, tenant_partner_id, values
            )
        else:
            logger.debug(f"Creating authorization for token {token.uid}")
            authorization = await self.store.create_authorization(
                id_token=id_token,
                id_token_type=id_token_type,
                tenant_id=tenant_id,
                tenant_partner_id=tenant_partner_id,
                created_at=token.last_updated,
                **values,
            )
        return authorization_to_token(authorization)

    async def patch_token(
        self,
        uid: str,
        token_type: TokenType,
        token: TokenPatch,
        tenant_id: int,
        tenant_partner_id: int,
    ) -> Token:
        if token.last_updated is None:
            raise MissingParamError("Tokens PATCH must contain last_updated.")

        id_token = normalize_token(uid)
        id_token_type = to_id_token_type(token_type)
        # uid and type address the record; they are not patchable
        fields = token_to_authorization_fields(
            token.model_dump(exclude_none=True, exclude={"uid", "type"})
        )

        existing = await self.store.get_authorization_by_token(
            id_token, id_token_type, tenant_partner_id
        )
        if existing is None:
            raise UnknownTokenError(f"Unknown token {uid}:{token_type}")

        changes: Dict[str, Any] = {"updated_at": token.last_updated}
        if "additional_info" in fields:
            if existing.additional_info:
                changes["additional_info"] = merge_additional_info(
                    fields["additional_info"], existing.additional_info
                )
            else:
                changes["additional_info"] = fields["additional_info"]
        for key in ("status", "language1", "real_time_auth"):
            if key in fields:
                changes[key] = fields[key]
        if token.group_id:
            changes["group_authorization_id"] = await self.resolve_group_authorization(
                token.group_id, tenant_id, tenant_partner_id
            )

        authorization = await self.store.update_authorization(
            id_token, id_token_type, tenant_partner_id, changes
        )
        return authorization_to_token(authorization)

    async def resolve_group_authorization(
        self, group_id: str, tenant_id: int, tenant_partner_id: int
    ) -> int:
        """Return the id of the group authorization, creating a placeholder if needed.

        Concurrent requests for the same group may both create one; that is
        logged and the reference created last is returned.
        """
        existing = await self.store.get_group_authorizations(group_id, tenant_partner_id)
        if existing:
            return existing[0].id

        now = utcnow()
        created = await self.store.create_authorization(
            id_token=group_id,
            id_token_type=ID_TOKEN_TYPE_CENTRAL,
            tenant_id=tenant_id,
            tenant_partner_id=tenant_partner_id,
            status=STATUS_INVALID,
            created_at=now,
            updated_at=now,
        )
        logger.info(f"Created group authorization {created.id} for group {group_id}")

        duplicates = await self.store.get_group_authorizations(group_id, tenant_partner_id)
        if len(duplicates) > 1:
            logger.warning(
                f"Duplicate group authorizations for group {group_id} and partner "
                f"{tenant_partner_id}: {[a.id for a in duplicates]}; using {created.id}"
            )
        return created.id

    async def real_time_authorization(
        self,
        tenant_partner_id: int,
        id_token: str,
        id_token_type: Optional[str],
        location_id: Optional[int] = None,
        station_id: Optional[str] = None,
    ) -> RealTimeAuthorization:
        """Ask the token owner's tokens endpoint whether ``id_token`` may charge.

        When both ``location_id`` and ``station_id`` are given, the station's
        EVSEs are sent along as location references.
        """
        partner = await self.store.get_tenant_partner(tenant_partner_id)
        if partner is None:
            raise InvalidParamError(f"Unknown tenant partner {tenant_partner_id}")
        endpoint = partner.endpoint_for(TOKENS_MODULE, SENDER)
        if self.partners is None or not endpoint:
            raise InvalidParamError(
                f"Tenant partner {tenant_partner_id} has no tokens endpoint for real-time authorization"
            )

        references = None
        if location_id is not None and station_id:
            station = await self.store.get_charging_station(station_id)
            if station is None or station.location_id != location_id:
                raise InvalidParamError(
                    f"Unknown charging station {station_id} at location {location_id}"
                )
            references = LocationReferences(
                location_id=str(location_id),
                evse_uids=[uid_format(station.id, evse.id) for evse in station.evses],
            )

        token_type = to_token_type(id_token_type)
        url = f"{endpoint.rstrip('/')}/{id_token}/authorize?type={token_type.value}"
        body = references.model_dump(exclude_none=True) if references else None
        try:
            payload = await self.partners.send(partner.tenant, partner, "POST", url, body)
            data = payload.get("data") or {}
            result = RealTimeAuthorization(
                timestamp=payload.get("timestamp") or to_iso(utcnow()),
                allowed=data.get("allowed"),
                reason=(data.get("info") or {}).get("text"),
            )
        except (PartnerPushError, ValidationError) as exc:
            logger.error(f"Real-time authorization of token {id_token} failed: {exc}")
            raise InvalidParamError(f"Failed to authorize token {id_token}") from exc

        logger.info(
            f"Real-time authorization of token {id_token} by "
            f"{partner.country_code}*{partner.party_id}: {result.allowed.value}"
        )
        return result
