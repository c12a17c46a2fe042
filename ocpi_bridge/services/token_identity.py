"""Map external OCPI tokens onto internal authorization records.

Partner token uids may be up to 36 characters while the core platform keys
authorizations by an id token of at most 20 characters.  Longer uids are
replaced by a deterministic SHA-256 prefix and the original value is kept in
the authorization's custom data so it can be shown again on the way out.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Optional

from ..api.models import Token, TokenType, WhitelistType
from ..exceptions import InvalidParamError, UnknownTokenTypeError
from ..models import AdditionalInfo, Authorization, AuthorizationCustomData
from ..timeutil import to_iso

MAX_ID_TOKEN_LENGTH = 20

EMAID = "eMAID"
VISUAL_NUMBER = "visual_number"
ISSUER = "issuer"

STATUS_ACCEPTED = "Accepted"
STATUS_INVALID = "Invalid"

ID_TOKEN_TYPE_CENTRAL = "Central"

_TOKEN_TYPE_TO_ID_TOKEN_TYPE = {
    # ISO15693 cards would need their own entry
    TokenType.RFID: "ISO14443",
    TokenType.AD_HOC_USER: "Local",
    TokenType.APP_USER: ID_TOKEN_TYPE_CENTRAL,
    TokenType.OTHER: "Other",
}
_ID_TOKEN_TYPE_TO_TOKEN_TYPE = {v: k for k, v in _TOKEN_TYPE_TO_ID_TOKEN_TYPE.items()}

_WHITELIST_TO_REAL_TIME_AUTH = {
    WhitelistType.ALWAYS: "Always",
    WhitelistType.ALLOWED: "Allowed",
    WhitelistType.ALLOWED_OFFLINE: "AllowedOffline",
    WhitelistType.NEVER: "Never",
}
_REAL_TIME_AUTH_TO_WHITELIST = {v: k for k, v in _WHITELIST_TO_REAL_TIME_AUTH.items()}


def normalize_token(uid: Optional[str]) -> Optional[str]:
    """Return the internal id token for ``uid``.

    Uids of up to 20 characters pass through unchanged; longer ones become
    the first 20 hex characters of their SHA-256 digest.
    """
    if not uid:
        return None
    if len(uid) <= MAX_ID_TOKEN_LENGTH:
        return uid
    return hashlib.sha256(uid.encode("utf-8")).hexdigest()[:MAX_ID_TOKEN_LENGTH]


def to_id_token_type(token_type: Any) -> str:
    try:
        return _TOKEN_TYPE_TO_ID_TOKEN_TYPE[TokenType(token_type)]
    except (ValueError, KeyError):
        raise UnknownTokenTypeError(f"Unknown token type: {token_type}") from None


def to_token_type(id_token_type: Optional[str]) -> TokenType:
    if id_token_type is None:
        return TokenType.OTHER
    try:
        return _ID_TOKEN_TYPE_TO_TOKEN_TYPE[id_token_type]
    except KeyError:
        raise UnknownTokenTypeError(f"Unknown token type: {id_token_type}") from None


def to_real_time_auth(whitelist: Optional[WhitelistType]) -> Optional[str]:
    if whitelist is None:
        return None
    return _WHITELIST_TO_REAL_TIME_AUTH[WhitelistType(whitelist)]


def to_whitelist(real_time_auth: Optional[str]) -> WhitelistType:
    return _REAL_TIME_AUTH_TO_WHITELIST.get(real_time_auth, WhitelistType.ALWAYS)


def merge_additional_info(
    new_partial: List[AdditionalInfo], old_complete: List[AdditionalInfo]
) -> List[AdditionalInfo]:
    """Overwrite values in ``old_complete`` whose type also appears in ``new_partial``.

    Types only present in ``new_partial`` are not added.
    """
    updates = {info.type: info.additional_id_token for info in new_partial}
    return [
        AdditionalInfo(
            additional_id_token=updates.get(info.type, info.additional_id_token),
            type=info.type,
        )
        for info in old_complete
    ]


def token_to_authorization_fields(token: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a (possibly partial) token dict into authorization columns.

    Only keys derivable from ``token`` are returned, so the result can be
    used both for a full upsert and for a PATCH.
    """
    fields: Dict[str, Any] = {}
    uid = token.get("uid")
    if uid:
        id_token = normalize_token(uid)
        fields["id_token"] = id_token
        if id_token != uid:
            fields["custom_data"] = AuthorizationCustomData(original_token_uid=uid)
    if token.get("type") is not None:
        fields["id_token_type"] = to_id_token_type(token["type"])

    additional_info: List[AdditionalInfo] = []
    contract_id = token.get("contract_id")
    if contract_id:
        additional_info.append(AdditionalInfo(additional_id_token=contract_id, type=EMAID))
    visual_number = token.get("visual_number") or contract_id
    if visual_number:
        additional_info.append(AdditionalInfo(additional_id_token=visual_number, type=VISUAL_NUMBER))
    if token.get("issuer"):
        additional_info.append(AdditionalInfo(additional_id_token=token["issuer"], type=ISSUER))
    if additional_info:
        fields["additional_info"] = additional_info

    if token.get("valid") is not None:
        fields["status"] = STATUS_ACCEPTED if token["valid"] else STATUS_INVALID
    if token.get("language"):
        fields["language1"] = token["language"]
    if token.get("whitelist") is not None:
        fields["real_time_auth"] = to_real_time_auth(token["whitelist"])
    return fields


def _additional(authorization: Authorization, info_type: str) -> str:
    for info in authorization.additional_info or []:
        if info.type == info_type:
            return info.additional_id_token
    raise InvalidParamError(
        f"{info_type} not found in additional info of authorization {authorization.id}; "
        "authorization is incomplete for token mapping"
    )


def authorization_to_token(authorization: Authorization) -> Token:
    partner = authorization.tenant_partner
    if partner is None:
        raise InvalidParamError(f"Authorization {authorization.id} has no tenant partner")
    custom = authorization.custom_data
    uid = custom.original_token_uid if custom and custom.original_token_uid else authorization.id_token
    return Token(
        country_code=partner.country_code,
        party_id=partner.party_id,
        uid=uid,
        type=to_token_type(authorization.id_token_type),
        contract_id=_additional(authorization, EMAID),
        visual_number=_additional(authorization, VISUAL_NUMBER),
        issuer=_additional(authorization, ISSUER),
        group_id=authorization.group_id_token,
        valid=authorization.status == STATUS_ACCEPTED,
        whitelist=to_whitelist(authorization.real_time_auth),
        language=authorization.language1,
        last_updated=to_iso(authorization.updated_at),
    )
