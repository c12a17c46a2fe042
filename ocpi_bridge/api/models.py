from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from ..timeutil import to_iso, utcnow


class TokenType(str, Enum):
    AD_HOC_USER = "AD_HOC_USER"
    APP_USER = "APP_USER"
    OTHER = "OTHER"
    RFID = "RFID"


class WhitelistType(str, Enum):
    ALWAYS = "ALWAYS"
    ALLOWED = "ALLOWED"
    ALLOWED_OFFLINE = "ALLOWED_OFFLINE"
    NEVER = "NEVER"


class CommandType(str, Enum):
    CANCEL_RESERVATION = "CANCEL_RESERVATION"
    RESERVE_NOW = "RESERVE_NOW"
    START_SESSION = "START_SESSION"
    STOP_SESSION = "STOP_SESSION"
    UNLOCK_CONNECTOR = "UNLOCK_CONNECTOR"


class CommandResponseType(str, Enum):
    NOT_SUPPORTED = "NOT_SUPPORTED"
    REJECTED = "REJECTED"
    ACCEPTED = "ACCEPTED"
    UNKNOWN_SESSION = "UNKNOWN_SESSION"


class CommandResultType(str, Enum):
    ACCEPTED = "ACCEPTED"
    CANCELED_RESERVATION = "CANCELED_RESERVATION"
    EVSE_OCCUPIED = "EVSE_OCCUPIED"
    EVSE_INOPERATIVE = "EVSE_INOPERATIVE"
    FAILED = "FAILED"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    REJECTED = "REJECTED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_RESERVATION = "UNKNOWN_RESERVATION"


class OcpiStatusCode:
    SUCCESS = 1000
    CLIENT_ERROR = 2000
    INVALID_OR_MISSING_PARAMETERS = 2001
    UNKNOWN_TOKEN = 2004
    SERVER_ERROR = 3000


class Token(BaseModel):
    country_code: str = Field(min_length=2, max_length=2)
    party_id: str = Field(max_length=3)
    uid: str = Field(max_length=36)
    type: TokenType
    contract_id: str = Field(max_length=36)
    visual_number: Optional[str] = Field(default=None, max_length=64)
    issuer: str = Field(max_length=64)
    group_id: Optional[str] = Field(default=None, max_length=36)
    valid: bool
    whitelist: WhitelistType
    language: Optional[str] = Field(default=None, max_length=2)
    last_updated: datetime


class TokenPatch(BaseModel):
    """Partial token as sent in a PATCH; every field is optional."""

    country_code: Optional[str] = None
    party_id: Optional[str] = None
    uid: Optional[str] = None
    type: Optional[TokenType] = None
    contract_id: Optional[str] = None
    visual_number: Optional[str] = None
    issuer: Optional[str] = None
    group_id: Optional[str] = None
    valid: Optional[bool] = None
    whitelist: Optional[WhitelistType] = None
    language: Optional[str] = None
    last_updated: Optional[datetime] = None


class StartSession(BaseModel):
    response_url: str
    token: Token
    location_id: str
    evse_uid: Optional[str] = None
    connector_id: Optional[str] = None
    authorization_reference: Optional[str] = None


class StopSession(BaseModel):
    response_url: str
    session_id: str


class ReserveNow(BaseModel):
    response_url: str
    token: Token
    expiry_date: datetime
    reservation_id: str
    location_id: str
    evse_uid: Optional[str] = None
    authorization_reference: Optional[str] = None


class CancelReservation(BaseModel):
    response_url: str
    reservation_id: str


class UnlockConnector(BaseModel):
    response_url: str
    location_id: str
    evse_uid: Optional[str] = None
    connector_id: Optional[str] = None


COMMAND_PAYLOADS = {
    CommandType.CANCEL_RESERVATION: CancelReservation,
    CommandType.RESERVE_NOW: ReserveNow,
    CommandType.START_SESSION: StartSession,
    CommandType.STOP_SESSION: StopSession,
    CommandType.UNLOCK_CONNECTOR: UnlockConnector,
}


class LocationReferences(BaseModel):
    location_id: str
    evse_uids: Optional[List[str]] = None


class AllowedType(str, Enum):
    ALLOWED = "ALLOWED"
    BLOCKED = "BLOCKED"
    EXPIRED = "EXPIRED"
    NO_CREDIT = "NO_CREDIT"
    NOT_ALLOWED = "NOT_ALLOWED"


class RealTimeAuthorization(BaseModel):
    """Outcome of asking the token owner whether a token may charge now."""

    timestamp: str
    allowed: AllowedType
    reason: Optional[str] = None


class DisplayText(BaseModel):
    language: str = "en"
    text: str


class CommandResponse(BaseModel):
    result: CommandResponseType
    timeout: int
    message: Optional[DisplayText] = None


class CommandResult(BaseModel):
    result: CommandResultType
    message: Optional[DisplayText] = None


class OcpiResponse(BaseModel):
    data: Optional[Any] = None
    status_code: int
    status_message: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: to_iso(utcnow()))


def success_response(data: Any = None) -> OcpiResponse:
    return OcpiResponse(data=data, status_code=OcpiStatusCode.SUCCESS)


def client_error_response(data: Any, message: str) -> OcpiResponse:
    return OcpiResponse(
        data=data, status_code=OcpiStatusCode.CLIENT_ERROR, status_message=message
    )


def invalid_or_missing_parameters_response(data: Any, message: str) -> OcpiResponse:
    return OcpiResponse(
        data=data,
        status_code=OcpiStatusCode.INVALID_OR_MISSING_PARAMETERS,
        status_message=message,
    )


def error_response(status_code: int, message: str) -> OcpiResponse:
    return OcpiResponse(status_code=status_code, status_message=message)
