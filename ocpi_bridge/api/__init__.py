"""OCPI HTTP surface: commands and tokens receiver endpoints."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..exceptions import InvalidParamError, OcpiError, UnauthorizedError, UnknownTokenError
from ..models import TenantPartner
from ..store import DataStore
from ..timeutil import utcnow
from .models import (
    COMMAND_PAYLOADS,
    CommandResponse,
    CommandResponseType,
    CommandType,
    OcpiResponse,
    OcpiStatusCode,
    Token,
    TokenPatch,
    TokenType,
    error_response,
    invalid_or_missing_parameters_response,
    success_response,
)

if TYPE_CHECKING:
    from ..services.commands import CommandsService
    from ..services.tokens import TokensService

logger = logging.getLogger(__name__)


def _envelope(response: OcpiResponse, status_code: int = 200) -> JSONResponse:
    return JSONResponse(response.model_dump(mode="json"), status_code=status_code)


def decode_token(value: str) -> str:
    """Credentials token from an ``Authorization: Token ...`` value.

    Partners may send the token Base64-encoded or raw.
    """
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value
    return decoded if decoded.isprintable() else value


def create_app(
    store: DataStore,
    commands: "CommandsService",
    tokens: "TokensService",
    commands_timeout: int = 30,
) -> FastAPI:
    app = FastAPI(title="OCPI Bridge", version="1.0.0")

    async def current_partner(authorization: Optional[str] = Header(default=None)) -> TenantPartner:
        if not authorization or not authorization.startswith("Token "):
            raise UnauthorizedError("Missing or malformed Authorization header")
        partner = await store.get_tenant_partner_by_server_token(
            decode_token(authorization[len("Token "):].strip())
        )
        if partner is None:
            raise UnauthorizedError("Unknown credentials token")
        return partner

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f">>> {request.method} {request.url.path}")
        try:
            response = await call_next(request)
            logger.info(f"<<< {request.method} {request.url.path} -> {response.status_code}")
            return response
        except Exception:
            logger.exception("Handler crashed")
            raise

    @app.exception_handler(OcpiError)
    async def ocpi_error_handler(request: Request, exc: OcpiError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return _envelope(error_response(exc.status_code, str(exc)), exc.http_status)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _envelope(
            error_response(OcpiStatusCode.INVALID_OR_MISSING_PARAMETERS, str(exc.errors())), 400
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return _envelope(error_response(OcpiStatusCode.SERVER_ERROR, "Internal server error"), 500)

    @app.get("/health")
    def health():
        return {"ok": True, "time": utcnow().isoformat()}

    @app.post("/ocpi/{version}/commands/{command_type}")
    async def post_command(
        version: str,
        command_type: str,
        body: Dict[str, Any] = Body(...),
        partner: TenantPartner = Depends(current_partner),
    ):
        payload_model = COMMAND_PAYLOADS.get(command_type)
        if payload_model is None:
            return _envelope(await commands.post_command(command_type, None, partner))
        try:
            payload = payload_model.model_validate(body)
        except ValidationError as exc:
            message = f"Invalid {command_type} payload: {exc.errors()}"
            logger.error(message)
            return _envelope(
                invalid_or_missing_parameters_response(
                    CommandResponse(result=CommandResponseType.REJECTED, timeout=commands_timeout),
                    message,
                )
            )
        return _envelope(await commands.post_command(CommandType(command_type), payload, partner))

    def _check_owner(partner: TenantPartner, country_code: str, party_id: str) -> None:
        if partner.country_code != country_code or partner.party_id != party_id:
            raise InvalidParamError("Token path does not match credentials")

    @app.get("/ocpi/{version}/tokens/{country_code}/{party_id}/{uid}")
    async def get_token(
        version: str,
        country_code: str,
        party_id: str,
        uid: str,
        type: TokenType = TokenType.RFID,
        partner: TenantPartner = Depends(current_partner),
    ):
        _check_owner(partner, country_code, party_id)
        token = await tokens.get_token(country_code, party_id, uid, type)
        if token is None:
            raise UnknownTokenError(f"Unknown token {uid}:{type.value}")
        return _envelope(success_response(token))

    @app.put("/ocpi/{version}/tokens/{country_code}/{party_id}/{uid}")
    async def put_token(
        version: str,
        country_code: str,
        party_id: str,
        uid: str,
        token: Token,
        type: TokenType = TokenType.RFID,
        partner: TenantPartner = Depends(current_partner),
    ):
        _check_owner(partner, country_code, party_id)
        if token.uid != uid or token.type != type:
            raise InvalidParamError("Token uid/type do not match the request path")
        saved = await tokens.upsert_token(token, partner.tenant_id, partner.id)
        return _envelope(success_response(saved))

    @app.patch("/ocpi/{version}/tokens/{country_code}/{party_id}/{uid}")
    async def patch_token(
        version: str,
        country_code: str,
        party_id: str,
        uid: str,
        token: TokenPatch,
        type: TokenType = TokenType.RFID,
        partner: TenantPartner = Depends(current_partner),
    ):
        _check_owner(partner, country_code, party_id)
        saved = await tokens.patch_token(uid, type, token, partner.tenant_id, partner.id)
        return _envelope(success_response(saved))

    return app


__all__ = ["create_app", "decode_token"]
