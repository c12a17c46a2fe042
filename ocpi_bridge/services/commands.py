"""Validation pipeline for OCPI commands received from eMSP partners.

Every command walks the same guard stages (credentials, required fields,
token upsert, resource resolution, liveness, connector translation).  The
first failing stage produces the response.  When all pass the command is
handed to the :class:`~ocpi_bridge.services.executor.CommandExecutor` in the
background and ``ACCEPTED`` is returned right away; the real outcome reaches
the partner later through the command's ``response_url``.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from pydantic import BaseModel

from ..api.models import (
    CommandResponse,
    CommandResponseType,
    CommandType,
    DisplayText,
    OcpiResponse,
    ReserveNow,
    StartSession,
    StopSession,
    Token,
    UnlockConnector,
    client_error_response,
    invalid_or_missing_parameters_response,
    success_response,
)
from ..broadcast.mappers import extract_evse_id, extract_station_id
from ..models import ChargingStation, Connector, TenantPartner
from ..store import DataStore
from .executor import CommandExecutor
from .tokens import TokensService

logger = logging.getLogger(__name__)


class CommandsService:
    def __init__(
        self,
        store: DataStore,
        tokens: TokensService,
        executor: CommandExecutor,
        timeout: int = 30,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.executor = executor
        self.timeout = timeout

    # Responses -------------------------------------------------------------

    def _response(self, result: CommandResponseType, message: Optional[str] = None) -> CommandResponse:
        return CommandResponse(
            result=result,
            timeout=self.timeout,
            message=DisplayText(text=message) if message else None,
        )

    def _accepted(self) -> OcpiResponse:
        return success_response(self._response(CommandResponseType.ACCEPTED))

    def _rejected(self, message: str) -> OcpiResponse:
        logger.error(message)
        return invalid_or_missing_parameters_response(
            self._response(CommandResponseType.REJECTED, message), message
        )

    # Shared stages ---------------------------------------------------------

    @staticmethod
    def _credentials_match(partner: TenantPartner, country_code: str, party_id: str) -> bool:
        return partner.country_code == country_code and partner.party_id == party_id

    async def _save_token(self, command: str, token: Token, partner: TenantPartner) -> Optional[Token]:
        try:
            return await self.tokens.upsert_token(token, partner.tenant_id, partner.id)
        except Exception:
            logger.exception(f"Failed to save token before {command}")
            return None

    async def _station_for(self, evse_uid: str, location_id: str) -> Optional[ChargingStation]:
        station = await self.store.get_charging_station(extract_station_id(evse_uid))
        if station is None or str(station.location_id) != location_id:
            logger.error(f"Charging station not found for evse_uid {evse_uid} at location {location_id}")
            return None
        return station

    @staticmethod
    def _find_connector(connectors: List[Connector], connector_id: str) -> Optional[Connector]:
        for connector in connectors:
            if str(connector.id) == connector_id:
                return connector
        return None

    # Dispatch --------------------------------------------------------------

    async def post_command(
        self,
        command_type: Union[CommandType, str],
        payload: BaseModel,
        partner: TenantPartner,
    ) -> OcpiResponse:
        try:
            command_type = CommandType(command_type)
        except ValueError:
            return client_error_response(
                self._response(CommandResponseType.NOT_SUPPORTED),
                f"Unknown command type: {command_type}",
            )

        logger.info(
            f"← {command_type.value} from {partner.country_code}*{partner.party_id}"
        )
        if command_type == CommandType.CANCEL_RESERVATION:
            return success_response(self._response(CommandResponseType.NOT_SUPPORTED))
        if command_type == CommandType.RESERVE_NOW:
            return await self.reserve_now(payload, partner)
        if command_type == CommandType.START_SESSION:
            return await self.start_session(payload, partner)
        if command_type == CommandType.STOP_SESSION:
            return await self.stop_session(payload, partner)
        return await self.unlock_connector(payload, partner)

    async def start_session(self, command: StartSession, partner: TenantPartner) -> OcpiResponse:
        if not self._credentials_match(partner, command.token.country_code, command.token.party_id):
            return self._rejected("Token information does not match credentials")
        if not command.evse_uid:
            return self._rejected("EVSE UID required by this CPO")

        saved = await self._save_token("StartSession", command.token, partner)
        if saved is None:
            return client_error_response(
                self._response(CommandResponseType.REJECTED, "Unable to save token"),
                "Unable to save token",
            )
        command = command.model_copy(update={"token": saved})

        station = await self._station_for(command.evse_uid, command.location_id)
        if station is None:
            return self._rejected("Unknown charging station")
        if not station.is_online:
            return self._rejected("Charging station is offline")

        if command.connector_id:
            connector = self._find_connector(station.connectors, command.connector_id)
            if connector is None:
                return self._rejected("Unknown connector")
            command = command.model_copy(update={"connector_id": str(connector.connector_id)})

        self.executor.spawn(
            self.executor.execute_start_session(command, partner, station),
            name=f"StartSession:{station.id}",
        )
        return self._accepted()

    async def stop_session(self, command: StopSession, partner: TenantPartner) -> OcpiResponse:
        transaction = None
        if command.session_id.isdigit():
            transaction = await self.store.get_transaction(int(command.session_id))
        if transaction is None:
            logger.error(f"Unknown transaction {command.session_id}")
            return invalid_or_missing_parameters_response(
                self._response(CommandResponseType.UNKNOWN_SESSION, "Session not found"),
                "Session not found",
            )

        owner = transaction.authorization.tenant_partner if transaction.authorization else None
        if owner is None or not self._credentials_match(partner, owner.country_code, owner.party_id):
            return self._rejected("Token information does not match credentials")
        if not transaction.is_active:
            return self._rejected("Session is already stopped")

        station = await self.store.get_charging_station(transaction.station_id)
        if station is None:
            return self._rejected("Unknown charging station")
        if not station.is_online:
            return self._rejected("Charging station is offline")

        self.executor.spawn(
            self.executor.execute_stop_session(command, partner, transaction),
            name=f"StopSession:{transaction.id}",
        )
        return self._accepted()

    async def unlock_connector(self, command: UnlockConnector, partner: TenantPartner) -> OcpiResponse:
        if not command.evse_uid:
            return self._rejected("EVSE UID required by this CPO")
        if not command.connector_id:
            return self._rejected("Connector ID required by this CPO")

        station = await self._station_for(command.evse_uid, command.location_id)
        if station is None:
            return self._rejected("Unknown charging station")
        if not station.is_online:
            return self._rejected("Charging station is offline")

        connector = self._find_connector(station.connectors, command.connector_id)
        if connector is None:
            return self._rejected("Unknown connector")
        command = command.model_copy(update={"connector_id": str(connector.connector_id)})

        self.executor.spawn(
            self.executor.execute_unlock_connector(command, partner, station),
            name=f"UnlockConnector:{station.id}",
        )
        return self._accepted()

    async def reserve_now(self, command: ReserveNow, partner: TenantPartner) -> OcpiResponse:
        if not self._credentials_match(partner, command.token.country_code, command.token.party_id):
            return self._rejected("Token information does not match credentials")
        if not command.evse_uid:
            return self._rejected("EVSE UID required by this CPO")

        saved = await self._save_token("ReserveNow", command.token, partner)
        if saved is None:
            return client_error_response(
                self._response(CommandResponseType.REJECTED, "Unable to save token"),
                "Unable to save token",
            )
        command = command.model_copy(update={"token": saved})

        station = await self._station_for(command.evse_uid, command.location_id)
        if station is None:
            return self._rejected("Unknown charging station")
        if not station.is_online:
            return self._rejected("Charging station is offline")

        # a single-connector EVSE reserves that connector, otherwise any (0)
        evse_id = extract_evse_id(command.evse_uid)
        evse_connectors = [c for c in station.connectors if c.evse_id == evse_id]
        connector_id = evse_connectors[0].connector_id if len(evse_connectors) == 1 else 0

        self.executor.spawn(
            self.executor.execute_reserve_now(command, partner, station, connector_id),
            name=f"ReserveNow:{station.id}",
        )
        return self._accepted()
