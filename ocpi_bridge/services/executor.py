"""Detached execution of accepted OCPI commands.

The validation pipeline answers the partner before the station has been
contacted.  Each ``execute_*`` coroutine runs as its own task, talks to the
station through a :class:`StationCommandService` and reports the outcome to
the command's ``response_url``.  Nothing raised here reaches the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

from ..api.models import (
    CommandResult,
    CommandResultType,
    DisplayText,
    ReserveNow,
    StartSession,
    StopSession,
    UnlockConnector,
)
from ..broadcast.pusher import PartnerClient
from ..cache import TOKEN_ID_TO_AUTH_REF_NAMESPACE, Cache
from ..exceptions import PartnerPushError
from ..models import ChargingStation, TenantPartner, Transaction
from ..ocpp_local import (
    ReserveNowRequest,
    StartTransactionRequest,
    StationCommandResult,
    StationCommandService,
    StationUnavailableError,
    StopTransactionRequest,
    UnlockConnectorRequest,
)
from .token_identity import normalize_token

logger = logging.getLogger(__name__)

_RESULTS = {
    "Accepted": CommandResultType.ACCEPTED,
    "Unlocked": CommandResultType.ACCEPTED,
    "Rejected": CommandResultType.REJECTED,
    "UnlockFailed": CommandResultType.FAILED,
    "NotSupported": CommandResultType.NOT_SUPPORTED,
    "Occupied": CommandResultType.EVSE_OCCUPIED,
    "Faulted": CommandResultType.EVSE_INOPERATIVE,
    "Unavailable": CommandResultType.EVSE_INOPERATIVE,
}


def to_command_result(result: StationCommandResult) -> CommandResult:
    return CommandResult(result=_RESULTS.get(result.status, CommandResultType.FAILED))


def _failed(text: str) -> CommandResult:
    return CommandResult(result=CommandResultType.FAILED, message=DisplayText(text=text))


class CommandExecutor:
    def __init__(
        self,
        stations: StationCommandService,
        partners: PartnerClient,
        cache: Cache,
        auth_ref_ttl: Optional[int] = None,
    ) -> None:
        self.stations = stations
        self.partners = partners
        self.cache = cache
        self.auth_ref_ttl = auth_ref_ttl
        self._tasks: Set[asyncio.Task] = set()

    # Task tracking ---------------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        """Run ``coro`` in the background; failures end up in the log."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Command task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Command task {task.get_name()} failed", exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every running command task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Result callback -------------------------------------------------------

    async def _send_result(
        self, command: str, response_url: str, partner: TenantPartner, result: CommandResult
    ) -> None:
        try:
            await self.partners.send(
                partner.tenant,
                partner,
                "POST",
                response_url,
                result.model_dump(mode="json", exclude_none=True),
            )
        except PartnerPushError as exc:
            logger.error(f"{command}: delivering result {result.result.value} to {response_url} failed: {exc}")

    async def _run(
        self, command: str, context: str, response_url: str, partner: TenantPartner, call: Coroutine
    ) -> None:
        try:
            outcome = await call
            result = to_command_result(outcome)
            logger.info(f"{command} [{context}] -> {outcome.status}")
        except StationUnavailableError as exc:
            logger.warning(f"{command} [{context}] station unavailable: {exc}")
            result = _failed(str(exc))
        except Exception as exc:
            logger.exception(f"{command} [{context}] failed")
            result = _failed(f"{command} failed: {exc}")
        await self._send_result(command, response_url, partner, result)

    # Commands --------------------------------------------------------------

    async def execute_start_session(
        self, command: StartSession, partner: TenantPartner, station: ChargingStation
    ) -> None:
        id_tag = normalize_token(command.token.uid)
        context = f"station={station.id}, token={id_tag}"
        if command.authorization_reference:
            try:
                await self.cache.set(
                    id_tag,
                    command.authorization_reference,
                    namespace=TOKEN_ID_TO_AUTH_REF_NAMESPACE,
                    expire_seconds=self.auth_ref_ttl,
                )
            except Exception:
                logger.exception(f"StartSession [{context}] could not cache authorization reference")
        connector_id = int(command.connector_id) if command.connector_id else None
        request = StartTransactionRequest(station_id=station.id, id_tag=id_tag, connector_id=connector_id)
        await self._run(
            "StartSession",
            context,
            command.response_url,
            partner,
            self.stations.start_transaction(request),
        )

    async def execute_stop_session(
        self, command: StopSession, partner: TenantPartner, transaction: Transaction
    ) -> None:
        request = StopTransactionRequest(
            station_id=transaction.station_id, transaction_id=transaction.transaction_id
        )
        await self._run(
            "StopSession",
            f"station={transaction.station_id}, session={command.session_id}",
            command.response_url,
            partner,
            self.stations.stop_transaction(request),
        )

    async def execute_unlock_connector(
        self, command: UnlockConnector, partner: TenantPartner, station: ChargingStation
    ) -> None:
        request = UnlockConnectorRequest(station_id=station.id, connector_id=int(command.connector_id))
        await self._run(
            "UnlockConnector",
            f"station={station.id}, connector={command.connector_id}",
            command.response_url,
            partner,
            self.stations.unlock_connector(request),
        )

    async def execute_reserve_now(
        self,
        command: ReserveNow,
        partner: TenantPartner,
        station: ChargingStation,
        connector_id: int,
    ) -> None:
        context = f"station={station.id}, reservation={command.reservation_id}"
        try:
            reservation_id = int(command.reservation_id)
        except ValueError:
            logger.error(f"ReserveNow [{context}] reservation id is not numeric")
            await self._send_result(
                "ReserveNow",
                command.response_url,
                partner,
                _failed("Reservation id must be numeric"),
            )
            return
        request = ReserveNowRequest(
            station_id=station.id,
            connector_id=connector_id,
            id_tag=normalize_token(command.token.uid),
            reservation_id=reservation_id,
            expiry_date=command.expiry_date,
        )
        await self._run(
            "ReserveNow", context, command.response_url, partner, self.stations.reserve_now(request)
        )
