"""OCPP 1.6 central system used to deliver remote commands to stations."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from ocpp.routing import on
from ocpp.v16 import ChargePoint, call, call_result
from ocpp.v16.enums import Action, RegistrationStatus

from ..ocpp_local import (
    ReserveNowRequest,
    StartTransactionRequest,
    StationCommandResult,
    StationCommandService,
    StationUnavailableError,
    StopTransactionRequest,
    UnlockConnectorRequest,
)
from ..timeutil import to_iso

logger = logging.getLogger(__name__)


def _status(resp: Any) -> str:
    status = getattr(resp, "status", None)
    return status.value if hasattr(status, "value") else str(status)


class CentralSystem(ChargePoint):
    async def remote_start(self, connector_id: int | None, id_tag: str) -> str:
        req = call.RemoteStartTransaction(id_tag=id_tag, connector_id=connector_id)
        logger.info(f"→ RemoteStartTransaction to {self.id} (connector={connector_id}, idTag={id_tag})")
        resp = await self.call(req)
        status = _status(resp)
        if status != "Accepted":
            logger.warning(f"RemoteStartTransaction rejected: {status}")
        return status

    async def remote_stop(self, transaction_id: int) -> str:
        req = call.RemoteStopTransaction(transaction_id=transaction_id)
        logger.info(f"→ RemoteStopTransaction to {self.id} (tx={transaction_id})")
        resp = await self.call(req)
        status = _status(resp)
        if status != "Accepted":
            logger.warning(f"RemoteStopTransaction rejected: {status}")
        return status

    async def unlock_connector(self, connector_id: int) -> str:
        req = call.UnlockConnector(connector_id=connector_id)
        logger.info(f"→ UnlockConnector to {self.id} (connector={connector_id})")
        resp = await self.call(req)
        logger.info(f"← UnlockConnector.conf: {resp}")
        return _status(resp)

    async def reserve_now(
        self,
        connector_id: int,
        expiry_date: datetime,
        id_tag: str,
        reservation_id: int,
        parent_id_tag: str | None = None,
    ) -> str:
        req = call.ReserveNow(
            connector_id=connector_id,
            expiry_date=to_iso(expiry_date),
            id_tag=id_tag,
            reservation_id=reservation_id,
            parent_id_tag=parent_id_tag,
        )
        logger.info(f"→ ReserveNow to {self.id} (connector={connector_id}, reservation={reservation_id})")
        resp = await self.call(req)
        logger.info(f"← ReserveNow.conf: {resp}")
        return _status(resp)

    @on(Action.boot_notification)
    async def on_boot_notification(self, charge_point_model, charge_point_vendor, **kwargs):
        logger.info(
            f"← BootNotification from vendor={charge_point_vendor}, model={charge_point_model}"
        )
        return call_result.BootNotification(
            current_time=to_iso(datetime.now(timezone.utc)),
            interval=300,
            status=RegistrationStatus.accepted,
        )

    @on(Action.heartbeat)
    def on_heartbeat(self, **kwargs):
        return call_result.Heartbeat(current_time=to_iso(datetime.now(timezone.utc)))

    @on(Action.status_notification)
    async def on_status_notification(self, connector_id, error_code, status, **kwargs):
        logger.info(
            f"← StatusNotification: {self.id} connector {connector_id} → status={status}, errorCode={error_code}"
        )
        return call_result.StatusNotification()


class OcppStationCommandService(StationCommandService):
    """Deliver station commands over the stations' OCPP websocket connections."""

    def __init__(self) -> None:
        self.connected_cps: Dict[str, CentralSystem] = {}

    def register(self, cp: CentralSystem) -> None:
        self.connected_cps[cp.id] = cp

    def unregister(self, cp_id: str) -> None:
        self.connected_cps.pop(cp_id, None)

    def _cp(self, station_id: str) -> CentralSystem:
        cp = self.connected_cps.get(station_id)
        if cp is None:
            raise StationUnavailableError(f"ChargePoint '{station_id}' not connected")
        return cp

    async def start_transaction(self, request: StartTransactionRequest) -> StationCommandResult:
        cp = self._cp(request.station_id)
        return StationCommandResult(await cp.remote_start(request.connector_id, request.id_tag))

    async def stop_transaction(self, request: StopTransactionRequest) -> StationCommandResult:
        cp = self._cp(request.station_id)
        return StationCommandResult(await cp.remote_stop(int(request.transaction_id)))

    async def unlock_connector(self, request: UnlockConnectorRequest) -> StationCommandResult:
        cp = self._cp(request.station_id)
        return StationCommandResult(await cp.unlock_connector(request.connector_id))

    async def reserve_now(self, request: ReserveNowRequest) -> StationCommandResult:
        cp = self._cp(request.station_id)
        status = await cp.reserve_now(
            request.connector_id,
            request.expiry_date,
            request.id_tag,
            request.reservation_id,
            request.parent_id_tag,
        )
        return StationCommandResult(status)
