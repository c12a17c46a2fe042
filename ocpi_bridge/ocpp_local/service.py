"""Service interface for sending commands to charging stations.

The command executor only talks to this interface.  Implementations decide
how a command reaches the station; the bundled one is an OCPP 1.6 central
system (see :mod:`ocpi_bridge.central_server.charge_point`).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .domain import (
    ReserveNowRequest,
    StartTransactionRequest,
    StationCommandResult,
    StopTransactionRequest,
    UnlockConnectorRequest,
)


class StationUnavailableError(Exception):
    """The station is not reachable through this service."""


class StationCommandService(ABC):
    """Abstract service invoked by the command executor."""

    @abstractmethod
    async def start_transaction(self, request: StartTransactionRequest) -> StationCommandResult:
        """Request a remote start on the station."""

    @abstractmethod
    async def stop_transaction(self, request: StopTransactionRequest) -> StationCommandResult:
        """Request a remote stop of a running transaction."""

    @abstractmethod
    async def unlock_connector(self, request: UnlockConnectorRequest) -> StationCommandResult:
        """Unlock a connector."""

    @abstractmethod
    async def reserve_now(self, request: ReserveNowRequest) -> StationCommandResult:
        """Reserve a connector for an id tag."""
