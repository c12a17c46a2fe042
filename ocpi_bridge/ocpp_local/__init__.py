"""Station command abstractions shared by the executor and OCPP transport."""

from .domain import (
    ReserveNowRequest,
    StartTransactionRequest,
    StationCommandResult,
    StopTransactionRequest,
    UnlockConnectorRequest,
)
from .service import StationCommandService, StationUnavailableError

__all__ = [
    "ReserveNowRequest",
    "StartTransactionRequest",
    "StationCommandResult",
    "StopTransactionRequest",
    "UnlockConnectorRequest",
    "StationCommandService",
    "StationUnavailableError",
]
