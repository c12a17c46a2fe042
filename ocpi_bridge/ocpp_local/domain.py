"""Transport-independent station command payloads.

These dataclasses are what the command executor hands to a
:class:`~ocpi_bridge.ocpp_local.service.StationCommandService`.  Connector
ids are the station's own (OCPP) connector numbers, never the core's row ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class StartTransactionRequest:
    """Ask a station to start charging for ``id_tag``."""

    station_id: str
    id_tag: str
    connector_id: Optional[int] = None


@dataclass(slots=True)
class StopTransactionRequest:
    station_id: str
    transaction_id: str


@dataclass(slots=True)
class UnlockConnectorRequest:
    station_id: str
    connector_id: int


@dataclass(slots=True)
class ReserveNowRequest:
    station_id: str
    connector_id: int
    id_tag: str
    reservation_id: int
    expiry_date: datetime
    parent_id_tag: Optional[str] = None


@dataclass(slots=True)
class StationCommandResult:
    """Outcome reported by the station, e.g. ``Accepted`` or ``Rejected``."""

    status: str
