"""Translate core records and change payloads into OCPI objects.

Change-event payloads use the core's camelCase field names; the OCPI side is
snake_case.  PATCH bodies only carry the fields present in the payload plus
``last_updated``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..api.models import TokenType
from ..exceptions import OcpiError
from ..models import (
    Authorization,
    ChargingStation,
    Connector,
    Evse,
    Location,
    Tariff,
    Tenant,
    Transaction,
)
from ..services.token_identity import authorization_to_token, to_token_type
from ..timeutil import parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)

SESSION_ACTIVE = "ACTIVE"
SESSION_COMPLETED = "COMPLETED"

AUTH_METHOD_COMMAND = "COMMAND"
AUTH_METHOD_WHITELIST = "WHITELIST"

ENERGY_MEASURAND = "Energy.Active.Import.Register"
_DIMENSIONS = {
    "Power.Active.Import": "POWER",
    "Current.Import": "CURRENT",
    "SoC": "STATE_OF_CHARGE",
}

_CHARGING_STATUSES = {"Charging", "SuspendedEV", "SuspendedEVSE", "Finishing", "Occupied"}
_AVAILABLE_STATUSES = {"Available", "Preparing"}

_LOCATION_FIELDS = {
    "name": "name",
    "address": "address",
    "city": "city",
    "postalCode": "postal_code",
    "country": "country",
    "timeZone": "time_zone",
    "publish": "publish",
}
_CONNECTOR_FIELDS = {
    "type": "standard",
    "format": "format",
    "powerType": "power_type",
    "maxVoltage": "max_voltage",
    "maxAmperage": "max_amperage",
}


def uid_format(station_id: str, evse_id: int) -> str:
    return f"{station_id}-{evse_id}"


def extract_station_id(evse_uid: str) -> str:
    """Recover the station id from an EVSE uid; station ids may contain dashes."""
    station_id, sep, _ = evse_uid.rpartition("-")
    return station_id if sep else evse_uid


def extract_evse_id(evse_uid: str) -> Optional[int]:
    _, sep, evse_id = evse_uid.rpartition("-")
    if not sep:
        return None
    try:
        return int(evse_id)
    except ValueError:
        return None


def evse_status_from_connectors(connectors: Iterable[Connector]) -> str:
    """Aggregate connector statuses into one OCPI EVSE status.

    Priority: CHARGING, RESERVED, AVAILABLE, OUTOFORDER, INOPERATIVE, UNKNOWN.
    """
    statuses = {c.status for c in connectors}
    if statuses & _CHARGING_STATUSES:
        return "CHARGING"
    if "Reserved" in statuses:
        return "RESERVED"
    if statuses & _AVAILABLE_STATUSES:
        return "AVAILABLE"
    if "Faulted" in statuses:
        return "OUTOFORDER"
    if "Unavailable" in statuses:
        return "INOPERATIVE"
    return "UNKNOWN"


def evse_status(station: ChargingStation, evse_id: int) -> str:
    if not station.is_online:
        return "UNKNOWN"
    return evse_status_from_connectors(c for c in station.connectors if c.evse_id == evse_id)


# Tokens --------------------------------------------------------------------


def cdr_token(authorization: Optional[Authorization]) -> Optional[Dict[str, Any]]:
    if authorization is None:
        return None
    try:
        token = authorization_to_token(authorization)
    except OcpiError as exc:
        # incomplete authorizations still identify the driver by id token
        logger.debug(f"Falling back to id token for authorization {authorization.id}: {exc}")
        partner = authorization.tenant_partner
        try:
            token_type = to_token_type(authorization.id_token_type)
        except OcpiError:
            token_type = TokenType.OTHER
        return {
            "country_code": partner.country_code if partner else None,
            "party_id": partner.party_id if partner else None,
            "uid": authorization.id_token,
            "type": token_type.value,
            "contract_id": authorization.id_token,
        }
    return {
        "country_code": token.country_code,
        "party_id": token.party_id,
        "uid": token.uid,
        "type": token.type.value,
        "contract_id": token.contract_id,
    }


# Sessions ------------------------------------------------------------------


def _sampled_value(sample: Dict[str, Any]) -> Optional[float]:
    try:
        return float(sample.get("value"))
    except (TypeError, ValueError):
        return None


def _unit(sample: Dict[str, Any]) -> Optional[str]:
    unit = sample.get("unitOfMeasure") or {}
    if isinstance(unit, dict):
        return unit.get("unit")
    return sample.get("unit")


def charging_period(
    timestamp: Any, sampled_values: List[Dict[str, Any]], tariff_id: Optional[int] = None
) -> Dict[str, Any]:
    """Build an OCPI charging period from one meter value."""
    dimensions: List[Dict[str, Any]] = []
    for sample in sampled_values or []:
        value = _sampled_value(sample)
        if value is None:
            continue
        measurand = sample.get("measurand") or ENERGY_MEASURAND
        unit = _unit(sample)
        if measurand == ENERGY_MEASURAND:
            kwh = value if unit == "kWh" else value / 1000
            dimensions.append({"type": "ENERGY", "volume": kwh})
        elif measurand in _DIMENSIONS:
            volume = value / 1000 if unit == "W" else value
            dimensions.append({"type": _DIMENSIONS[measurand], "volume": volume})
    period: Dict[str, Any] = {
        "start_date_time": to_iso(timestamp),
        "dimensions": dimensions,
    }
    if tariff_id is not None:
        period["tariff_id"] = str(tariff_id)
    return period


def session_from_transaction(
    tenant: Tenant, transaction: Transaction, tariff: Optional[Tariff] = None
) -> Dict[str, Any]:
    authorization_reference = transaction.custom_data.get("authorization_reference")
    periods = [
        charging_period(mv.timestamp, mv.sampled_value, mv.tariff_id)
        for mv in sorted(transaction.meter_values, key=lambda mv: mv.timestamp)
    ]
    session: Dict[str, Any] = {
        "country_code": tenant.country_code,
        "party_id": tenant.party_id,
        "id": str(transaction.id),
        "start_date_time": to_iso(transaction.start_time or transaction.updated_at),
        "end_date_time": to_iso(transaction.end_time),
        "kwh": transaction.total_kwh or 0.0,
        "cdr_token": cdr_token(transaction.authorization),
        "auth_method": AUTH_METHOD_COMMAND if authorization_reference else AUTH_METHOD_WHITELIST,
        "authorization_reference": authorization_reference,
        "location_id": str(transaction.location_id) if transaction.location_id is not None else None,
        "evse_uid": (
            uid_format(transaction.station_id, transaction.evse_id)
            if transaction.evse_id is not None
            else None
        ),
        "connector_id": (
            str(transaction.connector_id) if transaction.connector_id is not None else None
        ),
        "currency": tariff.currency if tariff else "EUR",
        "charging_periods": periods,
        "status": SESSION_ACTIVE if transaction.is_active else SESSION_COMPLETED,
        "last_updated": to_iso(transaction.updated_at),
    }
    return session


def session_patch(payload: Dict[str, Any]) -> Dict[str, Any]:
    """PATCH body for a partial transaction update."""
    body: Dict[str, Any] = {}
    if "isActive" in payload:
        body["status"] = SESSION_ACTIVE if payload["isActive"] else SESSION_COMPLETED
    if payload.get("totalKwh") is not None:
        body["kwh"] = payload["totalKwh"]
    if "startTime" in payload:
        body["start_date_time"] = to_iso(payload["startTime"])
    if "endTime" in payload:
        body["end_date_time"] = to_iso(payload["endTime"])
    body["last_updated"] = to_iso(payload.get("updatedAt") or utcnow())
    return body


# Locations -----------------------------------------------------------------


def connector_to_ocpi(connector: Connector) -> Dict[str, Any]:
    return {
        "id": str(connector.connector_id),
        "standard": connector.type,
        "format": connector.format,
        "power_type": connector.power_type,
        "max_voltage": connector.max_voltage,
        "max_amperage": connector.max_amperage,
        "last_updated": to_iso(connector.updated_at),
    }


def connector_patch(payload: Dict[str, Any]) -> Dict[str, Any]:
    body = {
        ocpi_key: payload[key] for key, ocpi_key in _CONNECTOR_FIELDS.items() if key in payload
    }
    body["last_updated"] = to_iso(payload.get("updatedAt") or utcnow())
    return body


def evse_to_ocpi(station: ChargingStation, evse: Evse) -> Dict[str, Any]:
    connectors = [c for c in station.connectors if c.evse_id == evse.id]
    return {
        "uid": uid_format(station.id, evse.id),
        "evse_id": uid_format(station.id, evse.id),
        "status": evse_status(station, evse.id),
        "connectors": [connector_to_ocpi(c) for c in connectors],
        "last_updated": to_iso(evse.updated_at),
    }


def location_to_ocpi(
    tenant: Tenant, location: Location, stations: Iterable[ChargingStation] = ()
) -> Dict[str, Any]:
    evses = [evse_to_ocpi(station, evse) for station in stations for evse in station.evses]
    return {
        "country_code": tenant.country_code,
        "party_id": tenant.party_id,
        "id": str(location.id),
        "publish": location.publish,
        "name": location.name,
        "address": location.address,
        "city": location.city,
        "postal_code": location.postal_code,
        "country": location.country,
        "coordinates": {
            "latitude": str(location.latitude),
            "longitude": str(location.longitude),
        },
        "time_zone": location.time_zone,
        "evses": evses,
        "last_updated": to_iso(location.updated_at),
    }


def location_patch(payload: Dict[str, Any]) -> Dict[str, Any]:
    body = {
        ocpi_key: payload[key] for key, ocpi_key in _LOCATION_FIELDS.items() if key in payload
    }
    coordinates = payload.get("coordinates")
    if isinstance(coordinates, dict):
        body["coordinates"] = {k: str(v) for k, v in coordinates.items()}
    elif "latitude" in payload and "longitude" in payload:
        body["coordinates"] = {
            "latitude": str(payload["latitude"]),
            "longitude": str(payload["longitude"]),
        }
    body["last_updated"] = to_iso(payload.get("updatedAt") or utcnow())
    return body


def hours_between(start: Any, end: Any) -> float:
    start_dt, end_dt = parse_timestamp(start), parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return 0.0
    return (end_dt - start_dt).total_seconds() / 3600
