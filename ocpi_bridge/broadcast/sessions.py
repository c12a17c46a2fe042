"""Session and CDR pushes to partner receiver endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..models import Tariff, Tenant, Transaction
from ..services.billing import CostCalculator
from ..store import DataStore
from ..timeutil import to_iso, utcnow
from . import mappers
from .pusher import PartnerClient

logger = logging.getLogger(__name__)

SESSIONS_MODULE = "sessions"
CDRS_MODULE = "cdrs"


def _session_path(tenant: Tenant, session_id: str) -> str:
    return f"/{tenant.country_code}/{tenant.party_id}/{session_id}"


class SessionBroadcaster:
    def __init__(self, partners: PartnerClient, store: DataStore) -> None:
        self.partners = partners
        self.store = store

    async def _tariff(self, tariff_id: Optional[int]) -> Optional[Tariff]:
        if tariff_id is None:
            return None
        return await self.store.get_tariff(tariff_id)

    async def put_session(self, tenant: Tenant, transaction: Transaction) -> int:
        tariff = await self._tariff(transaction.tariff_id)
        session = mappers.session_from_transaction(tenant, transaction, tariff)
        logger.info(f"→ PUT session {transaction.id}")
        return await self.partners.broadcast(
            tenant, SESSIONS_MODULE, "PUT", _session_path(tenant, str(transaction.id)), session
        )

    async def patch_session(self, tenant: Tenant, session_id: str, payload: Dict[str, Any]) -> int:
        body = mappers.session_patch(payload)
        logger.info(f"→ PATCH session {session_id}: {sorted(body)}")
        return await self.partners.broadcast(
            tenant, SESSIONS_MODULE, "PATCH", _session_path(tenant, session_id), body
        )

    async def patch_charging_period(
        self, tenant: Tenant, transaction: Transaction, meter_value: Dict[str, Any]
    ) -> int:
        period = mappers.charging_period(
            meter_value.get("timestamp"),
            meter_value.get("sampledValue") or [],
            meter_value.get("tariffId"),
        )
        body = {
            "charging_periods": [period],
            "last_updated": to_iso(meter_value.get("updatedAt") or utcnow()),
        }
        logger.info(
            f"→ PATCH session {transaction.id} charging period at {period['start_date_time']}"
        )
        return await self.partners.broadcast(
            tenant,
            SESSIONS_MODULE,
            "PATCH",
            _session_path(tenant, str(transaction.id)),
            body,
        )


class CdrBroadcaster:
    """Build a CDR for a finished transaction and POST it to every partner."""

    def __init__(self, partners: PartnerClient, store: DataStore, calculator: CostCalculator) -> None:
        self.partners = partners
        self.store = store
        self.calculator = calculator

    async def build_cdr(self, tenant: Tenant, transaction: Transaction) -> Dict[str, Any]:
        tariff = None
        if transaction.tariff_id is not None:
            tariff = await self.store.get_tariff(transaction.tariff_id)
        session = mappers.session_from_transaction(tenant, transaction, tariff)

        idle = await self.calculator.idle_duration(transaction)
        total_cost = await self.calculator.total_cost(transaction, tariff, idle)

        cdr_location: Dict[str, Any] = {
            "id": session["location_id"],
            "evse_uid": session["evse_uid"],
            "evse_id": session["evse_uid"],
            "connector_id": session["connector_id"],
        }
        if transaction.location_id is not None:
            location = await self.store.get_location(transaction.location_id)
            if location is not None:
                cdr_location.update(
                    {
                        "name": location.name,
                        "address": location.address,
                        "city": location.city,
                        "postal_code": location.postal_code,
                        "country": location.country,
                        "coordinates": {
                            "latitude": str(location.latitude),
                            "longitude": str(location.longitude),
                        },
                    }
                )

        return {
            "country_code": tenant.country_code,
            "party_id": tenant.party_id,
            "id": session["id"],
            "start_date_time": session["start_date_time"],
            "end_date_time": session["end_date_time"],
            "session_id": session["id"],
            "cdr_token": session["cdr_token"],
            "auth_method": session["auth_method"],
            "authorization_reference": session["authorization_reference"],
            "cdr_location": cdr_location,
            "currency": session["currency"],
            "charging_periods": session["charging_periods"],
            "total_cost": {"excl_vat": total_cost},
            "total_energy": transaction.total_kwh or 0.0,
            "total_time": mappers.hours_between(transaction.start_time, transaction.end_time),
            "total_parking_time": idle.total_seconds() / 3600,
            "last_updated": to_iso(transaction.updated_at),
        }

    async def post_cdr(self, tenant: Tenant, transaction: Transaction) -> int:
        cdr = await self.build_cdr(tenant, transaction)
        logger.info(
            f"→ POST cdr {cdr['id']} (total_cost={cdr['total_cost']['excl_vat']} {cdr['currency']})"
        )
        return await self.partners.broadcast(tenant, CDRS_MODULE, "POST", "", cdr)
