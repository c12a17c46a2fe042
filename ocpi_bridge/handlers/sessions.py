"""Transaction and meter value events → session and CDR pushes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..broadcast.sessions import CdrBroadcaster, SessionBroadcaster
from ..cache import TOKEN_ID_TO_AUTH_REF_NAMESPACE, Cache
from ..events.dispatcher import ChangeEvent
from ..models import Transaction
from ..store import DataStore
from ..timeutil import parse_timestamp, utcnow
from .common import resolve_tenant

logger = logging.getLogger(__name__)

# readings this close to the transaction start are the Transaction.Begin value
BEGIN_TOLERANCE = timedelta(milliseconds=1000)


def is_transaction_begin(timestamp: Optional[datetime], start_time: Optional[datetime]) -> bool:
    if timestamp is None or start_time is None:
        return False
    return abs(timestamp - start_time) <= BEGIN_TOLERANCE


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def transaction_from_payload(payload: Dict[str, Any], tenant_id: int) -> Optional[Transaction]:
    """Transaction built from the event row alone; ``None`` without id or station."""
    try:
        return Transaction(
            id=int(payload["id"]),
            transaction_id=str(payload.get("transactionId") or payload["id"]),
            station_id=payload["stationId"],
            evse_id=_optional_int(payload.get("evseId")),
            connector_id=_optional_int(payload.get("connectorId")),
            location_id=_optional_int(payload.get("locationId")),
            tenant_id=tenant_id,
            authorization_id=_optional_int(payload.get("authorizationId")),
            tariff_id=_optional_int(payload.get("tariffId")),
            is_active=payload.get("isActive", True) is not False,
            start_time=parse_timestamp(payload.get("startTime")),
            end_time=parse_timestamp(payload.get("endTime")),
            total_kwh=float(payload.get("totalKwh") or 0.0),
            custom_data=dict(payload.get("customData") or {}),
            updated_at=parse_timestamp(payload.get("updatedAt")) or utcnow(),
        )
    except (KeyError, TypeError, ValueError):
        return None


class SessionEventHandlers:
    def __init__(
        self,
        store: DataStore,
        cache: Cache,
        sessions: SessionBroadcaster,
        cdrs: CdrBroadcaster,
    ) -> None:
        self.store = store
        self.cache = cache
        self.sessions = sessions
        self.cdrs = cdrs

    async def on_transaction_insert(self, event: ChangeEvent) -> None:
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        transaction_id = event.payload.get("id")
        transaction = await self.store.get_transaction(int(transaction_id)) if transaction_id else None
        if transaction is None:
            transaction = transaction_from_payload(event.payload, tenant.id)
            if transaction is None:
                logger.error(f"Full transaction not found for ID {transaction_id}, cannot broadcast.")
                return
            logger.warning(
                f"Full transaction not found for ID {transaction_id}, broadcasting from event payload"
            )
            if transaction.authorization_id is not None:
                transaction.authorization = await self.store.get_authorization(
                    transaction.authorization_id
                )

        await self._attach_authorization_reference(transaction)
        await self.sessions.put_session(tenant, transaction)

    async def _attach_authorization_reference(self, transaction: Transaction) -> None:
        authorization = transaction.authorization
        if authorization is None or not authorization.id_token:
            return
        try:
            reference = await self.cache.get_and_remove(
                authorization.id_token, TOKEN_ID_TO_AUTH_REF_NAMESPACE
            )
            if not reference:
                logger.debug(f"No authorization_reference cached for token {authorization.id_token}")
                return
            custom_data = dict(transaction.custom_data)
            custom_data["authorization_reference"] = reference
            await self.store.update_transaction_custom_data(transaction.id, custom_data)
            transaction.custom_data = custom_data
            logger.debug(
                f"Stored authorization_reference {reference} on transaction {transaction.id}"
            )
        except Exception:
            logger.exception(
                f"Error retrieving or storing authorization_reference for transaction {transaction.id}"
            )

    async def on_transaction_update(self, event: ChangeEvent) -> None:
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        transaction_id = event.payload.get("id")
        if transaction_id is None:
            logger.error(f"Transaction update {event.event_id} has no id, cannot broadcast.")
            return

        await self.sessions.patch_session(tenant, str(transaction_id), event.payload)

        if event.payload.get("isActive") is False:
            logger.debug(f"Transaction {transaction_id} is no longer active")
            transaction = await self.store.get_transaction(int(transaction_id))
            if transaction is None:
                logger.error(f"Full transaction not found for ID {transaction_id}, cannot send CDR.")
                return
            await self.cdrs.post_cdr(tenant, transaction)

    async def on_meter_value_insert(self, event: ChangeEvent) -> None:
        payload = event.payload
        tenant = await resolve_tenant(self.store, event)
        if tenant is None:
            return
        transaction_id = payload.get("transactionId")
        if not transaction_id:
            return
        if not payload.get("tariffId"):
            logger.warning(
                f"Tariff ID missing in meter value for transaction {transaction_id}, cannot broadcast."
            )
            return

        transaction = await self.store.get_transaction(int(transaction_id))
        if transaction is None:
            logger.warning(f"Transaction not found for meter value {payload.get('id')}")
            return
        if is_transaction_begin(parse_timestamp(payload.get("timestamp")), transaction.start_time):
            logger.debug(f"Skipping Transaction.Begin meter value for transaction {transaction_id}")
            return

        await self.sessions.patch_charging_period(tenant, transaction, payload)
