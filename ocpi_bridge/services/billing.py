"""Session cost including idle time.

Idle time is derived from the connector's status notifications: every span
that *starts* in one of :data:`IDLE_STATUSES` counts as idle.  The base cost
depends on the location's charge method from the external billing table.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Iterable, Optional

from ..models import StatusEvent, Tariff, Transaction
from ..store import DataStore

logger = logging.getLogger(__name__)

IDLE_STATUSES = frozenset({"SuspendedEVSE", "SuspendedEV", "Preparing"})


class ChargeMethod(str, Enum):
    PER_KWH = "PER_KWH"
    PER_MINUTE = "PER_MINUTE"
    FLAT_RATE = "FLAT_RATE"
    FREE = "FREE"


def compute_idle_duration(
    events: Iterable[StatusEvent], session_start: datetime, session_end: datetime
) -> timedelta:
    """Sweep ``events`` (ascending) and sum idle spans inside the window."""
    idle = timedelta(0)
    last_ts = session_start
    last_status: Optional[str] = None

    for event in events:
        if event.timestamp < session_start:
            # state entering the window; nothing to accumulate yet
            last_status = event.connector_status
            continue
        if event.timestamp > session_end:
            break
        if last_status in IDLE_STATUSES:
            idle += event.timestamp - last_ts
            logger.debug(
                f"Idle period | status {last_status} | {last_ts.isoformat()} -> "
                f"{event.timestamp.isoformat()}"
            )
        last_ts = event.timestamp
        last_status = event.connector_status

    if last_status in IDLE_STATUSES:
        idle += session_end - last_ts
    return idle


def round_down_cents(amount: float) -> float:
    return float(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_DOWN))


def base_cost(charge_method: str, tariff: Optional[Tariff], total_kwh: float, hours: float) -> float:
    price_per_kwh = tariff.price_per_kwh if tariff else 0.0
    price_per_min = tariff.price_per_min if tariff else 0.0
    price_flat = tariff.price_per_session if tariff else 0.0

    if charge_method == ChargeMethod.PER_KWH:
        return total_kwh * price_per_kwh
    if charge_method == ChargeMethod.PER_MINUTE:
        return hours * 60 * price_per_min
    if charge_method == ChargeMethod.FLAT_RATE:
        return price_flat
    if charge_method == ChargeMethod.FREE:
        return 0.0
    logger.warning(f"Unknown charge method {charge_method}")
    return 0.0


class CostCalculator:
    def __init__(self, store: DataStore) -> None:
        self.store = store

    async def idle_duration(self, transaction: Transaction) -> timedelta:
        """Idle time inside the transaction window; zero when it cannot be derived."""
        if not (
            transaction.station_id
            and transaction.connector_id
            and transaction.tenant_id
            and transaction.start_time
            and transaction.end_time
        ):
            logger.debug(
                f"Skipping idle calculation for tx {transaction.transaction_id}: "
                "missing station/connector/tenant or session window"
            )
            return timedelta(0)

        try:
            events = await self.store.get_status_events(
                transaction.station_id,
                transaction.connector_id,
                transaction.tenant_id,
                transaction.start_time,
                transaction.end_time,
            )
        except Exception:
            logger.warning(
                f"Failed to fetch status notifications for transaction {transaction.transaction_id}",
                exc_info=True,
            )
            return timedelta(0)
        logger.debug(
            f"Fetched {len(events)} status notifications for tx {transaction.transaction_id}"
        )
        return compute_idle_duration(events, transaction.start_time, transaction.end_time)

    async def total_cost(
        self,
        transaction: Transaction,
        tariff: Optional[Tariff],
        idle: Optional[timedelta] = None,
    ) -> float:
        """Base plus idle cost, rounded down to cents; 0 when billing data is missing.

        Pass ``idle`` when it is already known to avoid a second status query.
        """
        try:
            if transaction.location_id is None:
                logger.warning(f"No location for transaction {transaction.transaction_id}")
                return 0.0
            billing = await self.store.get_location_billing(transaction.location_id)
            if billing is None:
                logger.warning(
                    f"No billing configuration for location {transaction.location_id}, "
                    f"transaction {transaction.transaction_id}"
                )
                return 0.0

            hours = 0.0
            if transaction.start_time and transaction.end_time:
                hours = (transaction.end_time - transaction.start_time).total_seconds() / 3600
            cost = base_cost(billing.charge_method, tariff, transaction.total_kwh or 0.0, hours)

            idle_cost = 0.0
            if billing.idle_rate:
                if idle is None:
                    idle = await self.idle_duration(transaction)
                idle_cost = idle.total_seconds() / 3600 * 60 * billing.idle_rate

            total = round_down_cents(cost + idle_cost)
            logger.debug(
                f"Cost for tx {transaction.transaction_id} | base {cost} | idle {idle_cost} "
                f"| total {total} | method {billing.charge_method}"
            )
            return total
        except Exception:
            logger.warning(
                f"Failed to calculate cost for transaction {transaction.transaction_id}",
                exc_info=True,
            )
            return 0.0
