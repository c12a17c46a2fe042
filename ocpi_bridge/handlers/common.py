from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..events.dispatcher import ChangeEvent
from ..models import Tenant
from ..store import DataStore

logger = logging.getLogger(__name__)


def _tenant_from_payload(data: Dict[str, Any]) -> Optional[Tenant]:
    try:
        return Tenant(id=int(data["id"]), country_code=data["countryCode"], party_id=data["partyId"])
    except (KeyError, TypeError, ValueError):
        return None


async def resolve_tenant(store: DataStore, event: ChangeEvent) -> Optional[Tenant]:
    """Tenant the event belongs to, from the embedded ``tenant`` or ``tenantId``.

    Logs and returns ``None`` when neither resolves; the caller drops the event.
    """
    payload = event.payload
    tenant = None
    if isinstance(payload.get("tenant"), dict):
        tenant = _tenant_from_payload(payload["tenant"])
    if tenant is None and payload.get("tenantId") is not None:
        tenant = await store.get_tenant(int(payload["tenantId"]))
    if tenant is None:
        logger.error(
            f"Tenant data missing in {event.event_type.value} notification for "
            f"{event.entity_type.value} {payload.get('id')}, cannot broadcast."
        )
    return tenant
