"""Outbound HTTP pushes to roaming partners."""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

import httpx

from ..api.models import OcpiStatusCode
from ..exceptions import PartnerPushError
from ..models import Tenant, TenantPartner
from ..store import DataStore

logger = logging.getLogger(__name__)

RECEIVER = "RECEIVER"


class PartnerClient:
    """Send OCPI requests to the RECEIVER endpoints partners registered with us.

    A push counts as delivered only when the HTTP call succeeds *and* the
    partner's response body carries OCPI status code 1000.
    """

    def __init__(self, http: httpx.AsyncClient, store: DataStore) -> None:
        self.http = http
        self.store = store

    def _headers(self, tenant: Tenant, partner: TenantPartner) -> Dict[str, str]:
        token = base64.b64encode(partner.client_token.encode("utf-8")).decode("ascii")
        request_id = str(uuid4())
        return {
            "Authorization": f"Token {token}",
            "X-Request-ID": request_id,
            "X-Correlation-ID": request_id,
            "OCPI-from-country-code": tenant.country_code,
            "OCPI-from-party-id": tenant.party_id,
            "OCPI-to-country-code": partner.country_code,
            "OCPI-to-party-id": partner.party_id,
        }

    async def send(
        self,
        tenant: Tenant,
        partner: TenantPartner,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        logger.info(f"→ {method} {url} to {partner.country_code}*{partner.party_id}")
        try:
            resp = await self.http.request(
                method, url, json=body, headers=self._headers(tenant, partner)
            )
        except httpx.HTTPError as exc:
            raise PartnerPushError(f"{method} {url} failed: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        status_code = payload.get("status_code") if isinstance(payload, dict) else None
        logger.info(f"← {resp.status_code} from {url} (status_code={status_code})")
        if resp.is_error or status_code != OcpiStatusCode.SUCCESS:
            raise PartnerPushError(
                f"{method} {url} rejected: http={resp.status_code}, status_code={status_code}, "
                f"message={payload.get('status_message') if isinstance(payload, dict) else None}"
            )
        return payload

    async def broadcast(
        self,
        tenant: Tenant,
        module: str,
        method: str,
        path: str = "",
        body: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Push to every partner of ``tenant`` with a receiver endpoint for ``module``.

        Returns the number of partners that accepted the push.  A failing
        partner is logged and does not stop delivery to the others.
        """
        partners = await self.store.list_tenant_partners(tenant.id)
        delivered = 0
        for partner in partners:
            endpoint = partner.endpoint_for(module, RECEIVER)
            if not endpoint:
                logger.debug(
                    f"Partner {partner.country_code}*{partner.party_id} has no {module} receiver endpoint"
                )
                continue
            url = endpoint.rstrip("/") + path
            try:
                await self.send(tenant, partner, method, url, body)
                delivered += 1
            except PartnerPushError as exc:
                logger.error(
                    f"Broadcast {method} {module} to {partner.country_code}*{partner.party_id} failed: {exc}"
                )
        return delivered
