"""
Dealer-portal client.

The portal answers a GET with the dealer's current stock for one lot. The
body is JSON, either a bare array of rows or `{"success": ..., "inventory":
[...]}`. Rows carry `serialNumber` (or `serial`), `cashPrice` (or `price`)
and optionally `location`; everything else is ignored.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .errors import PortalError

logger = logging.getLogger(__name__)

DEALER_PORTAL_URL = os.getenv("DEALER_PORTAL_URL", "https://www.bscnow.com/GPWebAPI/Default.aspx")
DEALER_PORTAL_TIMEOUT_SEC = float(os.getenv("DEALER_PORTAL_TIMEOUT_SEC", "30") or "30")


def to_price(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace("$", "").replace(",", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return None


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    serial = row.get("serialNumber")
    if serial is None:
        serial = row.get("serial")
    price = row.get("cashPrice")
    if price is None:
        price = row.get("price")
    return {
        "serial": "" if serial is None else str(serial),
        "price": to_price(price),
        "location": row.get("location"),
    }


def parse_inventory(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, Mapping):
        if payload.get("success") is False:
            raise PortalError(str(payload.get("error") or "Portal reported failure"))
        payload = payload.get("inventory", payload.get("data"))
    if not isinstance(payload, list):
        raise PortalError("Portal response is not a list of inventory rows")
    return [normalize_row(row) for row in payload if isinstance(row, Mapping)]


class DealerPortalClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url or DEALER_PORTAL_URL
        self.timeout = timeout if timeout is not None else DEALER_PORTAL_TIMEOUT_SEC
        self._transport = transport

    async def _fetch(self, params: Dict[str, str]) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.base_url, params=params)
        if response.status_code in (401, 403):
            raise PortalError("Portal rejected the lot credentials", status_code=response.status_code)
        if response.status_code >= 400:
            raise PortalError(f"Portal returned {response.status_code}", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise PortalError("Portal returned a non-JSON body") from exc

    async def fetch_raw_inventory(self, credentials: Mapping[str, str]) -> List[Dict[str, Any]]:
        username = (credentials or {}).get("username")
        password = (credentials or {}).get("password")
        if not username or not password:
            raise PortalError("Missing dealer number or password")
        try:
            payload = await self._fetch({"DealerNumber": username, "Password": password})
        except httpx.HTTPError as exc:
            logger.warning("Dealer portal request failed", extra={"dealer_number": username, "error": str(exc)})
            raise PortalError(f"Portal request failed: {exc}") from exc
        rows = parse_inventory(payload)
        logger.info("Fetched portal inventory", extra={"dealer_number": username, "rows": len(rows)})
        return rows
