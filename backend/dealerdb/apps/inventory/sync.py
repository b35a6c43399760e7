"""
Lot sync and bulk import.

Both paths run raw rows through the serial decoder, drop the rows that do
not decode, and merge the survivors into the stored inventory. When the
batch belongs to a lot, each survivor also gets that lot as its
`lotLocation` override tag (never touching status or visibility). A bad
row is a warning, never a failed batch; a failed fetch is a SyncError for
that lot only.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from .cache import CacheTierResolver
from .decoder import decode
from .errors import PortalError, SyncError
from .lots import LotRegistry
from .overrides import OverrideStore
from .portal import to_price
from .store import INVENTORY_KEY

logger = logging.getLogger(__name__)


class InventorySource(Protocol):
    async def fetch_raw_inventory(self, credentials: Mapping[str, str]) -> List[Dict[str, Any]]:
        ...


class LotLockRegistry:
    """
    One asyncio.Lock per (dealer, lot), shared by every pipeline in the process.

    An entry lives only while some task holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._users: Dict[Tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, tenant_id: str, lot_name: str) -> AsyncIterator[None]:
        key = (tenant_id, lot_name)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"imported": self.imported, "skipped": self.skipped, "warnings": list(self.warnings)}


@dataclass
class SyncResult:
    lot_name: str
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "lotName": self.lot_name,
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


def _row_serial(row: Mapping[str, Any]) -> str:
    for name in ("serial", "serialNumber"):
        value = row.get(name)
        if value is not None:
            return str(value).strip()
    return ""


def _row_price(row: Mapping[str, Any]) -> Any:
    for name in ("price", "cashPrice"):
        if row.get(name) is not None:
            return row.get(name)
    return None


class InventorySyncPipeline:
    def __init__(
        self,
        resolver: CacheTierResolver,
        tenant_id: str,
        source: Optional[InventorySource] = None,
        locks: Optional[LotLockRegistry] = None,
    ) -> None:
        self._resolver = resolver
        self.tenant_id = tenant_id
        self._source = source
        self._locks = locks or LotLockRegistry()
        self.overrides = OverrideStore(resolver, tenant_id)
        self.lots = LotRegistry(resolver, tenant_id, overrides=self.overrides)

    async def _merge(self, raw_records: Iterable[Mapping[str, Any]], lot_name: Optional[str]) -> ImportResult:
        result = ImportResult()
        patches: Dict[str, Dict[str, Any]] = {}
        rows: Dict[str, Dict[str, Any]] = {}

        for position, row in enumerate(raw_records):
            if not isinstance(row, Mapping):
                result.skipped += 1
                result.warnings.append(f"Row {position}: not a record")
                continue
            serial = _row_serial(row)
            if not decode(serial).valid:
                result.skipped += 1
                result.warnings.append(f"Row {position}: invalid serial number {serial!r}")
                logger.warning(
                    "Skipping record with invalid serial",
                    extra={"tenant_id": self.tenant_id, "lot_name": lot_name, "serial": serial},
                )
                continue
            if serial in rows:
                result.skipped += 1
                result.warnings.append(f"Row {position}: duplicate serial number {serial!r}")
                continue

            rows[serial] = {
                "price": to_price(_row_price(row)),
                "location": row.get("location"),
                "lotName": lot_name or row.get("lotName"),
            }
            if lot_name:
                patches[serial] = {"lotLocation": lot_name}
            result.imported += 1

        if patches:
            await self.overrides.patch_many(patches)
        if rows:
            inventory = await self._resolver.read(self.tenant_id, INVENTORY_KEY, default=None) or {}
            inventory.update(rows)
            self._resolver.write(self.tenant_id, INVENTORY_KEY, inventory, changed=list(rows))
        return result

    async def import_batch(
        self,
        raw_records: Iterable[Mapping[str, Any]],
        lot_name: Optional[str] = None,
    ) -> ImportResult:
        if lot_name is None:
            result = await self._merge(raw_records, None)
        else:
            async with self._locks.hold(self.tenant_id, lot_name):
                result = await self._merge(raw_records, lot_name)
        logger.info(
            "Imported inventory batch",
            extra={"tenant_id": self.tenant_id, "lot_name": lot_name, "imported": result.imported, "skipped": result.skipped},
        )
        return result

    async def sync_lot(self, lot_name: str, credentials: Optional[Mapping[str, str]] = None) -> SyncResult:
        if self._source is None:
            raise SyncError(lot_name, "No inventory source configured")
        async with self._locks.hold(self.tenant_id, lot_name):
            lot = await self.lots.get_lot(lot_name)
            try:
                raw_records = await self._source.fetch_raw_inventory(credentials or lot.credentials)
            except PortalError as exc:
                logger.warning(
                    "Lot sync failed",
                    extra={"tenant_id": self.tenant_id, "lot_name": lot_name, "error": str(exc)},
                )
                raise SyncError(lot_name, str(exc)) from exc

            merged = await self._merge(raw_records, lot_name)
            await self.lots.record_sync(lot_name, datetime.now(timezone.utc), merged.imported)

        logger.info(
            "Lot synced",
            extra={"tenant_id": self.tenant_id, "lot_name": lot_name, "imported": merged.imported, "skipped": merged.skipped},
        )
        return SyncResult(lot_name=lot_name, imported=merged.imported, skipped=merged.skipped, errors=merged.warnings)

    async def sync_all_lots(self) -> Dict[str, Union[SyncResult, str]]:
        lots = await self.lots.list_lots()
        outcomes = await asyncio.gather(
            *(self.sync_lot(lot.name) for lot in lots),
            return_exceptions=True,
        )
        results: Dict[str, Union[SyncResult, str]] = {}
        for lot, outcome in zip(lots, outcomes):
            if isinstance(outcome, SyncError):
                results[lot.name] = outcome.message
            elif isinstance(outcome, BaseException):
                logger.warning(
                    "Lot sync raised unexpectedly",
                    extra={"tenant_id": self.tenant_id, "lot_name": lot.name, "error": str(outcome)},
                )
                results[lot.name] = str(outcome)
            else:
                results[lot.name] = outcome
        return results
