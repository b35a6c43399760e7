from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional

from .blobs import BlobStore
from .cache import AuthoritativeStore, CacheTierResolver, LegacyStore, SessionCache
from .decoder import decode
from .images import ImageOrderReconciler
from .lots import LotRegistry
from .overrides import OverrideRecord, OverrideStore
from .store import INVENTORY_KEY
from .sync import InventorySource, InventorySyncPipeline, LotLockRegistry

logger = logging.getLogger(__name__)

RESOLVER_IDLE_SEC = float(os.getenv("INVENTORY_RESOLVER_IDLE_SEC", "900"))


def _building_view(serial: str, row: Dict[str, Any], override: OverrideRecord) -> Optional[Dict[str, Any]]:
    attributes = decode(serial)
    if not attributes.valid:
        return None
    return {
        "serial_number": serial,
        "title": attributes.title,
        "decoded": attributes.as_dict(),
        "is_repo": attributes.is_repo,
        "price": row.get("price"),
        "location": row.get("location"),
        "lot_name": row.get("lotName"),
        "status": override.effective_status,
        "hidden": override.is_hidden,
        "lot_location": override.lot_location,
        "version": override.version,
    }


async def list_inventory(
    resolver: CacheTierResolver,
    *,
    dealer_id: str,
    include_hidden: bool = True,
) -> List[Dict[str, Any]]:
    """Stored rows joined with decoded attributes and overrides, ordered by serial."""
    inventory = await resolver.read(dealer_id, INVENTORY_KEY, default=None) or {}
    overrides = await OverrideStore(resolver, dealer_id).all_overrides()

    views: List[Dict[str, Any]] = []
    for serial in sorted(inventory):
        override = overrides.get(serial) or OverrideRecord(serial=serial)
        if override.is_hidden and not include_hidden:
            continue
        view = _building_view(serial, inventory[serial] or {}, override)
        if view is None:
            logger.warning("Stored inventory row has an invalid serial", extra={"dealer_id": dealer_id, "serial": serial})
            continue
        views.append(view)
    return views


async def remove_building(
    resolver: CacheTierResolver,
    *,
    dealer_id: str,
    serial: str,
    images: Optional[ImageOrderReconciler] = None,
) -> bool:
    """Remove the stored row, its override and its saved image order. Returns False if nothing was stored."""
    inventory = await resolver.read(dealer_id, INVENTORY_KEY, default=None) or {}
    found = serial in inventory
    if found:
        del inventory[serial]
        resolver.write(dealer_id, INVENTORY_KEY, inventory, changed=[serial])

    removed_override = await OverrideStore(resolver, dealer_id).remove_override(serial)
    removed_order = await images.forget(serial) if images is not None else False
    if found or removed_override or removed_order:
        logger.info("Removed building", extra={"dealer_id": dealer_id, "serial": serial})
    return found or removed_override or removed_order


class InventoryRuntime:
    """
    Process-wide collaborators plus one resolver per dealer.

    A dealer's resolver is created on first use and dropped once it has
    been idle for `idle_seconds` with no writes in flight. Its session cache
    is cleared at the start of every request, so a request never serves
    state cached by an earlier one. The lot lock registry is shared by all
    dealers so two requests syncing the same lot never overlap.
    """

    def __init__(
        self,
        authoritative: AuthoritativeStore,
        legacy: LegacyStore,
        blobs: BlobStore,
        source: Optional[InventorySource] = None,
        locks: Optional[LotLockRegistry] = None,
        idle_seconds: float = RESOLVER_IDLE_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.authoritative = authoritative
        self.legacy = legacy
        self.blobs = blobs
        self.source = source
        self.locks = locks or LotLockRegistry()
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._resolvers: Dict[str, CacheTierResolver] = {}
        self._last_used: Dict[str, float] = {}

    def resolver_for(self, dealer_id: str) -> CacheTierResolver:
        resolver = self._resolvers.get(dealer_id)
        if resolver is None:
            resolver = CacheTierResolver(self.authoritative, self.legacy, SessionCache(dealer_id))
            self._resolvers[dealer_id] = resolver
        self._last_used[dealer_id] = self._clock()
        return resolver

    def resolvers(self) -> List[CacheTierResolver]:
        return list(self._resolvers.values())

    def begin_request(self, dealer_id: str) -> CacheTierResolver:
        self.evict_idle()
        resolver = self.resolver_for(dealer_id)
        resolver.session.clear()
        return resolver

    def evict_idle(self) -> int:
        now = self._clock()
        evicted = 0
        for dealer_id, resolver in list(self._resolvers.items()):
            if now - self._last_used.get(dealer_id, now) < self.idle_seconds or resolver.pending_writes:
                continue
            if resolver.failed_writes:
                logger.warning(
                    "Dropping idle resolver with failed writes",
                    extra={"dealer_id": dealer_id, "failed_writes": len(resolver.failed_writes)},
                )
            del self._resolvers[dealer_id]
            self._last_used.pop(dealer_id, None)
            evicted += 1
        return evicted

    def logout(self, dealer_id: str) -> None:
        resolver = self._resolvers.get(dealer_id)
        if resolver is not None:
            resolver.logout()

    def overrides(self, dealer_id: str) -> OverrideStore:
        return OverrideStore(self.resolver_for(dealer_id), dealer_id)

    def images(self, dealer_id: str) -> ImageOrderReconciler:
        return ImageOrderReconciler(self.resolver_for(dealer_id), dealer_id, self.blobs)

    def lots(self, dealer_id: str) -> LotRegistry:
        return LotRegistry(self.resolver_for(dealer_id), dealer_id)

    def pipeline(self, dealer_id: str) -> InventorySyncPipeline:
        return InventorySyncPipeline(self.resolver_for(dealer_id), dealer_id, self.source, locks=self.locks)

    async def flush(self) -> None:
        for resolver in list(self._resolvers.values()):
            await resolver.flush()
