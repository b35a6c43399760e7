"""
Custom image ordering on top of the blob listing.

The blob store is the authority on which images exist; the dealer's saved
order only says how to arrange them. `reconcile` drops saved URLs whose
blobs are gone and appends new uploads at the end, so the effective order
is always a permutation of what is actually stored.
"""

from __future__ import annotations

import logging
import os
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .blobs import BlobStore
from .cache import CacheTierResolver
from .errors import ImageLimitError, ImageNotFoundError
from .store import IMAGE_ORDERS_KEY

logger = logging.getLogger(__name__)

MAX_IMAGES = int(os.getenv("INVENTORY_MAX_IMAGES", "5"))

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


def reconcile(authoritative_urls: Sequence[str], custom_order: Optional[Sequence[str]]) -> List[str]:
    if custom_order is None:
        return list(authoritative_urls)
    remaining = Counter(authoritative_urls)
    result: List[str] = []
    for url in custom_order:
        if remaining[url] > 0:
            result.append(url)
            remaining[url] -= 1
    for url in authoritative_urls:
        if remaining[url] > 0:
            result.append(url)
            remaining[url] -= 1
    return result


def move_to_front(order: Sequence[str], url: str) -> List[str]:
    return move_to(order, url, 0)


def move_to(order: Sequence[str], url: str, target_index: int) -> List[str]:
    if url not in order:
        raise ImageNotFoundError(url)
    result = list(order)
    result.remove(url)
    target_index = max(0, min(int(target_index), len(result)))
    result.insert(target_index, url)
    return result


def _sort_listing(listing: Sequence[dict]) -> List[str]:
    """Newest upload first."""
    ordered = sorted(
        listing,
        key=lambda blob: (str(blob.get("uploadedAt") or ""), blob["url"]),
        reverse=True,
    )
    return [blob["url"] for blob in ordered]


def _safe_filename(filename: str) -> str:
    name = _UNSAFE_FILENAME.sub("-", os.path.basename(filename or "")).strip("-.")
    return name or "image"


class ImageOrderReconciler:
    def __init__(
        self,
        resolver: CacheTierResolver,
        tenant_id: str,
        blobs: BlobStore,
        max_images: int = MAX_IMAGES,
    ) -> None:
        self._resolver = resolver
        self.tenant_id = tenant_id
        self._blobs = blobs
        self.max_images = max_images

    reconcile = staticmethod(reconcile)

    def prefix(self, serial: str) -> str:
        return f"{self.tenant_id}/buildings/{serial}/"

    async def _orders(self) -> Dict[str, List[str]]:
        return await self._resolver.read(self.tenant_id, IMAGE_ORDERS_KEY, default=None) or {}

    def _save_orders(self, orders: Dict[str, List[str]], serial: str) -> None:
        self._resolver.write(self.tenant_id, IMAGE_ORDERS_KEY, orders, changed=[serial])

    async def _store_order(self, serial: str, order: List[str]) -> None:
        orders = await self._orders()
        orders[serial] = list(order)
        self._save_orders(orders, serial)

    async def authoritative_urls(self, serial: str) -> List[str]:
        listing = await self._blobs.list(self.prefix(serial))
        return _sort_listing(listing)

    async def custom_order(self, serial: str) -> Optional[List[str]]:
        return (await self._orders()).get(serial)

    async def get_images(self, serial: str) -> List[str]:
        authoritative = await self.authoritative_urls(serial)
        custom = await self.custom_order(serial)
        effective = reconcile(authoritative, custom)
        if custom is not None and effective != list(custom):
            await self._store_order(serial, effective)
        return effective

    async def set_main_image(self, serial: str, url: str) -> List[str]:
        order = move_to_front(await self.get_images(serial), url)
        await self._store_order(serial, order)
        return order

    async def reorder(self, serial: str, dragged_url: str, target_index: int) -> List[str]:
        order = move_to(await self.get_images(serial), dragged_url, target_index)
        await self._store_order(serial, order)
        return order

    async def upload_image(self, serial: str, filename: str, data: bytes) -> str:
        existing = await self.authoritative_urls(serial)
        if len(existing) >= self.max_images:
            raise ImageLimitError(f"Maximum {self.max_images} images per building")
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        blob = await self._blobs.put(f"{self.prefix(serial)}{stamp}-{_safe_filename(filename)}", data)
        logger.info("Uploaded building image", extra={"tenant_id": self.tenant_id, "serial": serial})
        return blob["url"]

    async def delete_image(self, serial: str, url: str) -> List[str]:
        if url not in await self.authoritative_urls(serial):
            raise ImageNotFoundError(url)
        await self._blobs.delete(url)
        return await self.get_images(serial)

    async def forget(self, serial: str) -> bool:
        orders = await self._orders()
        if serial not in orders:
            return False
        del orders[serial]
        self._save_orders(orders, serial)
        return True
