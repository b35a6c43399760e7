from __future__ import annotations

import asyncio
import os
import threading

import pytest

from dealerdb.apps.inventory.blobs import FilesystemBlobStore
from dealerdb.apps.inventory.cache import CacheTierResolver
from dealerdb.apps.inventory.errors import ImageLimitError, ImageNotFoundError
from dealerdb.apps.inventory.images import ImageOrderReconciler, move_to, reconcile
from dealerdb.apps.inventory.legacy import MemoryLegacyStore
from dealerdb.apps.inventory.store import IMAGE_ORDERS_KEY, MemoryTenantStore


class _ListingBlobs:
    """Blob store returning a fixed listing, newest first after sorting."""

    def __init__(self, urls):
        self.urls = list(urls)
        self.deleted = []

    async def list(self, prefix):
        # Oldest first on the wire; the reconciler sorts by uploadedAt.
        return [
            {"url": url, "uploadedAt": f"2024-01-{len(self.urls) - index:02d}T00:00:00+00:00"}
            for index, url in enumerate(self.urls)
        ][::-1]

    async def put(self, path, data):
        self.urls.insert(0, path)
        return {"url": path}

    async def delete(self, url):
        self.deleted.append(url)
        self.urls.remove(url)


def _reconciler(blobs, tenant_id="dealer-a"):
    authoritative = MemoryTenantStore()
    resolver = CacheTierResolver(authoritative, MemoryLegacyStore())
    return ImageOrderReconciler(resolver, tenant_id, blobs), resolver, authoritative


def test_reconcile_without_custom_order_returns_authoritative():
    assert reconcile(["a", "b", "c"], None) == ["a", "b", "c"]


def test_reconcile_drops_deleted_and_appends_new():
    assert reconcile(["a", "b", "c", "d"], ["c", "x", "a"]) == ["c", "a", "b", "d"]


def test_reconcile_collapses_duplicates():
    assert reconcile(["a", "b"], ["b", "b", "a", "a"]) == ["b", "a"]


def test_reconcile_is_always_a_permutation_of_authoritative():
    authoritative = ["u1", "u2", "u3", "u4", "u5"]
    for custom in ([], ["u5"], ["u3", "u1"], ["gone", "u2", "u2"], list(reversed(authoritative))):
        result = reconcile(authoritative, custom)
        assert sorted(result) == sorted(authoritative)
        assert len(result) == len(set(result))


def test_move_to_clamps_target_index():
    assert move_to(["a", "b", "c"], "a", 99) == ["b", "c", "a"]
    assert move_to(["a", "b", "c"], "c", -4) == ["c", "a", "b"]
    assert move_to(["a", "b", "c"], "a", 1) == ["b", "a", "c"]


def test_move_to_rejects_unknown_url():
    with pytest.raises(ImageNotFoundError):
        move_to(["a"], "b", 0)


def test_get_images_defaults_to_newest_first():
    async def scenario():
        reconciler, _, _ = _reconciler(_ListingBlobs(["new", "mid", "old"]))
        assert await reconciler.get_images("S1") == ["new", "mid", "old"]
        assert await reconciler.custom_order("S1") is None

    asyncio.run(scenario())


def test_set_main_image_persists_custom_order():
    async def scenario():
        reconciler, resolver, authoritative = _reconciler(_ListingBlobs(["a", "b", "c"]))

        assert await reconciler.set_main_image("S1", "c") == ["c", "a", "b"]
        await resolver.flush()

        assert authoritative.peek("dealer-a", IMAGE_ORDERS_KEY) == {"S1": ["c", "a", "b"]}
        assert await reconciler.get_images("S1") == ["c", "a", "b"]

    asyncio.run(scenario())


def test_reorder_moves_dragged_image():
    async def scenario():
        reconciler, _, _ = _reconciler(_ListingBlobs(["a", "b", "c", "d"]))
        assert await reconciler.reorder("S1", "a", 2) == ["b", "c", "a", "d"]
        assert await reconciler.reorder("S1", "d", 0) == ["d", "b", "c", "a"]

    asyncio.run(scenario())


def test_stale_custom_order_is_repaired_and_saved():
    async def scenario():
        blobs = _ListingBlobs(["a", "b", "c"])
        reconciler, resolver, authoritative = _reconciler(blobs)
        await reconciler.set_main_image("S1", "c")

        blobs.urls.remove("a")
        blobs.urls.insert(0, "z")

        assert await reconciler.get_images("S1") == ["c", "b", "z"]
        await resolver.flush()
        assert authoritative.peek("dealer-a", IMAGE_ORDERS_KEY)["S1"] == ["c", "b", "z"]

    asyncio.run(scenario())


def test_forget_drops_saved_order():
    async def scenario():
        reconciler, _, _ = _reconciler(_ListingBlobs(["a", "b"]))
        await reconciler.set_main_image("S1", "b")

        assert await reconciler.forget("S1") is True
        assert await reconciler.forget("S1") is False
        assert await reconciler.get_images("S1") == ["a", "b"]

    asyncio.run(scenario())


def test_upload_enforces_image_limit(tmp_path):
    async def scenario():
        blobs = FilesystemBlobStore(root=str(tmp_path), public_base_url="/blobs")
        reconciler, _, _ = _reconciler(blobs)
        reconciler.max_images = 2

        first = await reconciler.upload_image("S1", "front.jpg", b"1")
        second = await reconciler.upload_image("S1", "../../side view.jpg", b"2")
        with pytest.raises(ImageLimitError):
            await reconciler.upload_image("S1", "back.jpg", b"3")

        assert first.startswith("/blobs/dealer-a/buildings/S1/")
        assert second.endswith("-side-view.jpg")
        assert sorted(await reconciler.get_images("S1")) == sorted([first, second])

    asyncio.run(scenario())


def test_delete_image_removes_blob_and_repairs_order(tmp_path):
    async def scenario():
        blobs = FilesystemBlobStore(root=str(tmp_path), public_base_url="/blobs")
        reconciler, _, _ = _reconciler(blobs)
        first = await reconciler.upload_image("S1", "a.jpg", b"1")
        second = await reconciler.upload_image("S1", "b.jpg", b"2")
        await reconciler.set_main_image("S1", first)

        remaining = await reconciler.delete_image("S1", first)

        assert remaining == [second]
        assert not os.path.exists(tmp_path / blobs.key_for(first))
        with pytest.raises(ImageNotFoundError):
            await reconciler.delete_image("S1", first)

    asyncio.run(scenario())


def test_blob_listing_is_scoped_per_dealer(tmp_path):
    async def scenario():
        blobs = FilesystemBlobStore(root=str(tmp_path), public_base_url="/blobs")
        dealer_a, _, _ = _reconciler(blobs, "dealer-a")
        dealer_b, _, _ = _reconciler(blobs, "dealer-b")
        await dealer_a.upload_image("S1", "a.jpg", b"1")

        assert await dealer_b.get_images("S1") == []

    asyncio.run(scenario())


def test_filesystem_blob_io_runs_off_the_event_loop_thread(tmp_path, monkeypatch):
    blobs = FilesystemBlobStore(root=str(tmp_path), public_base_url="/blobs")
    threads = []
    list_sync = blobs._list_sync

    def recording_list(prefix):
        threads.append(threading.get_ident())
        return list_sync(prefix)

    monkeypatch.setattr(blobs, "_list_sync", recording_list)

    async def scenario():
        await blobs.put("dealer-a/buildings/S1/a.jpg", b"1")
        listing = await blobs.list("dealer-a/buildings/S1/")
        return listing, threading.get_ident()

    listing, loop_thread = asyncio.run(scenario())

    assert [blob["url"] for blob in listing] == ["/blobs/dealer-a/buildings/S1/a.jpg"]
    assert threads and threads[0] != loop_thread
