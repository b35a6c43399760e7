from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from dealerdb.apps.inventory.cache import CacheTierResolver
from dealerdb.apps.inventory.errors import InvalidLotError, LotExistsError, LotNotFoundError
from dealerdb.apps.inventory.legacy import MemoryLegacyStore
from dealerdb.apps.inventory.lots import LotRegistry
from dealerdb.apps.inventory.overrides import OverrideStore
from dealerdb.apps.inventory.store import LOTS_KEY, MemoryTenantStore


def _registry():
    authoritative = MemoryTenantStore()
    resolver = CacheTierResolver(authoritative, MemoryLegacyStore())
    overrides = OverrideStore(resolver, "dealer-a")
    return LotRegistry(resolver, "dealer-a", overrides), overrides, resolver, authoritative


def test_lots_keep_insertion_order_and_persist_as_a_list():
    async def scenario():
        registry, _, resolver, authoritative = _registry()
        await registry.add_lot("Lot B", "2002", "secret")
        await registry.add_lot("Lot A", "1001", "secret")
        await resolver.flush()

        assert [lot.name for lot in await registry.list_lots()] == ["Lot B", "Lot A"]
        assert authoritative.peek("dealer-a", LOTS_KEY) == [
            {"name": "Lot B", "username": "2002", "password": "secret", "lastSync": None, "buildingCount": 0},
            {"name": "Lot A", "username": "1001", "password": "secret", "lastSync": None, "buildingCount": 0},
        ]

    asyncio.run(scenario())


def test_lot_names_are_unique():
    async def scenario():
        registry, _, _, _ = _registry()
        await registry.add_lot("Lot A", "1001", "secret")
        with pytest.raises(LotExistsError):
            await registry.add_lot(" Lot A ", "1002", "other")

    asyncio.run(scenario())


@pytest.mark.parametrize("name, username, password", [("", "u", "p"), ("Lot", "", "p"), ("Lot", "u", "  ")])
def test_lot_requires_name_username_and_password(name, username, password):
    async def scenario():
        registry, _, _, _ = _registry()
        with pytest.raises(InvalidLotError):
            await registry.add_lot(name, username, password)

    asyncio.run(scenario())


def test_update_credentials_and_record_sync():
    async def scenario():
        registry, _, _, _ = _registry()
        await registry.add_lot("Lot A", "1001", "old")
        await registry.update_credentials("Lot A", "1001", "new")
        synced_at = datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc)
        lot = await registry.record_sync("Lot A", synced_at, 12)

        assert lot.credentials == {"username": "1001", "password": "new"}
        assert lot.last_sync == synced_at
        assert lot.building_count == 12

    asyncio.run(scenario())


def test_unknown_lot_raises_not_found():
    async def scenario():
        registry, _, _, _ = _registry()
        with pytest.raises(LotNotFoundError):
            await registry.get_lot("Nope")
        with pytest.raises(LotNotFoundError):
            await registry.remove_lot("Nope")

    asyncio.run(scenario())


def test_remove_lot_drops_its_tagged_overrides_only():
    async def scenario():
        registry, overrides, _, _ = _registry()
        await registry.add_lot("Lot A", "1001", "secret")
        await registry.add_lot("Lot B", "2002", "secret")
        await overrides.patch_many(
            {
                "S1": {"lotLocation": "Lot A"},
                "S2": {"lotLocation": "Lot B", "status": "sold"},
                "S3": {"lotLocation": "Lot B"},
            }
        )

        removed = await registry.remove_lot("Lot B")

        assert removed == 2
        assert [lot.name for lot in await registry.list_lots()] == ["Lot A"]
        assert sorted(await overrides.all_overrides()) == ["S1"]

    asyncio.run(scenario())
