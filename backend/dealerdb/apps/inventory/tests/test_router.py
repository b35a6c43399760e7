from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from fastapi import HTTPException, status
from jose import jwt

from dealerdb import security
from dealerdb.apps.accounts import models as account_models
from dealerdb.apps.inventory import errors, router, schemas
from dealerdb.apps.inventory.blobs import FilesystemBlobStore
from dealerdb.apps.inventory.legacy import MemoryLegacyStore
from dealerdb.apps.inventory.services import InventoryRuntime
from dealerdb.apps.inventory.store import OVERRIDES_KEY, MemoryTenantStore

SERIAL = "P5-LB-123456-1024-031524-TX"


class _Portal:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error

    async def fetch_raw_inventory(self, credentials):
        if self.error is not None:
            raise self.error
        return list(self.rows)


def _runtime(tmp_path, portal=None):
    return InventoryRuntime(
        authoritative=MemoryTenantStore(),
        legacy=MemoryLegacyStore(),
        blobs=FilesystemBlobStore(root=str(tmp_path), public_base_url="/blobs"),
        source=portal or _Portal(),
    )


DEALER = SimpleNamespace(id="dealer-a", is_active=True)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (errors.SyncError("Lot A", "timeout"), status.HTTP_502_BAD_GATEWAY),
        (errors.StaleOverrideError("S1", 1, 2), status.HTTP_409_CONFLICT),
        (errors.LotExistsError("dup"), status.HTTP_409_CONFLICT),
        (errors.LotNotFoundError("missing"), status.HTTP_404_NOT_FOUND),
        (errors.ImageNotFoundError("u"), status.HTTP_404_NOT_FOUND),
        (errors.ImageLimitError("full"), status.HTTP_400_BAD_REQUEST),
        (errors.InvalidOverrideError("bad"), status.HTTP_422_UNPROCESSABLE_ENTITY),
    ],
)
def test_http_error_maps_inventory_errors(exc, expected):
    assert router.http_error(exc).status_code == expected


def test_sync_error_detail_names_the_lot():
    detail = router.http_error(errors.SyncError("Lot A", "timeout")).detail
    assert detail == {"lot_name": "Lot A", "message": "timeout"}


def test_decode_endpoint_returns_wire_shape():
    payload = router.decode_serial(schemas.DecodeRequest(serial="junk"), current_dealer=DEALER)
    assert payload == {"valid": False}


def test_patch_override_endpoint_merges_and_reports_conflicts(tmp_path):
    runtime = _runtime(tmp_path)

    async def scenario():
        first = await router.patch_override(
            SERIAL, schemas.OverridePatch(status="sold"), runtime=runtime, current_dealer=DEALER
        )
        second = await router.patch_override(
            SERIAL, schemas.OverridePatch(lotLocation="Lot A"), runtime=runtime, current_dealer=DEALER
        )
        with pytest.raises(HTTPException) as excinfo:
            await router.patch_override(
                SERIAL,
                schemas.OverridePatch(status="available", expected_version=first.version),
                runtime=runtime,
                current_dealer=DEALER,
            )
        return first, second, excinfo.value

    first, second, conflict = asyncio.run(scenario())

    assert (first.status, first.effective_status, first.version) == ("sold", "sold", 1)
    assert (second.status, second.lot_location, second.version) == ("sold", "Lot A", 2)
    assert conflict.status_code == status.HTTP_409_CONFLICT


def test_override_patch_schema_keeps_only_sent_fields():
    assert schemas.OverridePatch(hidden=True).fields() == {"hidden": True}
    assert schemas.OverridePatch(lotLocation=None).fields() == {"lot_location": None}
    assert schemas.OverridePatch(expected_version=3).fields() == {}


def test_lot_endpoints_and_sync_failure(tmp_path):
    runtime = _runtime(tmp_path, _Portal(error=errors.PortalError("Portal returned 500", status_code=500)))

    async def scenario():
        created = await router.create_lot(
            schemas.LotCreate(name="Lot A", username="1001", password="secret"),
            runtime=runtime,
            current_dealer=DEALER,
        )
        with pytest.raises(HTTPException) as duplicate:
            await router.create_lot(
                schemas.LotCreate(name="Lot A", username="1001", password="secret"),
                runtime=runtime,
                current_dealer=DEALER,
            )
        with pytest.raises(HTTPException) as failed_sync:
            await router.sync_lot("Lot A", None, runtime=runtime, current_dealer=DEALER)
        sync_all = await router.sync_all_lots(runtime=runtime, current_dealer=DEALER)
        removed = await router.delete_lot("Lot A", runtime=runtime, current_dealer=DEALER)
        return created, duplicate.value, failed_sync.value, sync_all, removed

    created, duplicate, failed_sync, sync_all, removed = asyncio.run(scenario())

    assert created.name == "Lot A"
    assert not hasattr(created, "password")
    assert duplicate.status_code == status.HTTP_409_CONFLICT
    assert failed_sync.status_code == status.HTTP_502_BAD_GATEWAY
    assert sync_all.results == {}
    assert "Lot A" in sync_all.errors
    assert removed == schemas.LotRemoved(name="Lot A", overrides_removed=0)


def test_import_then_list_buildings(tmp_path):
    runtime = _runtime(tmp_path)

    async def scenario():
        result = await router.import_inventory(
            schemas.ImportRequest(records=[{"serial": SERIAL, "price": 4999}, {"serial": "bad"}], lot_name="Lot A"),
            runtime=runtime,
            current_dealer=DEALER,
        )
        buildings = await router.list_buildings(include_hidden=True, runtime=runtime, current_dealer=DEALER)
        return result, buildings

    result, buildings = asyncio.run(scenario())

    assert (result.imported, result.skipped) == (1, 1)
    assert [schemas.BuildingRead(**building).lot_location for building in buildings] == ["Lot A"]


def test_runtime_keeps_one_resolver_per_dealer(tmp_path):
    runtime = _runtime(tmp_path)

    assert runtime.resolver_for("dealer-a") is runtime.resolver_for("dealer-a")
    assert runtime.resolver_for("dealer-a") is not runtime.resolver_for("dealer-b")
    assert runtime.resolver_for("dealer-b").session.tenant_id == "dealer-b"


def test_each_request_sees_writes_made_elsewhere(tmp_path):
    runtime = _runtime(tmp_path)

    async def scenario():
        before = await router.list_overrides(runtime=runtime, current_dealer=DEALER)
        # Another worker sharing the store records a sale.
        await runtime.authoritative.put("dealer-a", OVERRIDES_KEY, {SERIAL: {"version": 1, "status": "sold"}}, changed=[SERIAL])
        after = await router.list_overrides(runtime=runtime, current_dealer=DEALER)
        return before, after

    before, after = asyncio.run(scenario())

    assert before == []
    assert [(record.serial, record.status) for record in after] == [(SERIAL, "sold")]


def test_idle_resolvers_are_evicted(tmp_path):
    now = [0.0]
    runtime = InventoryRuntime(
        authoritative=MemoryTenantStore(),
        legacy=MemoryLegacyStore(),
        blobs=FilesystemBlobStore(root=str(tmp_path), public_base_url="/blobs"),
        idle_seconds=60,
        clock=lambda: now[0],
    )
    runtime.begin_request("dealer-a")
    now[0] = 30.0
    runtime.begin_request("dealer-b")
    now[0] = 75.0
    runtime.begin_request("dealer-b")

    assert [resolver.session.tenant_id for resolver in runtime.resolvers()] == ["dealer-b"]


def test_current_dealer_is_resolved_from_token(db_session):
    dealer = account_models.Dealer(name="Shed Dealer", slug="sheds")
    db_session.add(dealer)
    db_session.commit()
    db_session.refresh(dealer)
    token = jwt.encode({"sub": dealer.id}, security.SECRET_KEY, algorithm=security.JWT_ALGORITHM)

    assert security.get_current_dealer(token=token, db=db_session).id == dealer.id

    dealer.is_active = False
    db_session.commit()
    with pytest.raises(HTTPException) as excinfo:
        security.get_current_dealer(token=token, db=db_session)
    assert excinfo.value.status_code == status.HTTP_403_FORBIDDEN


def test_bad_token_is_unauthorized():
    with pytest.raises(HTTPException) as excinfo:
        security.decode_dealer_id("not-a-token")
    assert excinfo.value.status_code == status.HTTP_401_UNAUTHORIZED


def test_app_mounts_inventory_routes(monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://sheds.example, https://admin.example")
    from dealerdb import main

    paths = {route.path for route in main.app.routes}

    assert {"/health", "/inventory/decode", "/inventory/lots/sync-all", "/inventory/buildings/{serial}/images/reorder"} <= paths
    assert isinstance(main.app.state.inventory, InventoryRuntime)
    assert main._allowed_origins() == ["https://sheds.example", "https://admin.example"]
