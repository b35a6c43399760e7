"""
Authoritative per-dealer stores.

`SqlTenantStore` maps the engine's keys onto tables:

  building_overrides -> building_overrides   {serial: {status?, hidden?, lotLocation?, version}}
  image_orders       -> image_orders         {serial: [urls]}
  lots               -> dealer_lots          [{name, username, password, lastSync, buildingCount}]
  inventory          -> inventory_records    {serial: {price, location, lotName}}

Any other key is kept as JSON on its `dealer_state_keys` row. That row also
records that a key has been written at least once, which is what lets the
resolver tell "empty" apart from "never held".
"""

from __future__ import annotations

import asyncio
import copy
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from .cache import MISSING
from . import models

logger = logging.getLogger(__name__)

OVERRIDES_KEY = "building_overrides"
IMAGE_ORDERS_KEY = "image_orders"
LOTS_KEY = "lots"
INVENTORY_KEY = "inventory"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _rows_by_key(db: Session, model: Any, key_column: Any, dealer_id: str, changed: Optional[List[str]]) -> Dict[str, Any]:
    query = db.query(model).filter(model.dealer_id == dealer_id)
    if changed is not None:
        query = query.filter(key_column.in_(changed))
    return {getattr(row, key_column.key): row for row in query.all()}


def _keys_to_save(value: Dict[str, Any], changed: Optional[List[str]]) -> List[str]:
    if changed is None:
        return list(value)
    return [entry for entry in changed if entry in value]


# ---------------------------------------------------------------------------
# building_overrides
# ---------------------------------------------------------------------------


def _load_overrides(db: Session, dealer_id: str) -> Dict[str, dict]:
    rows = db.query(models.BuildingOverride).filter(models.BuildingOverride.dealer_id == dealer_id).all()
    result: Dict[str, dict] = {}
    for row in rows:
        record: Dict[str, Any] = {"version": row.version or 0}
        if row.status is not None:
            record["status"] = models.OverrideStatusEnum(row.status).value
        if row.hidden is not None:
            record["hidden"] = bool(row.hidden)
        if row.lot_location is not None:
            record["lotLocation"] = row.lot_location
        result[row.serial_number] = record
    return result


def _save_overrides(db: Session, dealer_id: str, value: Dict[str, dict], changed: Optional[List[str]] = None) -> None:
    value = value or {}
    existing = _rows_by_key(db, models.BuildingOverride, models.BuildingOverride.serial_number, dealer_id, changed)
    for serial in _keys_to_save(value, changed):
        record = value[serial]
        row = existing.pop(serial, None)
        if row is None:
            row = models.BuildingOverride(dealer_id=dealer_id, serial_number=serial)
            db.add(row)
        status = record.get("status")
        row.status = models.OverrideStatusEnum(status) if status is not None else None
        row.hidden = record.get("hidden")
        row.lot_location = record.get("lotLocation")
        row.version = int(record.get("version") or 0)
    for row in existing.values():
        db.delete(row)


# ---------------------------------------------------------------------------
# image_orders
# ---------------------------------------------------------------------------


def _load_image_orders(db: Session, dealer_id: str) -> Dict[str, List[str]]:
    rows = db.query(models.ImageOrder).filter(models.ImageOrder.dealer_id == dealer_id).all()
    return {row.serial_number: list(row.image_urls or []) for row in rows}


def _save_image_orders(db: Session, dealer_id: str, value: Dict[str, List[str]], changed: Optional[List[str]] = None) -> None:
    value = value or {}
    existing = _rows_by_key(db, models.ImageOrder, models.ImageOrder.serial_number, dealer_id, changed)
    for serial in _keys_to_save(value, changed):
        row = existing.pop(serial, None)
        if row is None:
            row = models.ImageOrder(dealer_id=dealer_id, serial_number=serial)
            db.add(row)
        row.image_urls = list(value[serial])
    for row in existing.values():
        db.delete(row)


# ---------------------------------------------------------------------------
# lots
# ---------------------------------------------------------------------------


def _load_lots(db: Session, dealer_id: str) -> List[dict]:
    rows = (
        db.query(models.DealerLot)
        .filter(models.DealerLot.dealer_id == dealer_id)
        .order_by(models.DealerLot.position.asc(), models.DealerLot.id.asc())
        .all()
    )
    return [
        {
            "name": row.name,
            "username": row.username,
            "password": row.password,
            "lastSync": _format_timestamp(row.last_sync),
            "buildingCount": row.building_count or 0,
        }
        for row in rows
    ]


def _save_lots(db: Session, dealer_id: str, value: List[dict], changed: Optional[List[str]] = None) -> None:
    by_name = {lot["name"]: (position, lot) for position, lot in enumerate(value or [])}
    existing = _rows_by_key(db, models.DealerLot, models.DealerLot.name, dealer_id, changed)
    for name in _keys_to_save(by_name, changed):
        position, lot = by_name[name]
        row = existing.pop(name, None)
        if row is None:
            row = models.DealerLot(dealer_id=dealer_id, name=name)
            db.add(row)
        row.username = lot.get("username") or ""
        row.password = lot.get("password") or ""
        row.position = position
        row.last_sync = _parse_timestamp(lot.get("lastSync"))
        row.building_count = int(lot.get("buildingCount") or 0)
    for row in existing.values():
        db.delete(row)


# ---------------------------------------------------------------------------
# inventory
# ---------------------------------------------------------------------------


def _load_inventory(db: Session, dealer_id: str) -> Dict[str, dict]:
    rows = db.query(models.InventoryRecord).filter(models.InventoryRecord.dealer_id == dealer_id).all()
    return {
        row.serial_number: {"price": row.price, "location": row.location, "lotName": row.lot_name}
        for row in rows
    }


def _save_inventory(db: Session, dealer_id: str, value: Dict[str, dict], changed: Optional[List[str]] = None) -> None:
    value = value or {}
    existing = _rows_by_key(db, models.InventoryRecord, models.InventoryRecord.serial_number, dealer_id, changed)
    for serial in _keys_to_save(value, changed):
        record = value[serial]
        row = existing.pop(serial, None)
        if row is None:
            row = models.InventoryRecord(dealer_id=dealer_id, serial_number=serial)
            db.add(row)
        row.price = record.get("price")
        row.location = record.get("location")
        row.lot_name = record.get("lotName")
    for row in existing.values():
        db.delete(row)


Loader = Callable[[Session, str], Any]
Saver = Callable[[Session, str, Any, Optional[List[str]]], None]

TYPED_KEYS: Dict[str, Tuple[Loader, Saver]] = {
    OVERRIDES_KEY: (_load_overrides, _save_overrides),
    IMAGE_ORDERS_KEY: (_load_image_orders, _save_image_orders),
    LOTS_KEY: (_load_lots, _save_lots),
    INVENTORY_KEY: (_load_inventory, _save_inventory),
}


def apply_changes(current: Any, value: Any, changed: Optional[Iterable[str]]) -> Any:
    """
    Fold the `changed` entries of `value` into `current`.

    Dict values are keyed by serial; list values (lots) by their `name`.
    Anything else, or `changed=None`, is a plain replacement.
    """
    if changed is None:
        return copy.deepcopy(value)
    if isinstance(value, dict):
        result = dict(current) if isinstance(current, dict) else {}
        for entry in changed:
            if entry in value:
                result[entry] = copy.deepcopy(value[entry])
            else:
                result.pop(entry, None)
        return result
    if isinstance(value, list):
        result = list(current) if isinstance(current, list) else []
        incoming = {item["name"]: item for item in value}
        for entry in changed:
            names = [item["name"] for item in result]
            if entry in incoming:
                if entry in names:
                    result[names.index(entry)] = copy.deepcopy(incoming[entry])
                else:
                    result.append(copy.deepcopy(incoming[entry]))
            elif entry in names:
                del result[names.index(entry)]
        return result
    return copy.deepcopy(value)


class SqlTenantStore:
    """
    Authoritative store over SQLAlchemy.

    Each call opens its own session from `session_factory`, commits, and
    runs in a worker thread so the loop keeps serving other dealers. Keyed
    values written with `changed` only touch the rows they name.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def _state_key(self, db: Session, dealer_id: str, key: str) -> Optional[models.DealerStateKey]:
        return (
            db.query(models.DealerStateKey)
            .filter(
                models.DealerStateKey.dealer_id == dealer_id,
                models.DealerStateKey.key == key,
            )
            .first()
        )

    def _get_sync(self, tenant_id: str, key: str) -> Any:
        db = self._session_factory()
        try:
            marker = self._state_key(db, tenant_id, key)
            if marker is None:
                return MISSING
            typed = TYPED_KEYS.get(key)
            if typed is not None:
                return typed[0](db, tenant_id)
            return copy.deepcopy(marker.value_json)
        finally:
            db.close()

    def _put_sync(self, tenant_id: str, key: str, value: Any, changed: Optional[List[str]]) -> None:
        db = self._session_factory()
        try:
            typed = TYPED_KEYS.get(key)
            if typed is not None:
                typed[1](db, tenant_id, value, changed)
            marker = self._state_key(db, tenant_id, key)
            if marker is None:
                marker = models.DealerStateKey(dealer_id=tenant_id, key=key)
                db.add(marker)
            marker.value_json = None if typed is not None else copy.deepcopy(value)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def get(self, tenant_id: str, key: str) -> Any:
        return await asyncio.to_thread(self._get_sync, tenant_id, key)

    async def put(self, tenant_id: str, key: str, value: Any, changed: Optional[Iterable[str]] = None) -> None:
        await asyncio.to_thread(self._put_sync, tenant_id, key, value, None if changed is None else list(changed))


class MemoryTenantStore:
    """Authoritative store kept in a dict; used by tests and single-process dev runs."""

    def __init__(self) -> None:
        self._data: Dict[Tuple[str, str], Any] = {}
        self.put_count = 0

    async def get(self, tenant_id: str, key: str) -> Any:
        if (tenant_id, key) not in self._data:
            return MISSING
        return copy.deepcopy(self._data[(tenant_id, key)])

    async def put(self, tenant_id: str, key: str, value: Any, changed: Optional[Iterable[str]] = None) -> None:
        current = self._data.get((tenant_id, key))
        self._data[(tenant_id, key)] = apply_changes(current, value, changed)
        self.put_count += 1

    def peek(self, tenant_id: str, key: str) -> Any:
        return copy.deepcopy(self._data.get((tenant_id, key), MISSING))
