from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .cache import CacheTierResolver
from .errors import InvalidLotError, LotExistsError, LotNotFoundError
from .overrides import OverrideStore
from .store import LOTS_KEY

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class Lot:
    name: str
    username: str
    password: str
    last_sync: Optional[datetime] = None
    building_count: int = 0

    @property
    def credentials(self) -> Dict[str, str]:
        return {"username": self.username, "password": self.password}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Lot":
        return cls(
            name=data["name"],
            username=data.get("username") or "",
            password=data.get("password") or "",
            last_sync=_parse_timestamp(data.get("lastSync")),
            building_count=int(data.get("buildingCount") or 0),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "username": self.username,
            "password": self.password,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "buildingCount": self.building_count,
        }


def _require(**fields: Any) -> None:
    for label, value in fields.items():
        if not isinstance(value, str) or not value.strip():
            raise InvalidLotError(f"Lot {label} is required")


class LotRegistry:
    """Ordered per-dealer lot configuration, persisted under the `lots` key."""

    def __init__(self, resolver: CacheTierResolver, tenant_id: str, overrides: Optional[OverrideStore] = None) -> None:
        self._resolver = resolver
        self.tenant_id = tenant_id
        self._overrides = overrides or OverrideStore(resolver, tenant_id)

    async def _load(self) -> List[dict]:
        return await self._resolver.read(self.tenant_id, LOTS_KEY, default=None) or []

    def _save(self, lots: List[dict], name: str) -> None:
        self._resolver.write(self.tenant_id, LOTS_KEY, lots, changed=[name])

    @staticmethod
    def _index(lots: List[dict], name: str) -> int:
        for index, lot in enumerate(lots):
            if lot.get("name") == name:
                return index
        raise LotNotFoundError(f"Lot {name!r} not found")

    async def list_lots(self) -> List[Lot]:
        return [Lot.from_dict(lot) for lot in await self._load()]

    async def get_lot(self, name: str) -> Lot:
        lots = await self._load()
        return Lot.from_dict(lots[self._index(lots, name)])

    async def add_lot(self, name: str, username: str, password: str) -> Lot:
        _require(name=name, username=username, password=password)
        name = name.strip()
        lots = await self._load()
        if any(lot.get("name") == name for lot in lots):
            raise LotExistsError(f"Lot {name!r} already exists")
        lot = Lot(name=name, username=username.strip(), password=password)
        lots.append(lot.as_dict())
        self._save(lots, name)
        logger.info("Added lot", extra={"tenant_id": self.tenant_id, "lot_name": name})
        return lot

    async def update_credentials(self, name: str, username: str, password: str) -> Lot:
        _require(username=username, password=password)
        lots = await self._load()
        index = self._index(lots, name)
        lots[index]["username"] = username.strip()
        lots[index]["password"] = password
        self._save(lots, name)
        return Lot.from_dict(lots[index])

    async def record_sync(self, name: str, synced_at: Optional[datetime], building_count: int) -> Lot:
        lots = await self._load()
        index = self._index(lots, name)
        synced_at = synced_at or datetime.now(timezone.utc)
        lots[index]["lastSync"] = synced_at.isoformat()
        lots[index]["buildingCount"] = int(building_count)
        self._save(lots, name)
        return Lot.from_dict(lots[index])

    async def remove_lot(self, name: str) -> int:
        """Drop the lot and every override tagged with it. Returns the number of overrides removed."""
        lots = await self._load()
        del lots[self._index(lots, name)]
        self._save(lots, name)
        removed = await self._overrides.remove_overrides_for_lot(name)
        logger.info(
            "Removed lot",
            extra={"tenant_id": self.tenant_id, "lot_name": name, "overrides_removed": removed},
        )
        return removed
