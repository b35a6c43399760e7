"""
Per-dealer override overlay: sale status, visibility and lot tag per serial.

Every write is read-existing -> merge only the supplied fields -> write
back, so an admin's status change and a sync's lot tag never erase each
other. Each write bumps the record's `version`; passing `expected_version`
turns a silent last-write-wins into a StaleOverrideError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Mapping, Optional

from .cache import CacheTierResolver
from .errors import InvalidOverrideError, StaleOverrideError
from .store import OVERRIDES_KEY

logger = logging.getLogger(__name__)

STATUS_VALUES = ("available", "pending", "sold")
DEFAULT_STATUS = "available"

# Accepted spellings -> attribute name on OverrideRecord.
_FIELD_ALIASES = {
    "status": "status",
    "hidden": "hidden",
    "lot_location": "lot_location",
    "lotLocation": "lot_location",
}


@dataclass(frozen=True)
class OverrideRecord:
    serial: str
    status: Optional[str] = None
    hidden: Optional[bool] = None
    lot_location: Optional[str] = None
    version: int = 0

    @property
    def effective_status(self) -> str:
        return self.status or DEFAULT_STATUS

    @property
    def is_hidden(self) -> bool:
        return bool(self.hidden)

    @property
    def is_empty(self) -> bool:
        return self.status is None and self.hidden is None and self.lot_location is None

    @classmethod
    def from_dict(cls, serial: str, data: Optional[Mapping[str, Any]]) -> "OverrideRecord":
        data = data or {}
        return cls(
            serial=serial,
            status=data.get("status"),
            hidden=data.get("hidden"),
            lot_location=data.get("lotLocation"),
            version=int(data.get("version") or 0),
        )

    def as_dict(self) -> Dict[str, Any]:
        """Persisted form: only the fields that have been set, plus the version."""
        payload: Dict[str, Any] = {"version": self.version}
        if self.status is not None:
            payload["status"] = self.status
        if self.hidden is not None:
            payload["hidden"] = self.hidden
        if self.lot_location is not None:
            payload["lotLocation"] = self.lot_location
        return payload

    def merged(self, fields: Mapping[str, Any]) -> "OverrideRecord":
        return replace(self, version=self.version + 1, **dict(fields))


def normalize_patch(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a partial update and map it onto OverrideRecord attribute names."""
    patch: Dict[str, Any] = {}
    for key, value in fields.items():
        name = _FIELD_ALIASES.get(key)
        if name is None:
            raise InvalidOverrideError(f"Unknown override field: {key}")
        if name == "status" and value is not None and value not in STATUS_VALUES:
            raise InvalidOverrideError(f"Invalid status {value!r}; expected one of {', '.join(STATUS_VALUES)}")
        if name == "hidden" and value is not None and not isinstance(value, bool):
            raise InvalidOverrideError("hidden must be a boolean")
        if name == "lot_location" and value is not None:
            if not isinstance(value, str):
                raise InvalidOverrideError("lotLocation must be a string")
            value = value.strip() or None
        patch[name] = value
    return patch


class OverrideStore:
    def __init__(self, resolver: CacheTierResolver, tenant_id: str) -> None:
        self._resolver = resolver
        self.tenant_id = tenant_id

    async def _load(self) -> Dict[str, dict]:
        return await self._resolver.read(self.tenant_id, OVERRIDES_KEY, default=None) or {}

    def _save(self, overrides: Dict[str, dict], changed: Iterable[str]) -> None:
        self._resolver.write(self.tenant_id, OVERRIDES_KEY, overrides, changed=changed)

    async def all_overrides(self) -> Dict[str, OverrideRecord]:
        overrides = await self._load()
        return {serial: OverrideRecord.from_dict(serial, data) for serial, data in overrides.items()}

    async def get_override(self, serial: str) -> OverrideRecord:
        overrides = await self._load()
        return OverrideRecord.from_dict(serial, overrides.get(serial))

    async def patch_override(
        self,
        serial: str,
        fields: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> OverrideRecord:
        patch = normalize_patch(fields)
        overrides = await self._load()
        current = OverrideRecord.from_dict(serial, overrides.get(serial))
        if expected_version is not None and current.version != expected_version:
            raise StaleOverrideError(serial, expected_version, current.version)
        if not patch:
            return current
        updated = current.merged(patch)
        overrides[serial] = updated.as_dict()
        self._save(overrides, [serial])
        return updated

    async def patch_many(self, patches: Mapping[str, Mapping[str, Any]]) -> int:
        """Apply field-level patches to many serials with a single read and write."""
        normalized = {serial: normalize_patch(fields) for serial, fields in patches.items()}
        normalized = {serial: patch for serial, patch in normalized.items() if patch}
        if not normalized:
            return 0
        overrides = await self._load()
        for serial, patch in normalized.items():
            current = OverrideRecord.from_dict(serial, overrides.get(serial))
            overrides[serial] = current.merged(patch).as_dict()
        self._save(overrides, list(normalized))
        return len(normalized)

    async def remove_overrides_for_lot(self, lot_name: str) -> int:
        overrides = await self._load()
        doomed = [serial for serial, data in overrides.items() if data.get("lotLocation") == lot_name]
        if not doomed:
            return 0
        for serial in doomed:
            del overrides[serial]
        self._save(overrides, doomed)
        logger.info(
            "Removed lot overrides",
            extra={"tenant_id": self.tenant_id, "lot_name": lot_name, "removed": len(doomed)},
        )
        return len(doomed)

    async def remove_override(self, serial: str) -> bool:
        overrides = await self._load()
        if serial not in overrides:
            return False
        del overrides[serial]
        self._save(overrides, [serial])
        return True
