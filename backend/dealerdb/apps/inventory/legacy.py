"""
Legacy per-dealer key/value fallback.

Older dealer sites kept overrides and image orders client-side. Those
values are still written on every change so older readers keep working,
and read back only while the authoritative store has never held a key.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .cache import MISSING

logger = logging.getLogger(__name__)

LEGACY_STORE_PATH = os.getenv("LEGACY_STORE_PATH", "")


class MemoryLegacyStore:
    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}

    def get(self, tenant_id: str, key: str) -> Any:
        values = self._data.get(tenant_id)
        if values is None or key not in values:
            return MISSING
        return copy.deepcopy(values[key])

    def set(self, tenant_id: str, key: str, value: Any) -> None:
        self._data.setdefault(tenant_id, {})[key] = copy.deepcopy(value)

    def purge_tenant(self, tenant_id: str) -> int:
        return len(self._data.pop(tenant_id, {}))

    def tenants(self) -> list[str]:
        return sorted(self._data)


class JsonFileLegacyStore(MemoryLegacyStore):
    """MemoryLegacyStore mirrored to a JSON file: {tenant_id: {key: value}}."""

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Legacy store unreadable, starting empty", extra={"path": str(self.path), "error": str(exc)})
            return
        if isinstance(raw, dict):
            self._data = {str(tenant): dict(values) for tenant, values in raw.items() if isinstance(values, dict)}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".legacy-", suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(self._data, handle, default=str)
        os.replace(tmp_path, self.path)

    def set(self, tenant_id: str, key: str, value: Any) -> None:
        super().set(tenant_id, key, value)
        self._save()

    def purge_tenant(self, tenant_id: str) -> int:
        purged = super().purge_tenant(tenant_id)
        if purged:
            self._save()
        return purged


def build_legacy_store(path: Optional[str] = None) -> MemoryLegacyStore:
    path = path if path is not None else LEGACY_STORE_PATH
    if path:
        return JsonFileLegacyStore(path)
    return MemoryLegacyStore()
