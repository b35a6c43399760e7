"""
Three-tier read/write routing for per-dealer inventory state.

Read order:
  1. session cache     (this resolver's own SessionCache, reset on logout/tenant switch)
  2. authoritative     (per-dealer store, see store.py)
  3. legacy fallback   (only while the authoritative store has never held the key)

Writes land in the session cache and the legacy store immediately. The
authoritative write is scheduled on the running loop and chained behind
earlier writes, so the caller never waits on it and writes reach the
store in the order they were made.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class _Missing:
    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class AuthoritativeStore(Protocol):
    async def get(self, tenant_id: str, key: str) -> Any:
        """Return the stored value, or MISSING if the key was never written."""

    async def put(self, tenant_id: str, key: str, value: Any, changed: Optional[Iterable[str]] = None) -> None:
        """
        Store `value` under `key`.

        With `changed`, only those entries of a keyed value are applied:
        present in `value` means upsert, absent means delete. Entries not
        named are left as the store has them.
        """


class LegacyStore(Protocol):
    def get(self, tenant_id: str, key: str) -> Any:
        ...

    def set(self, tenant_id: str, key: str, value: Any) -> None:
        ...

    def purge_tenant(self, tenant_id: str) -> int:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionCache:
    """In-memory values for one session and one dealer."""

    def __init__(self, tenant_id: Optional[str] = None) -> None:
        self.tenant_id = tenant_id
        self._values: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._values.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def clear(self) -> None:
        self._values.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


@dataclass
class FailedWrite:
    tenant_id: str
    key: str
    error: str
    failed_at: datetime = field(default_factory=_utcnow)


class CacheTierResolver:
    def __init__(
        self,
        authoritative: AuthoritativeStore,
        legacy: LegacyStore,
        session: Optional[SessionCache] = None,
    ) -> None:
        self._authoritative = authoritative
        self._legacy = legacy
        self._session = session or SessionCache()
        self._last_tenant: Optional[str] = self._session.tenant_id
        self._tail: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self.failed_writes: List[FailedWrite] = []

    @property
    def session(self) -> SessionCache:
        return self._session

    @property
    def active_tenant(self) -> Optional[str]:
        return self._last_tenant

    def on_tenant_switch(self, new_tenant_id: str) -> None:
        if new_tenant_id == self._last_tenant:
            return
        previous = self._last_tenant
        if previous is not None:
            purged = self._legacy.purge_tenant(previous)
            logger.info(
                "Tenant switch purged legacy entries",
                extra={"previous_tenant": previous, "new_tenant": new_tenant_id, "purged": purged},
            )
        self._session = SessionCache(new_tenant_id)
        self._last_tenant = new_tenant_id

    def logout(self) -> None:
        # Keep the last identity so the next login by someone else still purges.
        self._session.clear()

    def _observe(self, tenant_id: str) -> None:
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if tenant_id != self._last_tenant:
            self.on_tenant_switch(tenant_id)

    async def read(self, tenant_id: str, key: str, default: Any = None) -> Any:
        self._observe(tenant_id)
        cached = self._session.get(key)
        if cached is not MISSING:
            return copy.deepcopy(cached)

        await self.flush()
        value = await self._authoritative.get(tenant_id, key)
        if value is MISSING:
            value = self._legacy.get(tenant_id, key)
            if value is MISSING:
                return default
            logger.info(
                "Serving legacy value and backfilling authoritative store",
                extra={"tenant_id": tenant_id, "key": key},
            )
            self._schedule(tenant_id, key, copy.deepcopy(value))

        # Identity may have changed, or a write may have landed, while we awaited.
        if self._session.tenant_id == tenant_id:
            if key in self._session:
                return copy.deepcopy(self._session.get(key))
            self._session.set(key, copy.deepcopy(value))
        return copy.deepcopy(value)

    def write(self, tenant_id: str, key: str, value: Any, changed: Optional[Iterable[str]] = None) -> None:
        """
        Write `value` through all tiers.

        `changed` names the entries of a keyed value (serials, lot names)
        this write touched; the authoritative store then applies just those,
        so entries another writer stored since our read are kept.
        """
        self._observe(tenant_id)
        snapshot = copy.deepcopy(value)
        self._session.set(key, snapshot)
        self._legacy.set(tenant_id, key, copy.deepcopy(snapshot))
        self._schedule(tenant_id, key, copy.deepcopy(snapshot), None if changed is None else list(changed))

    def _schedule(self, tenant_id: str, key: str, value: Any, changed: Optional[List[str]] = None) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._put_after(self._tail, tenant_id, key, value, changed))
        self._tail = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _put_after(
        self,
        previous: Optional[asyncio.Task],
        tenant_id: str,
        key: str,
        value: Any,
        changed: Optional[List[str]] = None,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            await self._authoritative.put(tenant_id, key, value, changed=changed)
        except Exception as exc:
            logger.warning(
                "Authoritative write failed",
                extra={"tenant_id": tenant_id, "key": key, "error": str(exc)},
            )
            self.failed_writes.append(FailedWrite(tenant_id=tenant_id, key=key, error=str(exc)))

    @property
    def pending_writes(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def flush(self) -> None:
        """Wait until every scheduled authoritative write has finished."""
        while self._tail is not None and not self._tail.done():
            await asyncio.wait([self._tail])
