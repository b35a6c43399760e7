from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol

from .errors import ImageNotFoundError

logger = logging.getLogger(__name__)

BLOB_ROOT = os.getenv("BLOB_ROOT", "blob_storage")
BLOB_PUBLIC_BASE_URL = os.getenv("BLOB_PUBLIC_BASE_URL", "/blobs")


class BlobStore(Protocol):
    async def list(self, prefix: str) -> List[dict]:
        """Return [{"url": ..., "uploadedAt": iso8601}] for every blob under prefix."""

    async def put(self, path: str, data: bytes) -> dict:
        ...

    async def delete(self, url: str) -> None:
        ...


class FilesystemBlobStore:
    """
    Blob store on a local directory, served under `public_base_url`.

    Blob paths are storage keys relative to `root`; the public URL is the
    base URL joined with the same key.
    """

    def __init__(self, root: Optional[str] = None, public_base_url: Optional[str] = None) -> None:
        self.root = Path(root if root is not None else BLOB_ROOT).resolve()
        self.public_base_url = (public_base_url if public_base_url is not None else BLOB_PUBLIC_BASE_URL).rstrip("/")

    def _target(self, storage_key: str) -> Path:
        target = self.root.joinpath(storage_key).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Blob path escapes storage root: {storage_key}")
        return target

    def url_for(self, storage_key: str) -> str:
        return f"{self.public_base_url}/{storage_key.lstrip('/')}"

    def key_for(self, url: str) -> str:
        base = f"{self.public_base_url}/"
        if not url.startswith(base):
            raise ImageNotFoundError(url)
        return url[len(base):]

    def _list_sync(self, prefix: str) -> List[dict]:
        directory = self._target(prefix)
        if not directory.is_dir():
            return []
        blobs = []
        for path in sorted(directory.iterdir()):
            if not path.is_file():
                continue
            uploaded_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            storage_key = path.relative_to(self.root).as_posix()
            blobs.append({"url": self.url_for(storage_key), "uploadedAt": uploaded_at.isoformat()})
        return blobs

    def _put_sync(self, path: str, data: bytes) -> dict:
        target = self._target(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return {"url": self.url_for(path), "size": len(data)}

    def _delete_sync(self, url: str) -> None:
        storage_key = self.key_for(url)
        try:
            self._target(storage_key).unlink()
        except FileNotFoundError as exc:
            raise ImageNotFoundError(url) from exc
        logger.info("Deleted blob", extra={"storage_key": storage_key})

    async def list(self, prefix: str) -> List[dict]:
        return await asyncio.to_thread(self._list_sync, prefix)

    async def put(self, path: str, data: bytes) -> dict:
        return await asyncio.to_thread(self._put_sync, path, data)

    async def delete(self, url: str) -> None:
        await asyncio.to_thread(self._delete_sync, url)
