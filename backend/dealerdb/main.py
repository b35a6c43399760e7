# backend/dealerdb/main.py
import logging
import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .database import WriteSessionLocal
from .apps.inventory.blobs import FilesystemBlobStore
from .apps.inventory.legacy import build_legacy_store
from .apps.inventory.portal import DealerPortalClient
from .apps.inventory.router import router as inventory_router
from .apps.inventory.services import InventoryRuntime
from .apps.inventory.store import SqlTenantStore

logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:4173",
    ]


def build_runtime() -> InventoryRuntime:
    return InventoryRuntime(
        authoritative=SqlTenantStore(WriteSessionLocal),
        legacy=build_legacy_store(),
        blobs=FilesystemBlobStore(),
        source=DealerPortalClient(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let queued authoritative writes land before the process exits.
    await app.state.inventory.flush()
    failed = sum(len(resolver.failed_writes) for resolver in app.state.inventory.resolvers())
    if failed:
        logger.warning("Authoritative writes failed during this run", extra={"failed_writes": failed})


app = FastAPI(title="Dealer Inventory API", version="1.0.0", lifespan=lifespan)
app.state.inventory = build_runtime()
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

blobs = app.state.inventory.blobs
if blobs.public_base_url.startswith("/"):
    app.mount(blobs.public_base_url, StaticFiles(directory=str(blobs.root), check_dir=False), name="blobs")


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Dealer inventory backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(inventory_router)
