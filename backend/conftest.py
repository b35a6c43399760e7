from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.setdefault("LEGACY_STORE_PATH", "")

from dealerdb.database import Base  # noqa: E402
from dealerdb.apps.accounts import models as account_models  # noqa: E402
from dealerdb.apps.inventory import models as inventory_models  # noqa: E402

TABLES = [
    account_models.Dealer.__table__,
    inventory_models.BuildingOverride.__table__,
    inventory_models.ImageOrder.__table__,
    inventory_models.DealerLot.__table__,
    inventory_models.InventoryRecord.__table__,
    inventory_models.DealerStateKey.__table__,
]


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    try:
        yield TestingSession
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
