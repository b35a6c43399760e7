# backend/dealerdb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- The package exposes a clear surface.

The actual model classes are kept in dealerdb/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models     # dealers (tenants)
from .apps.inventory import models as inventory_models   # overrides, image orders, lots, stock rows

__all__ = [
    "accounts_models",
    "inventory_models",
]
