# backend/dealerdb/apps/accounts/__init__.py
"""
Accounts app

Responsible for the Dealer record: the tenant every inventory row, lot
and override hangs off. Logins and token issuance live elsewhere; this
app only needs to resolve the dealer a token names.
"""

from . import models  # noqa: F401

__all__ = ["models"]
