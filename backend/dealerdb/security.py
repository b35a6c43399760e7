# backend/dealerdb/security.py

"""
Security helpers for dealerdb.

Responsibilities:
- Decoding bearer JWTs issued by the login service
- FastAPI dependency resolving the current dealer (tenant)

Token issuance and password handling live in the login service; this
module only consumes the signed token.
"""

from __future__ import annotations

import os
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_read_db
from dealerdb.apps.accounts import models as account_models

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

# In production, ALWAYS override these via environment variables.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_dealer_id(token: str) -> str:
    """
    Return the dealer id carried by a token.

    Tokens carry the dealer either as `dealer_id` or as `sub`.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise _credentials_exception()
    dealer_id: Optional[str] = payload.get("dealer_id") or payload.get("sub")
    if not dealer_id:
        raise _credentials_exception()
    return str(dealer_id).strip()


def get_dealer_by_id(db: Session, dealer_id: str) -> Optional[account_models.Dealer]:
    if not dealer_id:
        return None
    return (
        db.query(account_models.Dealer)
        .filter(account_models.Dealer.id == dealer_id)
        .first()
    )


def get_current_dealer(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_read_db),
) -> account_models.Dealer:
    """
    Decode the access token and return the Dealer it belongs to.

    Deactivated dealers are blocked here rather than deeper in the app.
    """
    dealer = get_dealer_by_id(db, decode_dealer_id(token))
    if dealer is None:
        raise _credentials_exception()
    if not dealer.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Dealer account is inactive",
        )
    return dealer
