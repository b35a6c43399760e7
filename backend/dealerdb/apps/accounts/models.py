# backend/dealerdb/apps/accounts/models.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    String,
)

from dealerdb.database import Base
# GUID-like IDs for portability and multi-tenant separation
from dealerdb.user_id import generate_dealer_id


class Dealer(Base):
    """
    A dealer account (tenant).

    Overrides, image orders, lots and inventory records are always
    scoped to a dealer through `dealer_id`.
    """

    __tablename__ = "dealers"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_dealer_id,
    )
    name = Column(String(255), nullable=False)
    slug = Column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
        doc="Site slug, e.g. 'buytheshed'",
    )
    contact_email = Column(String(255), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return f"<Dealer id={self.id} slug={self.slug}>"
