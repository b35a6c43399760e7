from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)

from dealerdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OverrideStatusEnum(str, enum.Enum):
    AVAILABLE = "available"
    PENDING = "pending"
    SOLD = "sold"


class BuildingOverride(Base):
    """Admin/sync overlay for one serial. Null columns mean 'never set'."""

    __tablename__ = "building_overrides"
    __table_args__ = (
        UniqueConstraint("dealer_id", "serial_number", name="uq_building_override_serial"),
        Index("ix_building_overrides_dealer_lot", "dealer_id", "lot_location"),
    )

    id = Column(Integer, primary_key=True, index=True)
    dealer_id = Column(String(36), ForeignKey("dealers.id", ondelete="CASCADE"), nullable=False, index=True)
    serial_number = Column(String(100), nullable=False, index=True)
    status = Column(
        SAEnum(
            OverrideStatusEnum,
            name="building_override_status_enum",
            native_enum=False,
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=True,
    )
    hidden = Column(Boolean, nullable=True)
    lot_location = Column(String(255), nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class ImageOrder(Base):
    __tablename__ = "image_orders"
    __table_args__ = (
        UniqueConstraint("dealer_id", "serial_number", name="uq_image_order_serial"),
    )

    id = Column(Integer, primary_key=True, index=True)
    dealer_id = Column(String(36), ForeignKey("dealers.id", ondelete="CASCADE"), nullable=False, index=True)
    serial_number = Column(String(100), nullable=False, index=True)
    image_urls = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class DealerLot(Base):
    __tablename__ = "dealer_lots"
    __table_args__ = (
        UniqueConstraint("dealer_id", "name", name="uq_dealer_lot_name"),
        Index("ix_dealer_lots_dealer_position", "dealer_id", "position"),
    )

    id = Column(Integer, primary_key=True, index=True)
    dealer_id = Column(String(36), ForeignKey("dealers.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    username = Column(String(255), nullable=False)
    password = Column(String(255), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    last_sync = Column(DateTime(timezone=True), nullable=True)
    building_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class InventoryRecord(Base):
    """Raw row as received from the portal or a bulk upload. Decoded fields are never stored."""

    __tablename__ = "inventory_records"
    __table_args__ = (
        UniqueConstraint("dealer_id", "serial_number", name="uq_inventory_record_serial"),
        Index("ix_inventory_records_dealer_lot", "dealer_id", "lot_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    dealer_id = Column(String(36), ForeignKey("dealers.id", ondelete="CASCADE"), nullable=False, index=True)
    serial_number = Column(String(100), nullable=False, index=True)
    price = Column(Float, nullable=True)
    location = Column(String(255), nullable=True)
    lot_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class DealerStateKey(Base):
    """
    One row per key a dealer's authoritative store has ever held.

    Typed keys (overrides, image orders, lots, inventory) keep their data in
    their own tables and leave `value_json` empty; any other key stores its
    value here.
    """

    __tablename__ = "dealer_state_keys"
    __table_args__ = (
        UniqueConstraint("dealer_id", "key", name="uq_dealer_state_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    dealer_id = Column(String(36), ForeignKey("dealers.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(64), nullable=False)
    value_json = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
