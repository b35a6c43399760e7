"""Create dealer and inventory tables.

Revision ID: 5d1a7c3e9b20
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "5d1a7c3e9b20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return bool(insp.has_table(table_name))


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _dealer_fk() -> sa.Column:
    return sa.Column(
        "dealer_id",
        sa.String(length=36),
        sa.ForeignKey("dealers.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    if not _table_exists("dealers"):
        op.create_table(
            "dealers",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("slug", sa.String(length=64), nullable=False),
            sa.Column("contact_email", sa.String(length=255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )
        op.create_index("ix_dealers_slug", "dealers", ["slug"], unique=True)
        op.create_index("ix_dealers_is_active", "dealers", ["is_active"])

    if not _table_exists("building_overrides"):
        op.create_table(
            "building_overrides",
            sa.Column("id", sa.Integer(), primary_key=True),
            _dealer_fk(),
            sa.Column("serial_number", sa.String(length=100), nullable=False),
            sa.Column(
                "status",
                sa.Enum(
                    "available",
                    "pending",
                    "sold",
                    name="building_override_status_enum",
                    native_enum=False,
                ),
                nullable=True,
            ),
            sa.Column("hidden", sa.Boolean(), nullable=True),
            sa.Column("lot_location", sa.String(length=255), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.UniqueConstraint("dealer_id", "serial_number", name="uq_building_override_serial"),
        )
        op.create_index("ix_building_overrides_id", "building_overrides", ["id"])
        op.create_index("ix_building_overrides_dealer_id", "building_overrides", ["dealer_id"])
        op.create_index("ix_building_overrides_serial_number", "building_overrides", ["serial_number"])
        op.create_index("ix_building_overrides_dealer_lot", "building_overrides", ["dealer_id", "lot_location"])

    if not _table_exists("image_orders"):
        op.create_table(
            "image_orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            _dealer_fk(),
            sa.Column("serial_number", sa.String(length=100), nullable=False),
            sa.Column("image_urls", sa.JSON(), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("dealer_id", "serial_number", name="uq_image_order_serial"),
        )
        op.create_index("ix_image_orders_id", "image_orders", ["id"])
        op.create_index("ix_image_orders_dealer_id", "image_orders", ["dealer_id"])
        op.create_index("ix_image_orders_serial_number", "image_orders", ["serial_number"])

    if not _table_exists("dealer_lots"):
        op.create_table(
            "dealer_lots",
            sa.Column("id", sa.Integer(), primary_key=True),
            _dealer_fk(),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("username", sa.String(length=255), nullable=False),
            sa.Column("password", sa.String(length=255), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_sync", sa.DateTime(timezone=True), nullable=True),
            sa.Column("building_count", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.UniqueConstraint("dealer_id", "name", name="uq_dealer_lot_name"),
        )
        op.create_index("ix_dealer_lots_id", "dealer_lots", ["id"])
        op.create_index("ix_dealer_lots_dealer_id", "dealer_lots", ["dealer_id"])
        op.create_index("ix_dealer_lots_dealer_position", "dealer_lots", ["dealer_id", "position"])

    if not _table_exists("inventory_records"):
        op.create_table(
            "inventory_records",
            sa.Column("id", sa.Integer(), primary_key=True),
            _dealer_fk(),
            sa.Column("serial_number", sa.String(length=100), nullable=False),
            sa.Column("price", sa.Float(), nullable=True),
            sa.Column("location", sa.String(length=255), nullable=True),
            sa.Column("lot_name", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("dealer_id", "serial_number", name="uq_inventory_record_serial"),
        )
        op.create_index("ix_inventory_records_id", "inventory_records", ["id"])
        op.create_index("ix_inventory_records_dealer_id", "inventory_records", ["dealer_id"])
        op.create_index("ix_inventory_records_serial_number", "inventory_records", ["serial_number"])
        op.create_index("ix_inventory_records_dealer_lot", "inventory_records", ["dealer_id", "lot_name"])

    if not _table_exists("dealer_state_keys"):
        op.create_table(
            "dealer_state_keys",
            sa.Column("id", sa.Integer(), primary_key=True),
            _dealer_fk(),
            sa.Column("key", sa.String(length=64), nullable=False),
            sa.Column("value_json", sa.JSON(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("dealer_id", "key", name="uq_dealer_state_key"),
        )
        op.create_index("ix_dealer_state_keys_id", "dealer_state_keys", ["id"])
        op.create_index("ix_dealer_state_keys_dealer_id", "dealer_state_keys", ["dealer_id"])


def downgrade() -> None:
    for table_name in (
        "dealer_state_keys",
        "inventory_records",
        "dealer_lots",
        "image_orders",
        "building_overrides",
        "dealers",
    ):
        if _table_exists(table_name):
            op.drop_table(table_name)
