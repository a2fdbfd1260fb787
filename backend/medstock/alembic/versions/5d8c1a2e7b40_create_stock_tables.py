"""
Create users, stock locations, products, medical devices, stock ledger,
stock transfers and audit events.

Revision ID: 5d8c1a2e7b40
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5d8c1a2e7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


STOCK_STATUSES = ("FOR_SALE", "FOR_RENT", "RESERVED", "DEFECTIVE", "IN_REPAIR", "OUT_OF_SERVICE")
PRODUCT_TYPES = ("ACCESSORY", "SPARE_PART", "MEDICAL_DEVICE", "DIAGNOSTIC_DEVICE")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column(
            "role",
            sa.Enum("ADMIN", "MANAGER", "EMPLOYEE", "DOCTOR", name="account_role_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_superuser", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("idx_users_role_active", "users", ["role", "is_active"])

    op.create_table(
        "stock_locations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "location_type",
            sa.Enum("PHYSICAL", "VIRTUAL", "ARCHIVE", name="stock_location_type_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "responsible_user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("name", name="uq_stock_location_name"),
    )
    op.create_index("ix_stock_locations_active", "stock_locations", ["is_active"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("brand", sa.String(length=128), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column(
            "product_type",
            sa.Enum(*PRODUCT_TYPES, name="product_type_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("product_type IN ('ACCESSORY', 'SPARE_PART')", name="ck_products_fungible_type"),
    )
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index("ix_products_type_active", "products", ["product_type", "is_active"])

    op.create_table(
        "medical_devices",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("brand", sa.String(length=128), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("serial_number", sa.String(length=128), nullable=True),
        sa.Column(
            "device_type",
            sa.Enum(*PRODUCT_TYPES, name="device_type_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "MAINTENANCE", "RETIRED", "RESERVED", "SOLD", name="device_status_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "stock_location_id",
            sa.String(length=36),
            sa.ForeignKey("stock_locations.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("serial_number", name="uq_medical_device_serial"),
        sa.CheckConstraint(
            "device_type IN ('MEDICAL_DEVICE', 'DIAGNOSTIC_DEVICE')",
            name="ck_medical_devices_type",
        ),
    )
    op.create_index("ix_medical_devices_location", "medical_devices", ["stock_location_id"])

    op.create_table(
        "stocks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "location_id",
            sa.String(length=36),
            sa.ForeignKey("stock_locations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "product_id",
            sa.String(length=36),
            sa.ForeignKey("products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(*STOCK_STATUSES, name="stock_status_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("location_id", "product_id", name="uq_stocks_location_product"),
        sa.CheckConstraint("quantity >= 0", name="ck_stocks_quantity_non_negative"),
    )
    op.create_index("ix_stocks_product", "stocks", ["product_id"])

    op.create_table(
        "stock_transfers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "from_location_id",
            sa.String(length=36),
            sa.ForeignKey("stock_locations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "to_location_id",
            sa.String(length=36),
            sa.ForeignKey("stock_locations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "product_id",
            sa.String(length=36),
            sa.ForeignKey("products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column(
            "new_status",
            sa.Enum(*STOCK_STATUSES, name="stock_transfer_status_enum", native_enum=False),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "transferred_by_user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("transfer_date", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_stock_transfers_quantity_positive"),
        sa.CheckConstraint("from_location_id <> to_location_id", name="ck_stock_transfers_distinct_locations"),
    )
    op.create_index("ix_stock_transfers_date", "stock_transfers", ["transfer_date"])
    op.create_index("ix_stock_transfers_from", "stock_transfers", ["from_location_id", "transfer_date"])
    op.create_index("ix_stock_transfers_to", "stock_transfers", ["to_location_id", "transfer_date"])
    op.create_index("ix_stock_transfers_product", "stock_transfers", ["product_id", "transfer_date"])
    op.create_index(
        "ix_stock_transfers_transferred_by_user_id",
        "stock_transfers",
        ["transferred_by_user_id"],
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column(
            "actor_user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_events_id", "audit_events", ["id"])
    op.create_index("ix_audit_events_entity_type", "audit_events", ["entity_type"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"])
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
    op.create_index("ix_audit_events_correlation_id", "audit_events", ["correlation_id"])
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
    op.create_index("ix_audit_events_time_desc", "audit_events", [sa.text("occurred_at DESC")])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("stock_transfers")
    op.drop_table("stocks")
    op.drop_table("medical_devices")
    op.drop_table("products")
    op.drop_table("stock_locations")
    op.drop_table("users")
