"""create acquisition tables

Revision ID: 3f9a1c2d7b10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

pricing_mode = sa.Enum("individual", "total", name="pricing_mode")


def upgrade() -> None:
    op.create_table(
        "tenders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("reference_number", sa.String(64), nullable=False, unique=True),
        sa.Column("title", sa.String(255)),
        sa.Column("pricing_mode", pricing_mode, nullable=False, server_default="individual"),
        sa.Column("total_actual_price", sa.Numeric(16, 2)),
        sa.Column("last_sequence_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("finalized_at", sa.DateTime(timezone=True)),
        sa.Column("finalized_by", sa.String(128)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total_actual_price IS NULL OR total_actual_price >= 0", name="ck_tender_total_price_nonneg"),
        sa.CheckConstraint("last_sequence_number >= 0", name="ck_tender_last_sequence_nonneg"),
    )

    op.create_table(
        "tender_items",
        sa.Column("tender_id", sa.BigInteger(), sa.ForeignKey("tenders.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("item_master_id", sa.String(64), primary_key=True),
        sa.Column("nomenclature", sa.String(255), nullable=False),
        sa.Column("ordered_quantity", sa.Integer(), nullable=False),
        sa.Column("estimated_unit_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("actual_unit_price", sa.Numeric(14, 2)),
        sa.CheckConstraint("ordered_quantity > 0", name="ck_tender_item_qty_pos"),
        sa.CheckConstraint("estimated_unit_price >= 0", name="ck_tender_item_estimate_nonneg"),
        sa.CheckConstraint("actual_unit_price IS NULL OR actual_unit_price >= 0", name="ck_tender_item_actual_nonneg"),
    )

    op.create_table(
        "item_exclusions",
        sa.Column("tender_id", sa.BigInteger(), sa.ForeignKey("tenders.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("item_master_id", sa.String(64), primary_key=True),
        sa.Column("excluded", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "deliveries",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("tender_id", sa.BigInteger(), sa.ForeignKey("tenders.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("personnel", sa.String(200), nullable=False),
        sa.Column("delivery_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("chalan_reference", sa.String(128)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tender_id", "sequence_number", name="uq_delivery_tender_sequence"),
        sa.CheckConstraint("sequence_number > 0", name="ck_delivery_sequence_pos"),
    )
    op.create_index("ix_deliveries_tender_id", "deliveries", ["tender_id"])

    op.create_table(
        "delivery_lines",
        sa.Column("delivery_id", sa.BigInteger(), sa.ForeignKey("deliveries.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("item_master_id", sa.String(64), primary_key=True),
        sa.Column("delivered_qty", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2)),
        sa.CheckConstraint("delivered_qty > 0", name="ck_delivery_line_qty_pos"),
        sa.CheckConstraint("unit_price IS NULL OR unit_price >= 0", name="ck_delivery_line_price_nonneg"),
    )

    op.create_table(
        "delivery_serial_numbers",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("delivery_id", sa.BigInteger(), nullable=False),
        sa.Column("item_master_id", sa.String(64), nullable=False),
        sa.Column("serial_number", sa.String(128), nullable=False),
        sa.Column("serial_key", sa.String(128), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["delivery_id", "item_master_id"],
            ["delivery_lines.delivery_id", "delivery_lines.item_master_id"],
            ondelete="CASCADE",
            name="fk_serial_delivery_line",
        ),
        sa.UniqueConstraint("delivery_id", "item_master_id", "serial_key", name="uq_serial_per_delivery_line"),
    )
    op.create_index("ix_serial_numbers_line", "delivery_serial_numbers", ["delivery_id", "item_master_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("actor", sa.String(128)),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("meta", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_entity", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_serial_numbers_line", table_name="delivery_serial_numbers")
    op.drop_table("delivery_serial_numbers")
    op.drop_table("delivery_lines")
    op.drop_index("ix_deliveries_tender_id", table_name="deliveries")
    op.drop_table("deliveries")
    op.drop_table("item_exclusions")
    op.drop_table("tender_items")
    op.drop_table("tenders")
    pricing_mode.drop(op.get_bind(), checkfirst=True)
