"""initial purchases schema

Revision ID: 0001_purchases
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_purchases"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payment_rails",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("rail", sa.String(length=16), nullable=False),
        sa.Column("chain_id", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("treasury", sa.String(length=200), nullable=False),
        sa.Column("rpc_url", sa.String(length=500), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("min_confirmations", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("rail", "chain_id", name="uq_payment_rails_rail_chain", postgresql_nulls_not_distinct=True),
        sa.CheckConstraint("rail IN ('eth', 'btc', 'xrp', 'pi')", name="ck_payment_rails_rail"),
        sa.CheckConstraint("min_confirmations >= 0", name="ck_payment_rails_min_confirmations"),
    )

    op.create_table(
        "listing_prices",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("listing_id", sa.String(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("amount_int", sa.Numeric(78, 0), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_listing_prices_listing_currency", "listing_prices", ["listing_id", "currency", "created_at"])

    op.create_table(
        "purchases",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("buyer", sa.String(length=200), nullable=False),
        sa.Column("listing_id", sa.String(), nullable=False),
        sa.Column("price_id", sa.String(), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("amount_int", sa.Numeric(78, 0), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("rail", sa.String(length=16), nullable=True),
        sa.Column("chain_id", sa.Integer(), nullable=True),
        sa.Column("tx_reference", sa.String(length=200), nullable=True),
        sa.Column("canonical_id", sa.String(length=200), nullable=True),
        sa.Column("verified_amount_int", sa.Numeric(78, 0), nullable=True),
        sa.Column("verified_confirmations", sa.Integer(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(length=64), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "rail",
            "chain_id",
            "tx_reference",
            name="uq_purchases_rail_chain_tx",
            postgresql_nulls_not_distinct=True,
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded', 'canceled')",
            name="ck_purchases_status",
        ),
    )
    op.create_index("ix_purchases_buyer", "purchases", ["buyer"])
    op.create_index("ix_purchases_listing_id", "purchases", ["listing_id"])
    op.create_index("ix_purchases_status", "purchases", ["status"])
    # Finalizer scan: oldest pending first.
    op.create_index(
        "ix_purchases_pending_created_at",
        "purchases",
        ["created_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "purchase_timeline",
        sa.Column("timeline_id", sa.String(), nullable=False),
        sa.Column("purchase_id", sa.String(), nullable=False),
        sa.Column("from_state", sa.String(length=16), nullable=True),
        sa.Column("to_state", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("path", sa.String(length=16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"]),
        sa.PrimaryKeyConstraint("timeline_id"),
    )
    op.create_index("ix_purchase_timeline_purchase_id", "purchase_timeline", ["purchase_id"])

    op.create_table(
        "entitlements",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("buyer", sa.String(length=200), nullable=False),
        sa.Column("listing_id", sa.String(), nullable=False),
        sa.Column("granted_by_purchase_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["granted_by_purchase_id"], ["purchases.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("buyer", "listing_id", name="uq_entitlements_buyer_listing"),
    )


def downgrade() -> None:
    op.drop_table("entitlements")
    op.drop_index("ix_purchase_timeline_purchase_id", table_name="purchase_timeline")
    op.drop_table("purchase_timeline")
    op.drop_index("ix_purchases_pending_created_at", table_name="purchases")
    op.drop_index("ix_purchases_status", table_name="purchases")
    op.drop_index("ix_purchases_listing_id", table_name="purchases")
    op.drop_index("ix_purchases_buyer", table_name="purchases")
    op.drop_table("purchases")
    op.drop_index("ix_listing_prices_listing_currency", table_name="listing_prices")
    op.drop_table("listing_prices")
    op.drop_table("payment_rails")
