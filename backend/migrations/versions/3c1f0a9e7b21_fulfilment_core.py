"""fulfilment core tables

Revision ID: 3c1f0a9e7b21
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c1f0a9e7b21"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    return sa.inspect(bind).has_table(table_name)


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="buyer"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("buyer_id", sa.Integer(), nullable=False),
            sa.Column("seller_id", sa.Integer(), nullable=True),
            sa.Column("listing_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="CREATED"),
            sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["buyer_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["seller_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
        op.create_index("ix_orders_seller_id", "orders", ["seller_id"])
        op.create_index("ix_orders_listing_id", "orders", ["listing_id"])
        op.create_index("ix_orders_status", "orders", ["status"])
        op.create_index("ix_orders_is_active", "orders", ["is_active"])

    if not _table_exists(bind, "deliveries"):
        op.create_table(
            "deliveries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="PENDING_PICKUP"),
            sa.Column("assigned_to_id", sa.Integer(), nullable=True),
            sa.Column("pickup_address_id", sa.Integer(), nullable=True),
            sa.Column("delivery_address_id", sa.Integer(), nullable=True),
            sa.Column("pickup_otp_hash", sa.String(length=128), nullable=True),
            sa.Column("pickup_otp_attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("pickup_otp_expires_at", sa.DateTime(), nullable=True),
            sa.Column("delivery_otp_hash", sa.String(length=128), nullable=True),
            sa.Column("delivery_otp_attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("delivery_otp_expires_at", sa.DateTime(), nullable=True),
            sa.Column("picked_at", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_deliveries_order_id", "deliveries", ["order_id"], unique=True)
        op.create_index("ix_deliveries_status", "deliveries", ["status"])
        op.create_index("ix_deliveries_assigned_to_id", "deliveries", ["assigned_to_id"])

    if not _table_exists(bind, "delivery_photos"):
        op.create_table(
            "delivery_photos",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("delivery_id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=16), nullable=False),
            sa.Column("url", sa.String(length=1024), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["delivery_id"], ["deliveries.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_delivery_photos_delivery_id", "delivery_photos", ["delivery_id"])

    if not _table_exists(bind, "wallets"):
        op.create_table(
            "wallets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_wallets_user_id", "wallets", ["user_id"], unique=True)

    if not _table_exists(bind, "transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("type", sa.String(length=16), nullable=False),
            sa.Column("provider", sa.String(length=32), nullable=False, server_default="WALLET"),
            sa.Column("provider_id", sa.String(length=160), nullable=True),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="COMPLETED"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("provider", "provider_id", name="uq_transaction_provider_ref"),
        )
        op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
        op.create_index("ix_transactions_order_id", "transactions", ["order_id"])
        op.create_index("ix_transactions_type", "transactions", ["type"])
        op.create_index("ix_transactions_created_at", "transactions", ["created_at"])

    if not _table_exists(bind, "order_transitions"):
        op.create_table(
            "order_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=False),
            sa.Column("subject", sa.String(length=16), nullable=False, server_default="order"),
            sa.Column("from_status", sa.String(length=32), nullable=False, server_default=""),
            sa.Column("to_status", sa.String(length=32), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("reason", sa.String(length=240), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_order_transitions_order_id", "order_transitions", ["order_id"])

    if not _table_exists(bind, "idempotency_keys"):
        op.create_table(
            "idempotency_keys",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=128), nullable=False),
            sa.Column("scope", sa.String(length=128), nullable=False, server_default=""),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("request_hash", sa.String(length=64), nullable=False, server_default=""),
            sa.Column("response_json", sa.Text(), nullable=True),
            sa.Column("status_code", sa.Integer(), nullable=False, server_default="200"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
        )
        op.create_index("ix_idempotency_keys_key", "idempotency_keys", ["key"])

    if not _table_exists(bind, "reconciliation_reports"):
        op.create_table(
            "reconciliation_reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("wallet_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("drift_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("summary_json", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_reconciliation_reports_created_at", "reconciliation_reports", ["created_at"])


def downgrade():
    for table in (
        "reconciliation_reports",
        "idempotency_keys",
        "order_transitions",
        "transactions",
        "wallets",
        "delivery_photos",
        "deliveries",
        "orders",
        "users",
    ):
        op.drop_table(table)
