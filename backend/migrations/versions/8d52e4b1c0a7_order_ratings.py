"""order ratings

Revision ID: 8d52e4b1c0a7
Revises: 3c1f0a9e7b21
Create Date: 2026-10-19 15:30:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "8d52e4b1c0a7"
down_revision = "3c1f0a9e7b21"
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    if sa.inspect(bind).has_table("ratings"):
        return

    op.create_table(
        "ratings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("giver_id", sa.Integer(), nullable=False),
        sa.Column("receiver_id", sa.Integer(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("comment", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("score >= 1 AND score <= 5", name="ck_ratings_score_range"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["giver_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["receiver_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "giver_id", "receiver_id", name="uq_ratings_order_giver_receiver"),
    )
    op.create_index("ix_ratings_order_id", "ratings", ["order_id"])
    op.create_index("ix_ratings_giver_id", "ratings", ["giver_id"])
    op.create_index("ix_ratings_receiver_id", "ratings", ["receiver_id"])


def downgrade():
    op.drop_table("ratings")
