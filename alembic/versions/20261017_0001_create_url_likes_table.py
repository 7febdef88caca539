"""create url_likes table

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "url_likes",
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("likes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("likes >= 0", name="ck_url_likes_non_negative"),
        sa.CheckConstraint("likes <= 100000", name="ck_url_likes_ceiling"),
        sa.PrimaryKeyConstraint("url"),
    )


def downgrade() -> None:
    op.drop_table("url_likes")
