"""add friend edges

Revision ID: 4b8e2d6a1c93
Revises: 1f3a9c7d2e50
Create Date: 2026-10-05

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "4b8e2d6a1c93"
down_revision = "1f3a9c7d2e50"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "friend_edges",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        # "<lower id>:<higher id>", one edge per unordered pair.
        sa.Column("pair_key", sa.String(length=64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["requester_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recipient_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pair_key", name="uq_friend_edge_pair"),
    )
    op.create_index(op.f("ix_friend_edges_requester_id"), "friend_edges", ["requester_id"], unique=False)
    op.create_index(op.f("ix_friend_edges_recipient_id"), "friend_edges", ["recipient_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_friend_edges_recipient_id"), table_name="friend_edges")
    op.drop_index(op.f("ix_friend_edges_requester_id"), table_name="friend_edges")
    op.drop_table("friend_edges")
