"""add library entries and progress history

Revision ID: 9a6f1b4d7e22
Revises: 7d2c5f8e3a14
Create Date: 2026-10-09

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "9a6f1b4d7e22"
down_revision = "7d2c5f8e3a14"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "library_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("game_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("play_time", sa.Float(), nullable=True),
        sa.Column("completion_percentage", sa.Float(), nullable=True),
        sa.Column("achievements_completed", sa.Integer(), nullable=True),
        sa.Column("last_played_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
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
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["game_id"], ["games.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "game_id", name="uq_library_user_game"),
    )
    op.create_index(op.f("ix_library_entries_user_id"), "library_entries", ["user_id"], unique=False)
    op.create_index(op.f("ix_library_entries_game_id"), "library_entries", ["game_id"], unique=False)

    op.create_table(
        "progress_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("game_id", sa.String(length=64), nullable=False),
        sa.Column("play_time", sa.Float(), nullable=True),
        sa.Column("completion_percentage", sa.Float(), nullable=True),
        sa.Column("achievements_completed", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_progress_history_created_at"), "progress_history", ["created_at"], unique=False)
    op.create_index(
        "ix_progress_history_user_game", "progress_history", ["user_id", "game_id", "created_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_progress_history_user_game", table_name="progress_history")
    op.drop_index(op.f("ix_progress_history_created_at"), table_name="progress_history")
    op.drop_table("progress_history")
    op.drop_index(op.f("ix_library_entries_game_id"), table_name="library_entries")
    op.drop_index(op.f("ix_library_entries_user_id"), table_name="library_entries")
    op.drop_table("library_entries")
