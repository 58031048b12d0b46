"""add activity events, reactions and comments

Revision ID: 7d2c5f8e3a14
Revises: 4b8e2d6a1c93
Create Date: 2026-10-07 14:12:51.318004

"""
from alembic import op
import sqlalchemy as sa



# revision identifiers, used by Alembic.
revision = '7d2c5f8e3a14'
down_revision = '4b8e2d6a1c93'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "activity_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        # No FK: catalog rows may disappear without taking the history with them.
        sa.Column("subject_game_id", sa.String(length=64), nullable=True),
        sa.Column(
            "subject_friend_id",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index(op.f("ix_activity_events_created_at"), "activity_events", ["created_at"], unique=False)
    op.create_index(op.f("ix_activity_events_actor_id"), "activity_events", ["actor_id"], unique=False)
    op.create_index(
        op.f("ix_activity_events_subject_game_id"), "activity_events", ["subject_game_id"], unique=False
    )
    op.create_index(
        "ix_activity_events_actor_created", "activity_events", ["actor_id", "created_at", "id"], unique=False
    )

    op.create_table(
        "activity_reactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "event_id", sa.Integer(), sa.ForeignKey("activity_events.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("event_id", "user_id", "kind", name="uq_reaction_event_user_kind"),
    )
    op.create_index(op.f("ix_activity_reactions_event_id"), "activity_reactions", ["event_id"], unique=False)
    op.create_index(op.f("ix_activity_reactions_user_id"), "activity_reactions", ["user_id"], unique=False)

    op.create_table(
        "activity_comments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "event_id", sa.Integer(), sa.ForeignKey("activity_events.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(op.f("ix_activity_comments_event_id"), "activity_comments", ["event_id"], unique=False)
    op.create_index(op.f("ix_activity_comments_user_id"), "activity_comments", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_activity_comments_user_id"), table_name="activity_comments")
    op.drop_index(op.f("ix_activity_comments_event_id"), table_name="activity_comments")
    op.drop_table("activity_comments")
    op.drop_index(op.f("ix_activity_reactions_user_id"), table_name="activity_reactions")
    op.drop_index(op.f("ix_activity_reactions_event_id"), table_name="activity_reactions")
    op.drop_table("activity_reactions")
    op.drop_index("ix_activity_events_actor_created", table_name="activity_events")
    op.drop_index(op.f("ix_activity_events_subject_game_id"), table_name="activity_events")
    op.drop_index(op.f("ix_activity_events_actor_id"), table_name="activity_events")
    op.drop_index(op.f("ix_activity_events_created_at"), table_name="activity_events")
    op.drop_table("activity_events")
