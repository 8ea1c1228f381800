"""help chat schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    help_chat_sender = sa.Enum("visitor", "admin", "system", name="help_chat_sender")
    help_chat_sender.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "support_agents",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("role", sa.String(length=120), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_assigned_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "support_chat_sessions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("guest_id", sa.String(length=50), nullable=False),
        sa.Column("assigned_agent_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "session_started_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_activity_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["assigned_agent_id"], ["support_agents.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("guest_id"),
    )
    op.create_index(
        "ix_support_chat_sessions_assigned_agent_id",
        "support_chat_sessions",
        ["assigned_agent_id"],
    )

    op.create_table(
        "help_chat_messages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("guest_id", sa.String(length=50), nullable=False),
        sa.Column("receiver_id", sa.String(length=120), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "sender",
            sa.Enum("visitor", "admin", "system", name="help_chat_sender", create_type=False),
            nullable=False,
        ),
        sa.Column("agent_id", sa.Integer(), nullable=True),
        sa.Column(
            "is_auto_message", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["agent_id"], ["support_agents.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_help_chat_messages_guest_id", "help_chat_messages", ["guest_id"])
    op.create_index("ix_help_chat_messages_agent_id", "help_chat_messages", ["agent_id"])
    op.create_index(
        "idx_help_chat_guest_created_at",
        "help_chat_messages",
        ["guest_id", "created_at"],
    )

    op.create_table(
        "help_chat_settings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("setting_key", sa.String(length=120), nullable=False),
        sa.Column("setting_value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.String(length=120), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("setting_key"),
    )


def downgrade() -> None:
    op.drop_table("help_chat_settings")
    op.drop_index("idx_help_chat_guest_created_at", table_name="help_chat_messages")
    op.drop_index("ix_help_chat_messages_agent_id", table_name="help_chat_messages")
    op.drop_index("ix_help_chat_messages_guest_id", table_name="help_chat_messages")
    op.drop_table("help_chat_messages")
    op.drop_index(
        "ix_support_chat_sessions_assigned_agent_id", table_name="support_chat_sessions"
    )
    op.drop_table("support_chat_sessions")
    op.drop_table("support_agents")

    sa.Enum(name="help_chat_sender").drop(op.get_bind(), checkfirst=True)
