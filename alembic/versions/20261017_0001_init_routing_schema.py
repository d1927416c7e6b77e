"""init routing schema

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
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
    agent_availability = sa.Enum(
        "online", "away", "busy", "offline", name="agent_availability"
    )
    conversation_priority = sa.Enum(
        "low", "normal", "high", "urgent", name="conversation_priority"
    )
    conversation_status = sa.Enum(
        "open", "pending", "resolved", "closed", name="conversation_status"
    )

    bind = op.get_bind()
    agent_availability.create(bind, checkfirst=True)
    conversation_priority.create(bind, checkfirst=True)
    conversation_status.create(bind, checkfirst=True)

    op.create_table(
        "agents",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "availability",
            postgresql.ENUM(name="agent_availability", create_type=False),
            nullable=False,
            server_default=sa.text("'offline'"),
        ),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agents_organization_id", "agents", ["organization_id"])
    op.create_index("ix_agents_availability", "agents", ["availability"])

    op.create_table(
        "teams",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "name", name="uq_team_org_name"),
    )
    op.create_index("ix_teams_organization_id", "teams", ["organization_id"])

    op.create_table(
        "team_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("team_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("team_id", "agent_id", name="uq_team_member"),
    )
    op.create_index("ix_team_members_team_id", "team_members", ["team_id"])
    op.create_index("ix_team_members_agent_id", "team_members", ["agent_id"])

    op.create_table(
        "team_channels",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("team_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("channel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("team_id", "channel_id", name="uq_team_channel"),
    )
    op.create_index("ix_team_channels_team_id", "team_channels", ["team_id"])
    op.create_index("ix_team_channels_channel_id", "team_channels", ["channel_id"])

    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("channel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "priority",
            postgresql.ENUM(name="conversation_priority", create_type=False),
            nullable=False,
            server_default=sa.text("'normal'"),
        ),
        sa.Column(
            "status",
            postgresql.ENUM(name="conversation_status", create_type=False),
            nullable=False,
            server_default=sa.text("'open'"),
        ),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conversations_organization_id", "conversations", ["organization_id"])
    op.create_index("ix_conversations_channel_id", "conversations", ["channel_id"])
    op.create_index(
        "ix_conversations_org_status_priority",
        "conversations",
        ["organization_id", "status", "priority"],
    )

    op.create_table(
        "conversation_agents",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "assigned_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("assigned_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_by_id"], ["agents.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("conversation_id", "agent_id", name="uq_conversation_agent"),
    )
    op.create_index(
        "ix_conversation_agents_conversation_id",
        "conversation_agents",
        ["conversation_id"],
    )
    op.create_index("ix_conversation_agents_agent_id", "conversation_agents", ["agent_id"])
    op.create_index(
        "uq_conversation_agents_one_primary",
        "conversation_agents",
        ["conversation_id"],
        unique=True,
        postgresql_where=sa.text("is_primary"),
    )


def downgrade() -> None:
    op.drop_index("uq_conversation_agents_one_primary", table_name="conversation_agents")
    op.drop_index("ix_conversation_agents_agent_id", table_name="conversation_agents")
    op.drop_index("ix_conversation_agents_conversation_id", table_name="conversation_agents")
    op.drop_table("conversation_agents")

    op.drop_index("ix_conversations_org_status_priority", table_name="conversations")
    op.drop_index("ix_conversations_channel_id", table_name="conversations")
    op.drop_index("ix_conversations_organization_id", table_name="conversations")
    op.drop_table("conversations")

    op.drop_index("ix_team_channels_channel_id", table_name="team_channels")
    op.drop_index("ix_team_channels_team_id", table_name="team_channels")
    op.drop_table("team_channels")

    op.drop_index("ix_team_members_agent_id", table_name="team_members")
    op.drop_index("ix_team_members_team_id", table_name="team_members")
    op.drop_table("team_members")

    op.drop_index("ix_teams_organization_id", table_name="teams")
    op.drop_table("teams")

    op.drop_index("ix_agents_availability", table_name="agents")
    op.drop_index("ix_agents_organization_id", table_name="agents")
    op.drop_table("agents")

    bind = op.get_bind()
    sa.Enum(name="conversation_status").drop(bind, checkfirst=True)
    sa.Enum(name="conversation_priority").drop(bind, checkfirst=True)
    sa.Enum(name="agent_availability").drop(bind, checkfirst=True)
