"""Add statistics filter flags table.

Revision ID: 0002_statistics_filter_flags
Revises: 0001_statistics_tables
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_statistics_filter_flags"
down_revision = "0001_statistics_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    uuid_type = postgresql.UUID(as_uuid=False) if is_postgres else sa.String(length=36)

    op.create_table(
        "statistics_chat_filter_flags",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "statistics_agent_id",
            uuid_type,
            sa.ForeignKey("statistics_agents.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "statistics_client_id",
            uuid_type,
            sa.ForeignKey("statistics_clients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "statistics_user_id",
            uuid_type,
            sa.ForeignKey("statistics_users.id", ondelete="SET NULL"),
        ),
        sa.Column("filter_type", sa.String(length=100), nullable=False),
        sa.Column("filter_display_name", sa.String(length=255), nullable=False),
        sa.Column("filter_reason", sa.Text()),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("char_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "direction IN ('incoming', 'outgoing')",
            name="ck_statistics_chat_filter_flags_direction",
        ),
    )
    op.create_index(
        "ix_statistics_chat_filter_flags_client_occurred",
        "statistics_chat_filter_flags",
        ["statistics_client_id", "occurred_at"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_statistics_chat_filter_flags_client_occurred",
        table_name="statistics_chat_filter_flags",
    )
    op.drop_table("statistics_chat_filter_flags")
