"""Create statistics shadow, activity, and entity event tables.

Revision ID: 0001_statistics_tables
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_statistics_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    uuid_type = postgresql.UUID(as_uuid=False) if is_postgres else sa.String(length=36)

    # -------------------------------------------------------------------------
    # Shadow entities
    # -------------------------------------------------------------------------
    op.create_table(
        "statistics_users",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("original_user_id", sa.String(length=64), unique=True),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="user"),
        *_timestamps(),
    )

    op.create_table(
        "statistics_clients",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("original_client_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("authentication_type", sa.String(length=20), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "authentication_type IN ('api_key', 'keycloak')",
            name="ck_statistics_clients_auth_type",
        ),
    )

    op.create_table(
        "statistics_agents",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("original_agent_id", sa.String(length=64), nullable=False),
        sa.Column(
            "statistics_client_id",
            uuid_type,
            sa.ForeignKey("statistics_clients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("agent_type", sa.String(length=50), nullable=False, server_default="cursor"),
        sa.Column("container_type", sa.String(length=50), nullable=False, server_default="generic"),
        sa.Column("name", sa.String(length=255)),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint(
            "original_agent_id",
            "statistics_client_id",
            name="uq_statistics_agents_original_client",
        ),
    )
    op.create_index("ix_statistics_agents_client", "statistics_agents", ["statistics_client_id"])

    op.create_table(
        "statistics_client_users",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("original_client_user_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "statistics_client_id",
            uuid_type,
            sa.ForeignKey("statistics_clients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "statistics_user_id",
            uuid_type,
            sa.ForeignKey("statistics_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        *_timestamps(),
        sa.CheckConstraint("role IN ('admin', 'user')", name="ck_statistics_client_users_role"),
    )
    op.create_index(
        "ix_statistics_client_users_client",
        "statistics_client_users",
        ["statistics_client_id"],
    )

    op.create_table(
        "statistics_provisioning_references",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "original_provisioning_reference_id",
            sa.String(length=64),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "statistics_client_id",
            uuid_type,
            sa.ForeignKey("statistics_clients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider_type", sa.String(length=50), nullable=False),
        sa.Column("server_id", sa.String(length=255), nullable=False),
        sa.Column("server_name", sa.String(length=255)),
        sa.Column("public_ip", sa.String(length=64)),
        sa.Column("private_ip", sa.String(length=64)),
        sa.Column("provider_metadata", sa.Text()),
        *_timestamps(),
    )
    op.create_index(
        "ix_statistics_provisioning_references_client",
        "statistics_provisioning_references",
        ["statistics_client_id"],
    )

    # -------------------------------------------------------------------------
    # Activity records
    # -------------------------------------------------------------------------
    op.create_table(
        "statistics_chat_io",
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
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("char_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("direction IN ('input', 'output')", name="ck_statistics_chat_io_direction"),
    )
    op.create_index(
        "ix_statistics_chat_io_client_occurred",
        "statistics_chat_io",
        ["statistics_client_id", "occurred_at"],
    )

    op.create_table(
        "statistics_chat_filter_drops",
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
            name="ck_statistics_chat_filter_drops_direction",
        ),
    )
    op.create_index(
        "ix_statistics_chat_filter_drops_client_occurred",
        "statistics_chat_filter_drops",
        ["statistics_client_id", "occurred_at"],
    )

    # -------------------------------------------------------------------------
    # Entity lifecycle events
    # -------------------------------------------------------------------------
    op.create_table(
        "statistics_entity_events",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("event_type", sa.String(length=20), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("original_entity_id", sa.String(length=64), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "statistics_user_id",
            uuid_type,
            sa.ForeignKey("statistics_users.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "statistics_users_id",
            uuid_type,
            sa.ForeignKey("statistics_users.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "statistics_clients_id",
            uuid_type,
            sa.ForeignKey("statistics_clients.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "statistics_agents_id",
            uuid_type,
            sa.ForeignKey("statistics_agents.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "statistics_client_users_id",
            uuid_type,
            sa.ForeignKey("statistics_client_users.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "statistics_provisioning_references_id",
            uuid_type,
            sa.ForeignKey("statistics_provisioning_references.id", ondelete="SET NULL"),
        ),
        sa.CheckConstraint(
            "event_type IN ('created', 'updated', 'deleted')",
            name="ck_statistics_entity_events_event_type",
        ),
        sa.CheckConstraint(
            "entity_type IN ('user', 'client', 'agent', 'client_user', 'provisioning_reference')",
            name="ck_statistics_entity_events_entity_type",
        ),
    )
    op.create_index("ix_statistics_entity_events_occurred", "statistics_entity_events", ["occurred_at"])
    op.create_index(
        "ix_statistics_entity_events_entity",
        "statistics_entity_events",
        ["entity_type", "original_entity_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_statistics_entity_events_entity", table_name="statistics_entity_events")
    op.drop_index("ix_statistics_entity_events_occurred", table_name="statistics_entity_events")
    op.drop_table("statistics_entity_events")
    op.drop_index(
        "ix_statistics_chat_filter_drops_client_occurred",
        table_name="statistics_chat_filter_drops",
    )
    op.drop_table("statistics_chat_filter_drops")
    op.drop_index("ix_statistics_chat_io_client_occurred", table_name="statistics_chat_io")
    op.drop_table("statistics_chat_io")
    op.drop_index(
        "ix_statistics_provisioning_references_client",
        table_name="statistics_provisioning_references",
    )
    op.drop_table("statistics_provisioning_references")
    op.drop_index("ix_statistics_client_users_client", table_name="statistics_client_users")
    op.drop_table("statistics_client_users")
    op.drop_index("ix_statistics_agents_client", table_name="statistics_agents")
    op.drop_table("statistics_agents")
    op.drop_table("statistics_clients")
    op.drop_table("statistics_users")
