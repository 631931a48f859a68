"""
AgentStats Database Models
Shadow mirrors of primary entities plus append-only activity and event logs.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base

import core.config as config

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE

UUID_TYPE = UUID(as_uuid=False) if DB_BACKEND_EFFECTIVE == "postgres" else String(36)


def _uuid_default() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


Base = declarative_base()

# =============================================================================
# Enums
# =============================================================================

class AuthenticationType(str, PyEnum):
    api_key = "api_key"
    keycloak = "keycloak"


class UserRole(str, PyEnum):
    admin = "admin"
    user = "user"


class ClientUserRole(str, PyEnum):
    admin = "admin"
    user = "user"


class ChatDirection(str, PyEnum):
    input = "input"
    output = "output"


class FilterDirection(str, PyEnum):
    incoming = "incoming"
    outgoing = "outgoing"


class EntityEventType(str, PyEnum):
    created = "created"
    updated = "updated"
    deleted = "deleted"


class EntityType(str, PyEnum):
    user = "user"
    client = "client"
    agent = "agent"
    client_user = "client_user"
    provisioning_reference = "provisioning_reference"


def _values_check(column: str, enum_cls, name: str) -> CheckConstraint:
    allowed = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)


# =============================================================================
# Shadow entities (secret-free mirrors)
# =============================================================================

class StatisticsUser(Base):
    __tablename__ = "statistics_users"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    original_user_id = Column(String(64), unique=True)  # NULL once the source user was hard-deleted
    role = Column(String(50), nullable=False, default=UserRole.user.value)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class StatisticsClient(Base):
    __tablename__ = "statistics_clients"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    original_client_id = Column(String(64), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    endpoint = Column(String(255), nullable=False)
    authentication_type = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    agents = relationship("StatisticsAgent", back_populates="client")

    __table_args__ = (
        _values_check("authentication_type", AuthenticationType, "ck_statistics_clients_auth_type"),
    )


class StatisticsAgent(Base):
    __tablename__ = "statistics_agents"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    original_agent_id = Column(String(64), nullable=False)
    statistics_client_id = Column(
        UUID_TYPE, ForeignKey("statistics_clients.id", ondelete="CASCADE"), nullable=False
    )
    agent_type = Column(String(50), nullable=False, default="cursor")
    container_type = Column(String(50), nullable=False, default="generic")
    name = Column(String(255))
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    client = relationship("StatisticsClient", back_populates="agents")

    __table_args__ = (
        UniqueConstraint(
            "original_agent_id",
            "statistics_client_id",
            name="uq_statistics_agents_original_client",
        ),
        Index("ix_statistics_agents_client", "statistics_client_id"),
    )


class StatisticsClientUser(Base):
    __tablename__ = "statistics_client_users"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    original_client_user_id = Column(String(64), unique=True, nullable=False)
    statistics_client_id = Column(
        UUID_TYPE, ForeignKey("statistics_clients.id", ondelete="CASCADE"), nullable=False
    )
    statistics_user_id = Column(
        UUID_TYPE, ForeignKey("statistics_users.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(String(20), nullable=False, default=ClientUserRole.user.value)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    client = relationship("StatisticsClient")
    user = relationship("StatisticsUser")

    __table_args__ = (
        _values_check("role", ClientUserRole, "ck_statistics_client_users_role"),
        Index("ix_statistics_client_users_client", "statistics_client_id"),
    )


class StatisticsProvisioningReference(Base):
    __tablename__ = "statistics_provisioning_references"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    original_provisioning_reference_id = Column(String(64), unique=True, nullable=False)
    statistics_client_id = Column(
        UUID_TYPE, ForeignKey("statistics_clients.id", ondelete="CASCADE"), nullable=False
    )
    provider_type = Column(String(50), nullable=False)
    server_id = Column(String(255), nullable=False)
    server_name = Column(String(255))
    public_ip = Column(String(64))
    private_ip = Column(String(64))
    provider_metadata = Column(Text)  # sanitized JSON, never raw provider payloads
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    client = relationship("StatisticsClient")

    __table_args__ = (
        Index("ix_statistics_provisioning_references_client", "statistics_client_id"),
    )


# =============================================================================
# Activity records (append-only)
# =============================================================================

class StatisticsChatIo(Base):
    __tablename__ = "statistics_chat_io"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    statistics_agent_id = Column(UUID_TYPE, ForeignKey("statistics_agents.id", ondelete="SET NULL"))
    statistics_client_id = Column(
        UUID_TYPE, ForeignKey("statistics_clients.id", ondelete="CASCADE"), nullable=False
    )
    statistics_user_id = Column(UUID_TYPE, ForeignKey("statistics_users.id", ondelete="SET NULL"))
    direction = Column(String(10), nullable=False)
    word_count = Column(Integer, nullable=False, default=0)
    char_count = Column(Integer, nullable=False, default=0)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    agent = relationship("StatisticsAgent")
    client = relationship("StatisticsClient")
    user = relationship("StatisticsUser")

    __table_args__ = (
        _values_check("direction", ChatDirection, "ck_statistics_chat_io_direction"),
        Index("ix_statistics_chat_io_client_occurred", "statistics_client_id", "occurred_at"),
    )


class StatisticsChatFilterDrop(Base):
    __tablename__ = "statistics_chat_filter_drops"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    statistics_agent_id = Column(UUID_TYPE, ForeignKey("statistics_agents.id", ondelete="SET NULL"))
    statistics_client_id = Column(
        UUID_TYPE, ForeignKey("statistics_clients.id", ondelete="CASCADE"), nullable=False
    )
    statistics_user_id = Column(UUID_TYPE, ForeignKey("statistics_users.id", ondelete="SET NULL"))
    filter_type = Column(String(100), nullable=False)
    filter_display_name = Column(String(255), nullable=False)
    filter_reason = Column(Text)
    direction = Column(String(10), nullable=False)
    word_count = Column(Integer, nullable=False, default=0)
    char_count = Column(Integer, nullable=False, default=0)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    agent = relationship("StatisticsAgent")
    client = relationship("StatisticsClient")
    user = relationship("StatisticsUser")

    __table_args__ = (
        _values_check("direction", FilterDirection, "ck_statistics_chat_filter_drops_direction"),
        Index("ix_statistics_chat_filter_drops_client_occurred", "statistics_client_id", "occurred_at"),
    )


class StatisticsChatFilterFlag(Base):
    __tablename__ = "statistics_chat_filter_flags"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    statistics_agent_id = Column(UUID_TYPE, ForeignKey("statistics_agents.id", ondelete="SET NULL"))
    statistics_client_id = Column(
        UUID_TYPE, ForeignKey("statistics_clients.id", ondelete="CASCADE"), nullable=False
    )
    statistics_user_id = Column(UUID_TYPE, ForeignKey("statistics_users.id", ondelete="SET NULL"))
    filter_type = Column(String(100), nullable=False)
    filter_display_name = Column(String(255), nullable=False)
    filter_reason = Column(Text)
    direction = Column(String(10), nullable=False)
    word_count = Column(Integer, nullable=False, default=0)
    char_count = Column(Integer, nullable=False, default=0)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    agent = relationship("StatisticsAgent")
    client = relationship("StatisticsClient")
    user = relationship("StatisticsUser")

    __table_args__ = (
        _values_check("direction", FilterDirection, "ck_statistics_chat_filter_flags_direction"),
        Index("ix_statistics_chat_filter_flags_client_occurred", "statistics_client_id", "occurred_at"),
    )


# =============================================================================
# Entity lifecycle events (append-only)
# =============================================================================

class StatisticsEntityEvent(Base):
    __tablename__ = "statistics_entity_events"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    event_type = Column(String(20), nullable=False)
    entity_type = Column(String(40), nullable=False)
    original_entity_id = Column(String(64), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    # Acting user
    statistics_user_id = Column(UUID_TYPE, ForeignKey("statistics_users.id", ondelete="SET NULL"))

    # Affected entity, one column per entity type
    statistics_users_id = Column(UUID_TYPE, ForeignKey("statistics_users.id", ondelete="SET NULL"))
    statistics_clients_id = Column(UUID_TYPE, ForeignKey("statistics_clients.id", ondelete="SET NULL"))
    statistics_agents_id = Column(UUID_TYPE, ForeignKey("statistics_agents.id", ondelete="SET NULL"))
    statistics_client_users_id = Column(
        UUID_TYPE, ForeignKey("statistics_client_users.id", ondelete="SET NULL")
    )
    statistics_provisioning_references_id = Column(
        UUID_TYPE, ForeignKey("statistics_provisioning_references.id", ondelete="SET NULL")
    )

    user = relationship("StatisticsUser", foreign_keys=[statistics_user_id])
    target_user = relationship("StatisticsUser", foreign_keys=[statistics_users_id])
    client = relationship("StatisticsClient")
    agent = relationship("StatisticsAgent")
    client_user = relationship("StatisticsClientUser")
    provisioning_reference = relationship("StatisticsProvisioningReference")

    __table_args__ = (
        _values_check("event_type", EntityEventType, "ck_statistics_entity_events_event_type"),
        _values_check("entity_type", EntityType, "ck_statistics_entity_events_entity_type"),
        Index("ix_statistics_entity_events_occurred", "occurred_at"),
        Index("ix_statistics_entity_events_entity", "entity_type", "original_entity_id"),
    )

