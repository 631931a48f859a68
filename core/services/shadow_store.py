"""
Shadow store: upserts and lookups over the secret-free mirror tables.

Every write commits on its own. Failures propagate to the caller; the
recorder and sync jobs decide how to log them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import IntegrityError

from core.models import (
    ChatDirection,
    ClientUserRole,
    FilterDirection,
    StatisticsAgent,
    StatisticsChatFilterDrop,
    StatisticsChatFilterFlag,
    StatisticsChatIo,
    StatisticsClient,
    StatisticsClientUser,
    StatisticsEntityEvent,
    StatisticsProvisioningReference,
    StatisticsUser,
    UserRole,
    utc_now,
)


def _insert_or_retry(db, row, refetch: Callable[[], Optional[object]], apply: Callable[[object], None]):
    """
    Insert `row`; if a concurrent writer won the unique key, update theirs instead.
    """
    db.add(row)
    try:
        db.commit()
        return row
    except IntegrityError:
        db.rollback()
        existing = refetch()
        if existing is None:
            raise
        apply(existing)
        db.commit()
        return existing


# =============================================================================
# Users
# =============================================================================

def find_user_by_original_id(db, original_user_id: str) -> Optional[StatisticsUser]:
    return (
        db.query(StatisticsUser)
        .filter(StatisticsUser.original_user_id == original_user_id)
        .first()
    )


def upsert_user(db, original_user_id: str, role: Optional[str] = None) -> StatisticsUser:
    role_value = role or UserRole.user.value
    existing = find_user_by_original_id(db, original_user_id)
    if existing is not None:
        existing.role = role_value
        db.commit()
        return existing

    def _apply(row):
        row.role = role_value

    return _insert_or_retry(
        db,
        StatisticsUser(original_user_id=original_user_id, role=role_value),
        lambda: find_user_by_original_id(db, original_user_id),
        _apply,
    )


# =============================================================================
# Clients
# =============================================================================

def find_client_by_original_id(db, original_client_id: str) -> Optional[StatisticsClient]:
    return (
        db.query(StatisticsClient)
        .filter(StatisticsClient.original_client_id == original_client_id)
        .first()
    )


def upsert_client(
    db,
    original_client_id: str,
    name: str,
    endpoint: str,
    authentication_type: str,
) -> StatisticsClient:
    def _apply(row):
        row.name = name
        row.endpoint = endpoint
        row.authentication_type = authentication_type

    existing = find_client_by_original_id(db, original_client_id)
    if existing is not None:
        _apply(existing)
        db.commit()
        return existing

    return _insert_or_retry(
        db,
        StatisticsClient(
            original_client_id=original_client_id,
            name=name,
            endpoint=endpoint,
            authentication_type=authentication_type,
        ),
        lambda: find_client_by_original_id(db, original_client_id),
        _apply,
    )


def map_original_client_ids(db, original_client_ids: Sequence[str]) -> list[str]:
    """Translate primary client ids into shadow client ids. Empty input issues no query."""
    if not original_client_ids:
        return []
    rows = (
        db.query(StatisticsClient.id)
        .filter(StatisticsClient.original_client_id.in_(list(original_client_ids)))
        .all()
    )
    return [row.id for row in rows]


# =============================================================================
# Agents
# =============================================================================

def find_agent_by_original_id(
    db,
    original_agent_id: str,
    statistics_client_id: str,
) -> Optional[StatisticsAgent]:
    return (
        db.query(StatisticsAgent)
        .filter(StatisticsAgent.original_agent_id == original_agent_id)
        .filter(StatisticsAgent.statistics_client_id == statistics_client_id)
        .first()
    )


def upsert_agent(
    db,
    original_agent_id: str,
    statistics_client_id: str,
    agent_type: Optional[str] = None,
    container_type: Optional[str] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> StatisticsAgent:
    """
    Upsert an agent keyed by (original agent id, shadow client id).

    Only attributes that are given overwrite an existing row; with no
    attributes at all an existing row is returned untouched.
    """
    patch = {
        "agent_type": agent_type,
        "container_type": container_type,
        "name": name,
        "description": description,
    }
    patch = {key: value for key, value in patch.items() if value is not None}

    def _apply(row):
        for key, value in patch.items():
            setattr(row, key, value)

    existing = find_agent_by_original_id(db, original_agent_id, statistics_client_id)
    if existing is not None:
        if patch:
            _apply(existing)
            db.commit()
        return existing

    return _insert_or_retry(
        db,
        StatisticsAgent(
            original_agent_id=original_agent_id,
            statistics_client_id=statistics_client_id,
            agent_type=agent_type or "cursor",
            container_type=container_type or "generic",
            name=name,
            description=description,
        ),
        lambda: find_agent_by_original_id(db, original_agent_id, statistics_client_id),
        _apply,
    )


# =============================================================================
# Client users & provisioning references
# =============================================================================

def find_client_user_by_original_id(db, original_client_user_id: str) -> Optional[StatisticsClientUser]:
    return (
        db.query(StatisticsClientUser)
        .filter(StatisticsClientUser.original_client_user_id == original_client_user_id)
        .first()
    )


def create_client_user(
    db,
    original_client_user_id: str,
    statistics_client_id: str,
    statistics_user_id: str,
    role: Optional[str] = None,
) -> StatisticsClientUser:
    role_value = role or ClientUserRole.user.value

    def _apply(row):
        row.statistics_client_id = statistics_client_id
        row.statistics_user_id = statistics_user_id
        row.role = role_value

    existing = find_client_user_by_original_id(db, original_client_user_id)
    if existing is not None:
        _apply(existing)
        db.commit()
        return existing

    return _insert_or_retry(
        db,
        StatisticsClientUser(
            original_client_user_id=original_client_user_id,
            statistics_client_id=statistics_client_id,
            statistics_user_id=statistics_user_id,
            role=role_value,
        ),
        lambda: find_client_user_by_original_id(db, original_client_user_id),
        _apply,
    )


def find_provisioning_reference_by_original_id(
    db,
    original_provisioning_reference_id: str,
) -> Optional[StatisticsProvisioningReference]:
    return (
        db.query(StatisticsProvisioningReference)
        .filter(
            StatisticsProvisioningReference.original_provisioning_reference_id
            == original_provisioning_reference_id
        )
        .first()
    )


def create_provisioning_reference(
    db,
    original_provisioning_reference_id: str,
    statistics_client_id: str,
    provider_type: str,
    server_id: str,
    server_name: Optional[str] = None,
    public_ip: Optional[str] = None,
    private_ip: Optional[str] = None,
    provider_metadata: Optional[str] = None,
) -> StatisticsProvisioningReference:
    """Persist a provisioning reference. `provider_metadata` must already be sanitized."""
    values = {
        "statistics_client_id": statistics_client_id,
        "provider_type": provider_type,
        "server_id": server_id,
        "server_name": server_name,
        "public_ip": public_ip,
        "private_ip": private_ip,
        "provider_metadata": provider_metadata,
    }

    def _apply(row):
        for key, value in values.items():
            setattr(row, key, value)

    existing = find_provisioning_reference_by_original_id(db, original_provisioning_reference_id)
    if existing is not None:
        _apply(existing)
        db.commit()
        return existing

    return _insert_or_retry(
        db,
        StatisticsProvisioningReference(
            original_provisioning_reference_id=original_provisioning_reference_id,
            **values,
        ),
        lambda: find_provisioning_reference_by_original_id(db, original_provisioning_reference_id),
        _apply,
    )


# =============================================================================
# Append-only records
# =============================================================================

def _append(db, row):
    db.add(row)
    db.commit()
    return row


def create_chat_io(
    db,
    statistics_client_id: str,
    direction: ChatDirection,
    word_count: int,
    char_count: int,
    statistics_agent_id: Optional[str] = None,
    statistics_user_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> StatisticsChatIo:
    return _append(
        db,
        StatisticsChatIo(
            statistics_client_id=statistics_client_id,
            statistics_agent_id=statistics_agent_id,
            statistics_user_id=statistics_user_id,
            direction=ChatDirection(direction).value,
            word_count=word_count,
            char_count=char_count,
            occurred_at=occurred_at or utc_now(),
        ),
    )


def _filter_record(
    model,
    statistics_client_id: str,
    filter_type: str,
    filter_display_name: str,
    direction: FilterDirection,
    word_count: int,
    char_count: int,
    statistics_agent_id: Optional[str],
    statistics_user_id: Optional[str],
    filter_reason: Optional[str],
    occurred_at: Optional[datetime],
):
    return model(
        statistics_client_id=statistics_client_id,
        statistics_agent_id=statistics_agent_id,
        statistics_user_id=statistics_user_id,
        filter_type=filter_type,
        filter_display_name=filter_display_name,
        filter_reason=filter_reason,
        direction=FilterDirection(direction).value,
        word_count=word_count,
        char_count=char_count,
        occurred_at=occurred_at or utc_now(),
    )


def create_filter_drop(
    db,
    statistics_client_id: str,
    filter_type: str,
    filter_display_name: str,
    direction: FilterDirection,
    word_count: int,
    char_count: int,
    statistics_agent_id: Optional[str] = None,
    statistics_user_id: Optional[str] = None,
    filter_reason: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> StatisticsChatFilterDrop:
    return _append(
        db,
        _filter_record(
            StatisticsChatFilterDrop,
            statistics_client_id,
            filter_type,
            filter_display_name,
            direction,
            word_count,
            char_count,
            statistics_agent_id,
            statistics_user_id,
            filter_reason,
            occurred_at,
        ),
    )


def create_filter_flag(
    db,
    statistics_client_id: str,
    filter_type: str,
    filter_display_name: str,
    direction: FilterDirection,
    word_count: int,
    char_count: int,
    statistics_agent_id: Optional[str] = None,
    statistics_user_id: Optional[str] = None,
    filter_reason: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> StatisticsChatFilterFlag:
    return _append(
        db,
        _filter_record(
            StatisticsChatFilterFlag,
            statistics_client_id,
            filter_type,
            filter_display_name,
            direction,
            word_count,
            char_count,
            statistics_agent_id,
            statistics_user_id,
            filter_reason,
            occurred_at,
        ),
    )


def create_entity_event(
    db,
    event_type: str,
    entity_type: str,
    original_entity_id: str,
    statistics_user_id: Optional[str] = None,
    statistics_users_id: Optional[str] = None,
    statistics_clients_id: Optional[str] = None,
    statistics_agents_id: Optional[str] = None,
    statistics_client_users_id: Optional[str] = None,
    statistics_provisioning_references_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> StatisticsEntityEvent:
    return _append(
        db,
        StatisticsEntityEvent(
            event_type=event_type,
            entity_type=entity_type,
            original_entity_id=original_entity_id,
            statistics_user_id=statistics_user_id,
            statistics_users_id=statistics_users_id,
            statistics_clients_id=statistics_clients_id,
            statistics_agents_id=statistics_agents_id,
            statistics_client_users_id=statistics_client_users_id,
            statistics_provisioning_references_id=statistics_provisioning_references_id,
            occurred_at=occurred_at or utc_now(),
        ),
    )


__all__ = [
    "find_user_by_original_id",
    "upsert_user",
    "find_client_by_original_id",
    "upsert_client",
    "map_original_client_ids",
    "find_agent_by_original_id",
    "upsert_agent",
    "find_client_user_by_original_id",
    "create_client_user",
    "find_provisioning_reference_by_original_id",
    "create_provisioning_reference",
    "create_chat_io",
    "create_filter_drop",
    "create_filter_flag",
    "create_entity_event",
]
