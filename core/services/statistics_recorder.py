"""
Statistics event recorder.

Writes chat activity, filter decisions, and entity lifecycle events. Every
public entry point is best-effort: handlers raise freely, and the single
`_best_effort` bridge turns any failure into a logged `RecordResult` so the
instrumented business operation is never affected.

Shadow upserts and the appended record commit separately. A failure between
the two leaves a current shadow row with no matching record.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

import core.config as config
from core.errors import RecordingError, ValidationIssue
from core.models import (
    ChatDirection,
    ClientUserRole,
    EntityEventType,
    EntityType,
    FilterDirection,
    UserRole,
    utc_now,
)
from core.primary import PrimaryDirectory
from core.sanitizer import EMPTY_METADATA, sanitize_provider_metadata
from core.services import shadow_store
from core.validators import validate_count, validate_required_text

logger = config.logger

MAX_ID_LENGTH = 64


@dataclass(frozen=True)
class RecordResult:
    ok: bool
    operation: str
    record_id: Optional[str] = None
    error: Optional[str] = None

    @staticmethod
    def success(operation: str, record_id: Optional[str]) -> "RecordResult":
        return RecordResult(ok=True, operation=operation, record_id=record_id)

    @staticmethod
    def failure(operation: str, error: str) -> "RecordResult":
        return RecordResult(ok=False, operation=operation, error=error)


@dataclass(frozen=True)
class ShadowRefs:
    statistics_client_id: str
    statistics_agent_id: str
    statistics_user_id: Optional[str] = None


def _metadata_text(metadata: dict, key: str, entity_type: EntityType, required: bool = False) -> Optional[str]:
    value = metadata.get(key)
    if value is None:
        if required:
            raise ValidationIssue(
                f"metadata.{key} is required for {entity_type.value} events",
                field=f"metadata.{key}",
                error_type="required",
            )
        return None
    if not isinstance(value, str):
        value = str(value)
    if required and not value.strip():
        raise ValidationIssue(
            f"metadata.{key} is required for {entity_type.value} events",
            field=f"metadata.{key}",
            error_type="required",
        )
    return value


class StatisticsRecorder:
    def __init__(
        self,
        session_factory: Callable,
        primary: PrimaryDirectory,
        authentication_method: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self._primary = primary
        self._authentication_method = authentication_method
        self._pending: set = set()
        self._created_handlers = {
            EntityType.user: self._user_created_or_updated,
            EntityType.client: self._client_created_or_updated,
            EntityType.agent: self._agent_created_or_updated,
            EntityType.client_user: self._client_user_created,
            EntityType.provisioning_reference: self._provisioning_reference_created,
        }
        self._updated_handlers = {
            EntityType.user: self._user_created_or_updated,
            EntityType.client: self._client_created_or_updated,
            EntityType.agent: self._agent_created_or_updated,
        }

    # ------------------------------------------------------------------
    # Best-effort bridge
    # ------------------------------------------------------------------

    def _best_effort(self, operation: str, handler: Callable[..., Optional[str]], *args) -> RecordResult:
        db = self._session_factory()
        try:
            record_id = handler(db, *args)
            return RecordResult.success(operation, record_id)
        except Exception as exc:
            db.rollback()
            logger.warning(
                f"Failed to record {operation.replace('_', ' ')}: {exc}",
                extra={
                    "operation": operation,
                    "error_class": type(exc).__name__,
                    "authentication_method": self._authentication_method,
                },
            )
            return RecordResult.failure(operation, str(exc))
        finally:
            db.close()

    def submit(self, operation: Callable[..., RecordResult], *args, **kwargs):
        """
        Fire-and-forget a recording call.

        Inside a running event loop the call runs on a worker thread and the
        task is returned without being awaited; otherwise it runs inline.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return operation(*args, **kwargs)
        task = loop.create_task(asyncio.to_thread(operation, *args, **kwargs))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    # ------------------------------------------------------------------
    # Chat activity
    # ------------------------------------------------------------------

    def _ensure_shadow_entries(self, db, client_id: str, agent_id: str, user_id: Optional[str]) -> ShadowRefs:
        validate_required_text(client_id, "client_id", MAX_ID_LENGTH)
        validate_required_text(agent_id, "agent_id", MAX_ID_LENGTH)
        client = self._primary.get_client(client_id)
        if client is None:
            raise RecordingError(f"Client {client_id} not found")

        shadow_client = shadow_store.upsert_client(
            db,
            client_id,
            name=client.name,
            endpoint=client.endpoint,
            authentication_type=client.authentication_type,
        )
        shadow_agent = shadow_store.upsert_agent(db, agent_id, shadow_client.id)

        statistics_user_id = None
        if user_id:
            shadow_user = shadow_store.find_user_by_original_id(db, user_id)
            if shadow_user is not None:
                statistics_user_id = shadow_user.id
        return ShadowRefs(shadow_client.id, shadow_agent.id, statistics_user_id)

    def _chat_io(self, db, direction, client_id, agent_id, word_count, char_count, user_id) -> str:
        validate_count(word_count, "word_count")
        validate_count(char_count, "char_count")
        refs = self._ensure_shadow_entries(db, client_id, agent_id, user_id)
        row = shadow_store.create_chat_io(
            db,
            refs.statistics_client_id,
            direction,
            word_count,
            char_count,
            statistics_agent_id=refs.statistics_agent_id,
            statistics_user_id=refs.statistics_user_id,
            occurred_at=utc_now(),
        )
        return row.id

    def record_chat_input(
        self,
        client_id: str,
        agent_id: str,
        word_count: int,
        char_count: int,
        user_id: Optional[str] = None,
    ) -> RecordResult:
        return self._best_effort(
            "chat_input",
            self._chat_io,
            ChatDirection.input,
            client_id,
            agent_id,
            word_count,
            char_count,
            user_id,
        )

    def record_chat_output(
        self,
        client_id: str,
        agent_id: str,
        word_count: int,
        char_count: int,
        user_id: Optional[str] = None,
    ) -> RecordResult:
        return self._best_effort(
            "chat_output",
            self._chat_io,
            ChatDirection.output,
            client_id,
            agent_id,
            word_count,
            char_count,
            user_id,
        )

    def _filter_record(
        self,
        db,
        create: Callable,
        client_id,
        agent_id,
        filter_type,
        filter_display_name,
        direction,
        word_count,
        char_count,
        user_id,
        filter_reason,
    ) -> str:
        validate_required_text(filter_type, "filter_type", 100)
        validate_required_text(filter_display_name, "filter_display_name", 255)
        validate_count(word_count, "word_count")
        validate_count(char_count, "char_count")
        direction = FilterDirection(direction)
        refs = self._ensure_shadow_entries(db, client_id, agent_id, user_id)
        row = create(
            db,
            refs.statistics_client_id,
            filter_type,
            filter_display_name,
            direction,
            word_count,
            char_count,
            statistics_agent_id=refs.statistics_agent_id,
            statistics_user_id=refs.statistics_user_id,
            filter_reason=filter_reason,
            occurred_at=utc_now(),
        )
        return row.id

    def record_chat_filter_drop(
        self,
        client_id: str,
        agent_id: str,
        filter_type: str,
        filter_display_name: str,
        direction: FilterDirection,
        word_count: int = 0,
        char_count: int = 0,
        user_id: Optional[str] = None,
        filter_reason: Optional[str] = None,
    ) -> RecordResult:
        """Record a message blocked by a content filter. Zero counts are valid."""
        return self._best_effort(
            "chat_filter_drop",
            self._filter_record,
            shadow_store.create_filter_drop,
            client_id,
            agent_id,
            filter_type,
            filter_display_name,
            direction,
            word_count,
            char_count,
            user_id,
            filter_reason,
        )

    def record_chat_filter_flag(
        self,
        client_id: str,
        agent_id: str,
        filter_type: str,
        filter_display_name: str,
        direction: FilterDirection,
        word_count: int = 0,
        char_count: int = 0,
        user_id: Optional[str] = None,
        filter_reason: Optional[str] = None,
    ) -> RecordResult:
        """Record a message a content filter let through but noted."""
        return self._best_effort(
            "chat_filter_flag",
            self._filter_record,
            shadow_store.create_filter_flag,
            client_id,
            agent_id,
            filter_type,
            filter_display_name,
            direction,
            word_count,
            char_count,
            user_id,
            filter_reason,
        )

    # ------------------------------------------------------------------
    # Entity lifecycle
    # ------------------------------------------------------------------

    def _user_created_or_updated(self, db, event_type, original_entity_id, metadata, acting_user_id) -> str:
        role = _metadata_text(metadata, "role", EntityType.user) or UserRole.user.value
        shadow_user = shadow_store.upsert_user(db, original_entity_id, role)
        event = shadow_store.create_entity_event(
            db,
            event_type.value,
            EntityType.user.value,
            original_entity_id,
            statistics_user_id=acting_user_id,
            statistics_users_id=shadow_user.id,
        )
        return event.id

    def _client_created_or_updated(self, db, event_type, original_entity_id, metadata, acting_user_id) -> str:
        client = self._primary.get_client(original_entity_id)
        if client is None:
            raise RecordingError(f"Cannot record client {event_type.value}: client {original_entity_id} not found")
        shadow_client = shadow_store.upsert_client(
            db,
            original_entity_id,
            name=client.name,
            endpoint=client.endpoint,
            authentication_type=client.authentication_type,
        )
        event = shadow_store.create_entity_event(
            db,
            event_type.value,
            EntityType.client.value,
            original_entity_id,
            statistics_user_id=acting_user_id,
            statistics_clients_id=shadow_client.id,
        )
        return event.id

    def _require_shadow_client(self, db, metadata, entity_type, event_type):
        client_id = _metadata_text(metadata, "clientId", entity_type, required=True)
        shadow_client = shadow_store.find_client_by_original_id(db, client_id)
        if shadow_client is None:
            raise RecordingError(
                f"Cannot record {entity_type.value} {event_type.value}: "
                f"statistics client for {client_id} not found"
            )
        return shadow_client

    def _agent_created_or_updated(self, db, event_type, original_entity_id, metadata, acting_user_id) -> str:
        shadow_client = self._require_shadow_client(db, metadata, EntityType.agent, event_type)
        shadow_agent = shadow_store.upsert_agent(
            db,
            original_entity_id,
            shadow_client.id,
            agent_type=_metadata_text(metadata, "agentType", EntityType.agent),
            container_type=_metadata_text(metadata, "containerType", EntityType.agent),
            name=_metadata_text(metadata, "name", EntityType.agent),
            description=_metadata_text(metadata, "description", EntityType.agent),
        )
        event = shadow_store.create_entity_event(
            db,
            event_type.value,
            EntityType.agent.value,
            original_entity_id,
            statistics_user_id=acting_user_id,
            statistics_agents_id=shadow_agent.id,
        )
        return event.id

    def _client_user_created(self, db, event_type, original_entity_id, metadata, acting_user_id) -> str:
        client_id = _metadata_text(metadata, "clientId", EntityType.client_user, required=True)
        user_id = _metadata_text(metadata, "userId", EntityType.client_user, required=True)
        shadow_client = shadow_store.find_client_by_original_id(db, client_id)
        shadow_user = shadow_store.find_user_by_original_id(db, user_id)
        if shadow_client is None or shadow_user is None:
            raise RecordingError(
                "Cannot record client-user created: shadow client or user not found "
                f"(clientId={client_id}, userId={user_id})"
            )
        role = _metadata_text(metadata, "role", EntityType.client_user) or ClientUserRole.user.value
        shadow_client_user = shadow_store.create_client_user(
            db,
            original_entity_id,
            shadow_client.id,
            shadow_user.id,
            role=role,
        )
        event = shadow_store.create_entity_event(
            db,
            event_type.value,
            EntityType.client_user.value,
            original_entity_id,
            statistics_user_id=acting_user_id,
            statistics_client_users_id=shadow_client_user.id,
        )
        return event.id

    def _provisioning_reference_created(
        self, db, event_type, original_entity_id, metadata, acting_user_id
    ) -> str:
        entity_type = EntityType.provisioning_reference
        provider_type = _metadata_text(metadata, "providerType", entity_type, required=True)
        server_id = _metadata_text(metadata, "serverId", entity_type, required=True)
        shadow_client = self._require_shadow_client(db, metadata, entity_type, event_type)
        sanitized = sanitize_provider_metadata(metadata.get("providerMetadata"))
        shadow_reference = shadow_store.create_provisioning_reference(
            db,
            original_entity_id,
            shadow_client.id,
            provider_type=provider_type,
            server_id=server_id,
            server_name=_metadata_text(metadata, "serverName", entity_type),
            public_ip=_metadata_text(metadata, "publicIp", entity_type),
            private_ip=_metadata_text(metadata, "privateIp", entity_type),
            provider_metadata=sanitized if sanitized != EMPTY_METADATA else None,
        )
        event = shadow_store.create_entity_event(
            db,
            event_type.value,
            entity_type.value,
            original_entity_id,
            statistics_user_id=acting_user_id,
            statistics_provisioning_references_id=shadow_reference.id,
        )
        return event.id

    def _entity_created(self, db, entity_type, original_entity_id, metadata, user_id) -> Optional[str]:
        entity_type = EntityType(entity_type)
        validate_required_text(original_entity_id, "original_entity_id", MAX_ID_LENGTH)
        metadata = dict(metadata or {})
        acting_user_id = None
        if user_id:
            role = _metadata_text(metadata, "role", entity_type) or UserRole.user.value
            acting_user_id = shadow_store.upsert_user(db, user_id, role).id
        handler = self._created_handlers[entity_type]
        return handler(db, EntityEventType.created, original_entity_id, metadata, acting_user_id)

    def _lookup_acting_user(self, db, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        shadow_user = shadow_store.find_user_by_original_id(db, user_id)
        return shadow_user.id if shadow_user is not None else None

    def _entity_updated(self, db, entity_type, original_entity_id, metadata, user_id) -> Optional[str]:
        entity_type = EntityType(entity_type)
        validate_required_text(original_entity_id, "original_entity_id", MAX_ID_LENGTH)
        acting_user_id = self._lookup_acting_user(db, user_id)
        handler = self._updated_handlers.get(entity_type)
        if handler is None:
            logger.debug(f"Entity update events not implemented for {entity_type.value}")
            return None
        return handler(db, EntityEventType.updated, original_entity_id, dict(metadata or {}), acting_user_id)

    def _entity_deleted(self, db, entity_type, original_entity_id, user_id) -> str:
        entity_type = EntityType(entity_type)
        validate_required_text(original_entity_id, "original_entity_id", MAX_ID_LENGTH)
        acting_user_id = self._lookup_acting_user(db, user_id)

        # Only user and client shadows are resolvable by original id once the
        # entity is gone; the others keep just the original id for correlation.
        references: dict[str, Any] = {}
        if entity_type == EntityType.user:
            shadow_user = shadow_store.find_user_by_original_id(db, original_entity_id)
            if shadow_user is not None:
                references["statistics_users_id"] = shadow_user.id
        elif entity_type == EntityType.client:
            shadow_client = shadow_store.find_client_by_original_id(db, original_entity_id)
            if shadow_client is not None:
                references["statistics_clients_id"] = shadow_client.id

        event = shadow_store.create_entity_event(
            db,
            EntityEventType.deleted.value,
            entity_type.value,
            original_entity_id,
            statistics_user_id=acting_user_id,
            **references,
        )
        return event.id

    def record_entity_created(
        self,
        entity_type: EntityType,
        original_entity_id: str,
        metadata: Optional[dict] = None,
        user_id: Optional[str] = None,
    ) -> RecordResult:
        return self._best_effort(
            "entity_created",
            self._entity_created,
            entity_type,
            original_entity_id,
            metadata,
            user_id,
        )

    def record_entity_updated(
        self,
        entity_type: EntityType,
        original_entity_id: str,
        metadata: Optional[dict] = None,
        user_id: Optional[str] = None,
    ) -> RecordResult:
        return self._best_effort(
            "entity_updated",
            self._entity_updated,
            entity_type,
            original_entity_id,
            metadata,
            user_id,
        )

    def record_entity_deleted(
        self,
        entity_type: EntityType,
        original_entity_id: str,
        user_id: Optional[str] = None,
    ) -> RecordResult:
        """Record a deletion. Shadow rows are kept for historical reference."""
        return self._best_effort(
            "entity_deleted",
            self._entity_deleted,
            entity_type,
            original_entity_id,
            user_id,
        )


__all__ = [
    "RecordResult",
    "ShadowRefs",
    "StatisticsRecorder",
]
