"""
Statistics query and aggregation services.

Every operation takes the caller's already-resolved primary client ids,
translates them to shadow client ids, and short-circuits to an empty result
when nothing maps. List queries run a count pass, fetch one page of ids
ordered by occurrence (newest first), then re-load those rows with their
shadow relations so joins never disturb pagination.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.orm import joinedload

import core.config as config
from core.errors import ValidationIssue
from core.models import (
    ChatDirection,
    EntityEventType,
    EntityType,
    FilterDirection,
    StatisticsAgent,
    StatisticsChatFilterDrop,
    StatisticsChatFilterFlag,
    StatisticsChatIo,
    StatisticsClientUser,
    StatisticsEntityEvent,
    StatisticsProvisioningReference,
)
from core.services import shadow_store
from core.validators import (
    build_search_pattern,
    normalize_to_bound,
    parse_iso_datetime,
    validate_enum_value,
    validate_limit,
    validate_offset,
)

logger = config.logger

GROUP_BY_VALUES = ("day", "hour")
LIKE_ESCAPE = "\\"

_SQLITE_PERIOD_FORMATS = {
    "day": "%Y-%m-%dT00:00:00.000Z",
    "hour": "%Y-%m-%dT%H:00:00.000Z",
}


# =============================================================================
# Helpers
# =============================================================================

@dataclass(frozen=True)
class TimeWindow:
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def conditions(self, column) -> list:
        clauses = []
        if self.start is not None:
            clauses.append(column >= self.start)
        if self.end is not None:
            clauses.append(column <= self.end)
        return clauses


def resolve_time_window(from_: Optional[str], to: Optional[str]) -> TimeWindow:
    """Validate both bounds; a date-only upper bound covers its whole day."""
    start = parse_iso_datetime(from_, "from")
    end = parse_iso_datetime(to, "to")
    if end is not None:
        end = parse_iso_datetime(normalize_to_bound(to), "to")
    return TimeWindow(start=start, end=end)


def _validate_group_by(group_by: Optional[str]) -> Optional[str]:
    if group_by is None:
        return None
    if group_by not in GROUP_BY_VALUES:
        raise ValidationIssue(
            "groupBy must be one of day, hour",
            field="groupBy",
            error_type="invalid_choice",
        )
    return group_by


def _validate_page(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    limit_value = config.DEFAULT_PAGE_LIMIT if limit is None else limit
    offset_value = 0 if offset is None else offset
    validate_limit(limit_value, "limit", config.MAX_RESULT_LIMIT)
    validate_offset(offset_value)
    return limit_value, offset_value


def format_timestamp(value) -> Optional[str]:
    """Render a stored timestamp as UTC ISO-8601 with millisecond precision."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _period_expression(dialect_name: str, column, group_by: str):
    if dialect_name == "postgresql":
        return func.date_trunc(group_by, column)
    return func.strftime(_SQLITE_PERIOD_FORMATS[group_by], column)


def _search_clause(pattern: Optional[str], columns: Sequence):
    if pattern is None:
        return None
    return or_(*[cast(column, String).ilike(pattern, escape=LIKE_ESCAPE) for column in columns])


def _agent_subquery(agent_id: str, shadow_client_ids: list[str]):
    return select(StatisticsAgent.id).where(
        StatisticsAgent.original_agent_id == agent_id,
        StatisticsAgent.statistics_client_id.in_(shadow_client_ids),
    )


def _page(data: list, total: int, limit: int, offset: int) -> dict:
    return {"data": data, "total": total, "limit": limit, "offset": offset}


def _empty_summary() -> dict:
    return {
        "totalMessages": 0,
        "totalWords": 0,
        "totalChars": 0,
        "avgWordsPerMessage": 0,
        "filterDropCount": 0,
        "filterTypesBreakdown": [],
        "uniqueFilterTypes": [],
        "filterFlagCount": 0,
        "filterFlagsBreakdown": [],
        "uniqueFlagTypes": [],
    }


# =============================================================================
# Row mapping
# =============================================================================

def _client_fields(client, fallback_id: Optional[str]) -> dict:
    return {
        "clientId": client.original_client_id if client is not None else fallback_id,
        "clientName": client.name if client is not None else None,
    }


def _agent_fields(agent) -> dict:
    return {
        "agentId": agent.original_agent_id if agent is not None else None,
        "agentName": agent.name if agent is not None else None,
    }


def chat_io_to_dict(row: StatisticsChatIo) -> dict:
    payload = {"id": row.id}
    payload.update(_client_fields(row.client, row.statistics_client_id))
    payload.update(_agent_fields(row.agent))
    payload.update({
        "originalUserId": row.user.original_user_id if row.user is not None else None,
        "direction": row.direction,
        "wordCount": row.word_count,
        "charCount": row.char_count,
        "occurredAt": format_timestamp(row.occurred_at),
    })
    return payload


def filter_record_to_dict(row) -> dict:
    payload = {"id": row.id}
    payload.update(_client_fields(row.client, row.statistics_client_id))
    payload.update(_agent_fields(row.agent))
    payload.update({
        "originalUserId": row.user.original_user_id if row.user is not None else None,
        "filterType": row.filter_type,
        "filterDisplayName": row.filter_display_name,
        "filterReason": row.filter_reason,
        "direction": row.direction,
        "wordCount": row.word_count,
        "charCount": row.char_count,
        "occurredAt": format_timestamp(row.occurred_at),
    })
    return payload


def _event_client(row: StatisticsEntityEvent):
    if row.client is not None:
        return row.client
    for related in (row.agent, row.client_user, row.provisioning_reference):
        if related is not None and related.client is not None:
            return related.client
    return None


def entity_event_to_dict(row: StatisticsEntityEvent) -> dict:
    client = _event_client(row)
    payload = {
        "id": row.id,
        "eventType": row.event_type,
        "entityType": row.entity_type,
        "originalEntityId": row.original_entity_id,
        "originalUserId": row.user.original_user_id if row.user is not None else None,
        "occurredAt": format_timestamp(row.occurred_at),
    }
    payload.update(_client_fields(client, None))
    payload.update(_agent_fields(row.agent))
    return payload


# =============================================================================
# Service
# =============================================================================

class StatisticsQueryService:
    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    def _paginate(self, db, model, conditions: list, limit: int, offset: int, options: list, to_dict) -> dict:
        total = db.query(func.count(model.id)).filter(*conditions).scalar() or 0
        id_rows = (
            db.query(model.id)
            .filter(*conditions)
            .order_by(model.occurred_at.desc(), model.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        page_ids = [row.id for row in id_rows]
        if not page_ids:
            return _page([], total, limit, offset)
        rows = db.query(model).options(*options).filter(model.id.in_(page_ids)).all()
        by_id = {row.id: row for row in rows}
        data = [to_dict(by_id[row_id]) for row_id in page_ids if row_id in by_id]
        return _page(data, total, limit, offset)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def get_summary(
        self,
        client_ids: Sequence[str],
        from_: Optional[str] = None,
        to: Optional[str] = None,
        group_by: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> dict:
        window = resolve_time_window(from_, to)
        group_by = _validate_group_by(group_by)

        db = self._session_factory()
        try:
            shadow_ids = shadow_store.map_original_client_ids(db, client_ids)
            if not shadow_ids:
                return _empty_summary()

            summary = self._chat_aggregate(db, shadow_ids, window, group_by, agent_id)
            drops = self._filter_aggregate(db, StatisticsChatFilterDrop, shadow_ids, window, agent_id)
            flags = self._filter_aggregate(db, StatisticsChatFilterFlag, shadow_ids, window, agent_id)
            summary.update({
                "filterDropCount": drops["count"],
                "filterTypesBreakdown": drops["breakdown"],
                "uniqueFilterTypes": drops["unique_types"],
                "filterFlagCount": flags["count"],
                "filterFlagsBreakdown": flags["breakdown"],
                "uniqueFlagTypes": flags["unique_types"],
            })
            return summary
        finally:
            db.close()

    def get_client_summary(self, client_id: str, **params) -> dict:
        return self.get_summary([client_id], **params)

    def _chat_aggregate(self, db, shadow_ids, window: TimeWindow, group_by, agent_id) -> dict:
        conditions = [StatisticsChatIo.statistics_client_id.in_(shadow_ids)]
        conditions.extend(window.conditions(StatisticsChatIo.occurred_at))
        if agent_id:
            conditions.append(StatisticsChatIo.statistics_agent_id.in_(_agent_subquery(agent_id, shadow_ids)))

        total_messages, total_words, total_chars = (
            db.query(
                func.count(StatisticsChatIo.id),
                func.coalesce(func.sum(StatisticsChatIo.word_count), 0),
                func.coalesce(func.sum(StatisticsChatIo.char_count), 0),
            )
            .filter(*conditions)
            .one()
        )
        total_messages = int(total_messages or 0)
        total_words = int(total_words or 0)
        total_chars = int(total_chars or 0)
        summary = {
            "totalMessages": total_messages,
            "totalWords": total_words,
            "totalChars": total_chars,
            "avgWordsPerMessage": total_words / total_messages if total_messages else 0,
        }

        if group_by:
            period = _period_expression(db.get_bind().dialect.name, StatisticsChatIo.occurred_at, group_by)
            period = period.label("period")
            rows = (
                db.query(
                    period,
                    func.count(StatisticsChatIo.id).label("count"),
                    func.coalesce(func.sum(StatisticsChatIo.word_count), 0).label("word_count"),
                    func.coalesce(func.sum(StatisticsChatIo.char_count), 0).label("char_count"),
                )
                .filter(*conditions)
                .group_by(period)
                .order_by(period.asc())
                .all()
            )
            summary["series"] = [
                {
                    "period": format_timestamp(row.period),
                    "count": int(row.count),
                    "wordCount": int(row.word_count),
                    "charCount": int(row.char_count),
                }
                for row in rows
            ]
        return summary

    def _filter_aggregate(self, db, model, shadow_ids, window: TimeWindow, agent_id) -> dict:
        conditions = [model.statistics_client_id.in_(shadow_ids)]
        conditions.extend(window.conditions(model.occurred_at))
        if agent_id:
            conditions.append(model.statistics_agent_id.in_(_agent_subquery(agent_id, shadow_ids)))

        count = db.query(func.count(model.id)).filter(*conditions).scalar() or 0
        breakdown_rows = (
            db.query(model.filter_type, model.direction, func.count(model.id).label("count"))
            .filter(*conditions)
            .group_by(model.filter_type, model.direction)
            .order_by(model.filter_type, model.direction)
            .all()
        )
        unique_rows = (
            db.query(model.filter_type)
            .filter(*conditions)
            .distinct()
            .order_by(model.filter_type)
            .all()
        )
        return {
            "count": int(count),
            "breakdown": [
                {"filterType": row.filter_type, "direction": row.direction, "count": int(row.count)}
                for row in breakdown_rows
            ],
            "unique_types": [row.filter_type for row in unique_rows if row.filter_type],
        }

    # ------------------------------------------------------------------
    # Chat I/O
    # ------------------------------------------------------------------

    def get_chat_io(
        self,
        client_ids: Sequence[str],
        agent_id: Optional[str] = None,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        direction: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> dict:
        window = resolve_time_window(from_, to)
        direction = validate_enum_value(direction, "direction", ChatDirection)
        limit, offset = _validate_page(limit, offset)
        pattern = build_search_pattern(search)

        db = self._session_factory()
        try:
            shadow_ids = shadow_store.map_original_client_ids(db, client_ids)
            if not shadow_ids:
                return _page([], 0, limit, offset)

            model = StatisticsChatIo
            conditions = [model.statistics_client_id.in_(shadow_ids)]
            conditions.extend(window.conditions(model.occurred_at))
            if agent_id:
                conditions.append(model.statistics_agent_id.in_(_agent_subquery(agent_id, shadow_ids)))
            if direction:
                conditions.append(model.direction == direction)
            search_clause = _search_clause(
                pattern,
                [model.id, model.direction, model.word_count, model.char_count],
            )
            if search_clause is not None:
                conditions.append(search_clause)

            return self._paginate(
                db,
                model,
                conditions,
                limit,
                offset,
                [joinedload(model.client), joinedload(model.agent), joinedload(model.user)],
                chat_io_to_dict,
            )
        finally:
            db.close()

    def get_client_chat_io(self, client_id: str, **params) -> dict:
        return self.get_chat_io([client_id], **params)

    # ------------------------------------------------------------------
    # Filter drops / flags
    # ------------------------------------------------------------------

    def _filter_list(
        self,
        model,
        client_ids: Sequence[str],
        agent_id: Optional[str],
        from_: Optional[str],
        to: Optional[str],
        filter_type: Optional[str],
        direction: Optional[str],
        search: Optional[str],
        limit: Optional[int],
        offset: Optional[int],
    ) -> dict:
        window = resolve_time_window(from_, to)
        direction = validate_enum_value(direction, "direction", FilterDirection)
        limit, offset = _validate_page(limit, offset)
        pattern = build_search_pattern(search)

        db = self._session_factory()
        try:
            shadow_ids = shadow_store.map_original_client_ids(db, client_ids)
            if not shadow_ids:
                return _page([], 0, limit, offset)

            conditions = [model.statistics_client_id.in_(shadow_ids)]
            conditions.extend(window.conditions(model.occurred_at))
            if agent_id:
                conditions.append(model.statistics_agent_id.in_(_agent_subquery(agent_id, shadow_ids)))
            if filter_type:
                conditions.append(model.filter_type == filter_type)
            if direction:
                conditions.append(model.direction == direction)
            search_clause = _search_clause(
                pattern,
                [
                    model.filter_type,
                    model.filter_display_name,
                    func.coalesce(model.filter_reason, ""),
                    model.direction,
                ],
            )
            if search_clause is not None:
                conditions.append(search_clause)

            return self._paginate(
                db,
                model,
                conditions,
                limit,
                offset,
                [joinedload(model.client), joinedload(model.agent), joinedload(model.user)],
                filter_record_to_dict,
            )
        finally:
            db.close()

    def get_filter_drops(
        self,
        client_ids: Sequence[str],
        agent_id: Optional[str] = None,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        filter_type: Optional[str] = None,
        direction: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> dict:
        return self._filter_list(
            StatisticsChatFilterDrop,
            client_ids,
            agent_id,
            from_,
            to,
            filter_type,
            direction,
            search,
            limit,
            offset,
        )

    def get_client_filter_drops(self, client_id: str, **params) -> dict:
        return self.get_filter_drops([client_id], **params)

    def get_filter_flags(
        self,
        client_ids: Sequence[str],
        agent_id: Optional[str] = None,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        filter_type: Optional[str] = None,
        direction: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> dict:
        return self._filter_list(
            StatisticsChatFilterFlag,
            client_ids,
            agent_id,
            from_,
            to,
            filter_type,
            direction,
            search,
            limit,
            offset,
        )

    def get_client_filter_flags(self, client_id: str, **params) -> dict:
        return self.get_filter_flags([client_id], **params)

    # ------------------------------------------------------------------
    # Entity events
    # ------------------------------------------------------------------

    def get_entity_events(
        self,
        client_ids: Sequence[str],
        agent_id: Optional[str] = None,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        entity_type: Optional[str] = None,
        event_type: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> dict:
        window = resolve_time_window(from_, to)
        entity_type = validate_enum_value(entity_type, "entityType", EntityType)
        event_type = validate_enum_value(event_type, "eventType", EntityEventType)
        limit, offset = _validate_page(limit, offset)
        pattern = build_search_pattern(search)

        db = self._session_factory()
        try:
            shadow_ids = shadow_store.map_original_client_ids(db, client_ids)
            if not shadow_ids:
                return _page([], 0, limit, offset)

            model = StatisticsEntityEvent
            # An event belongs to a client directly or through one related shadow row.
            conditions = [
                or_(
                    model.statistics_clients_id.in_(shadow_ids),
                    model.statistics_agents_id.in_(
                        select(StatisticsAgent.id).where(StatisticsAgent.statistics_client_id.in_(shadow_ids))
                    ),
                    model.statistics_client_users_id.in_(
                        select(StatisticsClientUser.id).where(
                            StatisticsClientUser.statistics_client_id.in_(shadow_ids)
                        )
                    ),
                    model.statistics_provisioning_references_id.in_(
                        select(StatisticsProvisioningReference.id).where(
                            StatisticsProvisioningReference.statistics_client_id.in_(shadow_ids)
                        )
                    ),
                )
            ]
            conditions.extend(window.conditions(model.occurred_at))
            if agent_id:
                conditions.append(model.statistics_agents_id.in_(_agent_subquery(agent_id, shadow_ids)))
            if entity_type:
                conditions.append(model.entity_type == entity_type)
            if event_type:
                conditions.append(model.event_type == event_type)
            search_clause = _search_clause(
                pattern,
                [model.entity_type, model.event_type, model.original_entity_id],
            )
            if search_clause is not None:
                conditions.append(search_clause)

            return self._paginate(
                db,
                model,
                conditions,
                limit,
                offset,
                [
                    joinedload(model.user),
                    joinedload(model.client),
                    joinedload(model.agent).joinedload(StatisticsAgent.client),
                    joinedload(model.client_user).joinedload(StatisticsClientUser.client),
                    joinedload(model.provisioning_reference).joinedload(
                        StatisticsProvisioningReference.client
                    ),
                ],
                entity_event_to_dict,
            )
        finally:
            db.close()

    def get_client_entity_events(self, client_id: str, **params) -> dict:
        return self.get_entity_events([client_id], **params)


__all__ = [
    "GROUP_BY_VALUES",
    "TimeWindow",
    "resolve_time_window",
    "format_timestamp",
    "chat_io_to_dict",
    "filter_record_to_dict",
    "entity_event_to_dict",
    "StatisticsQueryService",
]
