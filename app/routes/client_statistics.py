"""
Single-client statistics endpoints, guarded by a per-client access check.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import (
    PageParams,
    WindowParams,
    get_access_resolver,
    get_caller_identity,
    get_query_service,
    page_params,
    window_params,
)
from core.context import CallerIdentity
from core.services.access_resolver import AccessResolver
from core.services.statistics_query import StatisticsQueryService


router = APIRouter(prefix="/clients/{client_id}/statistics", tags=["client-statistics"])


@router.get("/summary")
def client_summary(
    client_id: str,
    groupBy: Optional[str] = Query(default=None),
    agentId: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    resolver.ensure_access(client_id, identity)
    return query.get_client_summary(
        client_id,
        from_=window.from_,
        to=window.to,
        group_by=groupBy,
        agent_id=agentId,
    )


@router.get("/chat-io")
def client_chat_io(
    client_id: str,
    agentId: Optional[str] = Query(default=None),
    direction: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    page: PageParams = Depends(page_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    resolver.ensure_access(client_id, identity)
    return query.get_client_chat_io(
        client_id,
        agent_id=agentId,
        from_=window.from_,
        to=window.to,
        direction=direction,
        search=page.search,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/filter-drops")
def client_filter_drops(
    client_id: str,
    agentId: Optional[str] = Query(default=None),
    filterType: Optional[str] = Query(default=None),
    direction: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    page: PageParams = Depends(page_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    resolver.ensure_access(client_id, identity)
    return query.get_client_filter_drops(
        client_id,
        agent_id=agentId,
        from_=window.from_,
        to=window.to,
        filter_type=filterType,
        direction=direction,
        search=page.search,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/filter-flags")
def client_filter_flags(
    client_id: str,
    agentId: Optional[str] = Query(default=None),
    filterType: Optional[str] = Query(default=None),
    direction: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    page: PageParams = Depends(page_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    resolver.ensure_access(client_id, identity)
    return query.get_client_filter_flags(
        client_id,
        agent_id=agentId,
        from_=window.from_,
        to=window.to,
        filter_type=filterType,
        direction=direction,
        search=page.search,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/entity-events")
def client_entity_events(
    client_id: str,
    agentId: Optional[str] = Query(default=None),
    entityType: Optional[str] = Query(default=None),
    eventType: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    page: PageParams = Depends(page_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    resolver.ensure_access(client_id, identity)
    return query.get_client_entity_events(
        client_id,
        agent_id=agentId,
        from_=window.from_,
        to=window.to,
        entity_type=entityType,
        event_type=eventType,
        search=page.search,
        limit=page.limit,
        offset=page.offset,
    )
