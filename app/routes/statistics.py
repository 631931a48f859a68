"""
Cross-client statistics endpoints.

Results cover every client the caller can access, or a single accessible
client when `clientId` is given.
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


router = APIRouter(prefix="/statistics", tags=["statistics"])


@router.get("/summary")
def summary(
    clientId: Optional[str] = Query(default=None),
    groupBy: Optional[str] = Query(default=None),
    agentId: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    client_ids = resolver.resolve_scope(identity, clientId)
    return query.get_summary(
        client_ids,
        from_=window.from_,
        to=window.to,
        group_by=groupBy,
        agent_id=agentId,
    )


@router.get("/chat-io")
def chat_io(
    clientId: Optional[str] = Query(default=None),
    agentId: Optional[str] = Query(default=None),
    direction: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    page: PageParams = Depends(page_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    client_ids = resolver.resolve_scope(identity, clientId)
    return query.get_chat_io(
        client_ids,
        agent_id=agentId,
        from_=window.from_,
        to=window.to,
        direction=direction,
        search=page.search,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/filter-drops")
def filter_drops(
    clientId: Optional[str] = Query(default=None),
    agentId: Optional[str] = Query(default=None),
    filterType: Optional[str] = Query(default=None),
    direction: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    page: PageParams = Depends(page_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    client_ids = resolver.resolve_scope(identity, clientId)
    return query.get_filter_drops(
        client_ids,
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
def filter_flags(
    clientId: Optional[str] = Query(default=None),
    agentId: Optional[str] = Query(default=None),
    filterType: Optional[str] = Query(default=None),
    direction: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    page: PageParams = Depends(page_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    client_ids = resolver.resolve_scope(identity, clientId)
    return query.get_filter_flags(
        client_ids,
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
def entity_events(
    clientId: Optional[str] = Query(default=None),
    agentId: Optional[str] = Query(default=None),
    entityType: Optional[str] = Query(default=None),
    eventType: Optional[str] = Query(default=None),
    window: WindowParams = Depends(window_params),
    page: PageParams = Depends(page_params),
    identity: CallerIdentity = Depends(get_caller_identity),
    resolver: AccessResolver = Depends(get_access_resolver),
    query: StatisticsQueryService = Depends(get_query_service),
):
    client_ids = resolver.resolve_scope(identity, clientId)
    return query.get_entity_events(
        client_ids,
        agent_id=agentId,
        from_=window.from_,
        to=window.to,
        entity_type=entityType,
        event_type=eventType,
        search=page.search,
        limit=page.limit,
        offset=page.offset,
    )
