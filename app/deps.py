"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Query

import core.config as config
from core.context import CallerIdentity
from core.primary import AgentDirectory, PrimaryDirectory
from core.services.access_resolver import AccessResolver
from core.services.shadow_sync import ShadowSync
from core.services.statistics_query import StatisticsQueryService
from core.services.statistics_recorder import StatisticsRecorder


class Services:
    """Service state holder, populated during app startup."""

    resolver: Optional[AccessResolver] = None
    query: Optional[StatisticsQueryService] = None
    recorder: Optional[StatisticsRecorder] = None
    sync: Optional[ShadowSync] = None
    agents: Optional[AgentDirectory] = None


def configure_services(
    session_factory: Callable,
    primary: PrimaryDirectory,
    agents: Optional[AgentDirectory] = None,
    authentication_method: Optional[str] = None,
) -> None:
    Services.resolver = AccessResolver(primary, authentication_method)
    Services.query = StatisticsQueryService(session_factory)
    Services.recorder = StatisticsRecorder(session_factory, primary, authentication_method)
    Services.sync = ShadowSync(session_factory, primary, agents)
    Services.agents = agents


def reset_services() -> None:
    Services.resolver = None
    Services.query = None
    Services.recorder = None
    Services.sync = None
    Services.agents = None


def get_access_resolver() -> AccessResolver:
    if Services.resolver is None:
        raise RuntimeError("Statistics services not initialized")
    return Services.resolver


def get_query_service() -> StatisticsQueryService:
    if Services.query is None:
        raise RuntimeError("Statistics services not initialized")
    return Services.query


def get_caller_identity(
    x_api_key: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    resolver: AccessResolver = Depends(get_access_resolver),
) -> CallerIdentity:
    """
    Build the caller identity forwarded by the authenticating gateway.

    An X-API-Key header must match STATIC_API_KEY; user headers are trusted as-is.
    In api-key deployments a verified key is mandatory.
    """
    if x_api_key is not None:
        expected = config.STATIC_API_KEY
        if not expected or not secrets.compare_digest(x_api_key, expected):
            raise HTTPException(status_code=401, detail="Invalid API key")
        return CallerIdentity.api_key()
    if resolver.api_key_mode:
        raise HTTPException(status_code=401, detail="API key required")
    if x_user_id:
        return CallerIdentity(user_id=x_user_id, user_role=(x_user_role or "user").strip().lower())
    return CallerIdentity.anonymous()


@dataclass(frozen=True)
class WindowParams:
    from_: Optional[str] = None
    to: Optional[str] = None


def window_params(
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = Query(default=None),
) -> WindowParams:
    return WindowParams(from_=from_, to=to)


@dataclass(frozen=True)
class PageParams:
    search: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


def page_params(
    search: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None),
    offset: Optional[int] = Query(default=None),
) -> PageParams:
    return PageParams(search=search, limit=limit, offset=offset)
