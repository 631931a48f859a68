"""
Read-only view of primary platform entities.

The statistics subsystem never writes primary tables. Only non-secret
columns are declared here, so credential columns (password hashes, API keys,
client secrets) can never be selected through this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import httpx
from sqlalchemy import Column, MetaData, String, Table, select

import core.config as config

logger = config.logger

primary_metadata = MetaData()

users_table = Table(
    "users",
    primary_metadata,
    Column("id", String(36), primary_key=True),
    Column("role", String(50)),
)

clients_table = Table(
    "clients",
    primary_metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255)),
    Column("endpoint", String(255)),
    Column("authentication_type", String(20)),
    Column("user_id", String(36)),
)

client_users_table = Table(
    "client_users",
    primary_metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36)),
    Column("client_id", String(36)),
    Column("role", String(20)),
)


@dataclass(frozen=True)
class PrimaryUser:
    id: str
    role: str = "user"


@dataclass(frozen=True)
class PrimaryClient:
    id: str
    name: str
    endpoint: str
    authentication_type: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class PrimaryMembership:
    client_id: str
    user_id: str
    role: str = "user"


@dataclass(frozen=True)
class AgentSummary:
    id: str
    name: str
    description: Optional[str] = None
    agent_type: Optional[str] = None
    container_type: Optional[str] = None


class PrimaryDirectory(Protocol):
    def get_client(self, client_id: str) -> Optional[PrimaryClient]: ...

    def list_clients(self) -> list[PrimaryClient]: ...

    def list_client_ids(self) -> list[str]: ...

    def list_users(self) -> list[PrimaryUser]: ...

    def list_client_ids_created_by(self, user_id: str) -> list[str]: ...

    def list_memberships_for_user(self, user_id: str) -> list[PrimaryMembership]: ...

    def get_membership(self, client_id: str, user_id: str) -> Optional[PrimaryMembership]: ...


class AgentDirectory(Protocol):
    def list_agents(self, client: PrimaryClient, limit: int, offset: int) -> list[AgentSummary]: ...


def _client_from_row(row) -> PrimaryClient:
    return PrimaryClient(
        id=str(row.id),
        name=row.name,
        endpoint=row.endpoint,
        authentication_type=row.authentication_type,
        user_id=str(row.user_id) if row.user_id is not None else None,
    )


class SqlPrimaryDirectory:
    """Primary-entity reads against the platform's own tables."""

    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    def _fetch(self, statement):
        db = self._session_factory()
        try:
            return db.execute(statement).all()
        finally:
            db.close()

    def get_client(self, client_id: str) -> Optional[PrimaryClient]:
        rows = self._fetch(select(clients_table).where(clients_table.c.id == client_id))
        return _client_from_row(rows[0]) if rows else None

    def list_clients(self) -> list[PrimaryClient]:
        rows = self._fetch(select(clients_table).order_by(clients_table.c.id))
        return [_client_from_row(row) for row in rows]

    def list_client_ids(self) -> list[str]:
        rows = self._fetch(select(clients_table.c.id))
        return [str(row.id) for row in rows]

    def list_users(self) -> list[PrimaryUser]:
        rows = self._fetch(select(users_table.c.id, users_table.c.role).order_by(users_table.c.id))
        return [PrimaryUser(id=str(row.id), role=row.role or "user") for row in rows]

    def list_client_ids_created_by(self, user_id: str) -> list[str]:
        rows = self._fetch(select(clients_table.c.id).where(clients_table.c.user_id == user_id))
        return [str(row.id) for row in rows]

    def list_memberships_for_user(self, user_id: str) -> list[PrimaryMembership]:
        rows = self._fetch(
            select(client_users_table).where(client_users_table.c.user_id == user_id)
        )
        return [
            PrimaryMembership(client_id=str(row.client_id), user_id=str(row.user_id), role=row.role)
            for row in rows
        ]

    def get_membership(self, client_id: str, user_id: str) -> Optional[PrimaryMembership]:
        rows = self._fetch(
            select(client_users_table)
            .where(client_users_table.c.client_id == client_id)
            .where(client_users_table.c.user_id == user_id)
        )
        if not rows:
            return None
        row = rows[0]
        return PrimaryMembership(client_id=str(row.client_id), user_id=str(row.user_id), role=row.role)


def _agent_from_payload(item: dict) -> AgentSummary:
    container_type = item.get("containerType")
    return AgentSummary(
        id=str(item["id"]),
        name=item.get("name") or "",
        description=item.get("description"),
        agent_type=item.get("agentType"),
        container_type=str(container_type) if container_type is not None else None,
    )


def bearer_headers_provider(api_key: Optional[str]) -> Optional[Callable[[PrimaryClient], dict]]:
    """Headers callback sending one shared agent-manager key as a bearer token."""
    if not api_key:
        return None

    def _headers(client: PrimaryClient) -> dict:
        return {"Authorization": f"Bearer {api_key}"}

    return _headers


class HttpAgentDirectory:
    """
    Pages agent summaries from each client's agent manager.

    `headers_provider` supplies per-client auth headers; credentials are
    resolved by the caller and never pass through statistics storage.
    """

    def __init__(
        self,
        headers_provider: Optional[Callable[[PrimaryClient], dict]] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._headers_provider = headers_provider
        timeout = timeout_seconds if timeout_seconds is not None else config.AGENT_DIRECTORY_TIMEOUT_SECONDS
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=50),
            transport=transport,
        )

    def list_agents(self, client: PrimaryClient, limit: int, offset: int) -> list[AgentSummary]:
        headers = self._headers_provider(client) if self._headers_provider else {}
        url = f"{client.endpoint.rstrip('/')}/api/agents"
        response = self._client.get(
            url,
            params={"limit": limit, "offset": offset},
            headers=headers,
        )
        response.raise_for_status()
        payload = response.json()
        if isinstance(payload, dict):
            payload = payload.get("data") or []
        return [_agent_from_payload(item) for item in payload]

    def close(self) -> None:
        self._client.close()
        logger.info("Agent directory HTTP client closed")


__all__ = [
    "primary_metadata",
    "users_table",
    "clients_table",
    "client_users_table",
    "PrimaryUser",
    "PrimaryClient",
    "PrimaryMembership",
    "AgentSummary",
    "PrimaryDirectory",
    "AgentDirectory",
    "SqlPrimaryDirectory",
    "HttpAgentDirectory",
    "bearer_headers_provider",
]
