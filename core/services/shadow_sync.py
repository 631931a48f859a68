"""
Shadow sync jobs.

Bulk, idempotent upserts that bring the shadow tables in line with primary
entities. Run once at process start; safe to re-run at any time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import core.config as config
from core.primary import AgentDirectory, PrimaryClient, PrimaryDirectory
from core.services import shadow_store

logger = config.logger


@dataclass
class SyncReport:
    job: str
    synced: int = 0
    clients: int = 0
    skipped_clients: list[str] = field(default_factory=list)


class ShadowSync:
    def __init__(
        self,
        session_factory: Callable,
        primary: PrimaryDirectory,
        agents: Optional[AgentDirectory] = None,
        batch_size: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._primary = primary
        self._agents = agents
        self._batch_size = batch_size or config.STATISTICS_AGENT_SYNC_BATCH_SIZE

    def sync_users(self) -> SyncReport:
        report = SyncReport(job="users")
        users = self._primary.list_users()
        db = self._session_factory()
        try:
            for user in users:
                shadow_store.upsert_user(db, user.id, user.role)
                report.synced += 1
        finally:
            db.close()
        logger.info(f"Statistics user sync completed: {report.synced} user(s) synced")
        return report

    def sync_clients(self) -> SyncReport:
        report = SyncReport(job="clients")
        clients = self._primary.list_clients()
        report.clients = len(clients)
        db = self._session_factory()
        try:
            for client in clients:
                _upsert_shadow_client(db, client)
                report.synced += 1
        finally:
            db.close()
        logger.info(f"Statistics client sync completed: {report.synced} client(s) synced")
        return report

    def sync_agents(self) -> SyncReport:
        """Page agents per client; a client whose agent manager fails is skipped."""
        report = SyncReport(job="agents")
        if self._agents is None:
            logger.info("Statistics agent sync skipped: no agent directory configured")
            return report

        clients = self._primary.list_clients()
        report.clients = len(clients)
        for client in clients:
            db = self._session_factory()
            try:
                shadow_client = _upsert_shadow_client(db, client)
                report.synced += self._sync_agents_for_client(db, client, shadow_client.id)
            except Exception as exc:
                db.rollback()
                report.skipped_clients.append(client.id)
                logger.warning(f"Skipped agent sync for client {client.id} ({client.name}): {exc}")
            finally:
                db.close()
        logger.info(
            f"Statistics agent sync completed: {report.synced} agent(s) synced "
            f"across {report.clients} client(s)"
        )
        return report

    def _sync_agents_for_client(self, db, client: PrimaryClient, statistics_client_id: str) -> int:
        offset = 0
        total = 0
        while True:
            batch = self._agents.list_agents(client, self._batch_size, offset)
            for agent in batch:
                shadow_store.upsert_agent(
                    db,
                    agent.id,
                    statistics_client_id,
                    agent_type=agent.agent_type or "cursor",
                    container_type=agent.container_type or "generic",
                    name=agent.name,
                    description=agent.description,
                )
                total += 1
            if len(batch) < self._batch_size:
                return total
            offset += self._batch_size

    def run_startup_sync(self) -> list[SyncReport]:
        """Client sync, agent sync, then user sync. A failing job never stops the process."""
        reports = []
        for job in (self.sync_clients, self.sync_agents, self.sync_users):
            try:
                reports.append(job())
            except Exception as exc:
                logger.error(f"Statistics sync job {job.__name__} failed: {exc}")
        return reports


def _upsert_shadow_client(db, client: PrimaryClient):
    return shadow_store.upsert_client(
        db,
        client.id,
        name=client.name,
        endpoint=client.endpoint,
        authentication_type=client.authentication_type,
    )


__all__ = ["ShadowSync", "SyncReport"]
