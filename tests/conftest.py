import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("STATISTICS_SYNC_ON_STARTUP", "false")

import pytest
from sqlalchemy import create_engine, event, insert
from sqlalchemy.orm import sessionmaker

from core.db import DB
from core.models import Base
from core.primary import (
    AgentSummary,
    PrimaryClient,
    SqlPrimaryDirectory,
    client_users_table,
    clients_table,
    primary_metadata,
    users_table,
)


class PrimarySeeder:
    """Writes rows into the primary tables the statistics code only reads."""

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._membership_seq = 0

    def _insert(self, table, **values):
        db = self._session_factory()
        try:
            db.execute(insert(table).values(**values))
            db.commit()
        finally:
            db.close()

    def user(self, user_id: str, role: str = "user") -> str:
        self._insert(users_table, id=user_id, role=role)
        return user_id

    def client(
        self,
        client_id: str,
        name: str | None = None,
        endpoint: str | None = None,
        authentication_type: str = "api_key",
        user_id: str | None = None,
    ) -> str:
        self._insert(
            clients_table,
            id=client_id,
            name=name or f"Client {client_id}",
            endpoint=endpoint or f"https://{client_id}.agents.test",
            authentication_type=authentication_type,
            user_id=user_id,
        )
        return client_id

    def membership(self, client_id: str, user_id: str, role: str = "user") -> str:
        self._membership_seq += 1
        membership_id = f"cu-{self._membership_seq}"
        self._insert(
            client_users_table,
            id=membership_id,
            client_id=client_id,
            user_id=user_id,
            role=role,
        )
        return membership_id


class FakeAgentDirectory:
    """Agent listing keyed by client id; listed clients raise instead of answering."""

    def __init__(self, agents_by_client: dict | None = None, unreachable: set | None = None):
        self.agents_by_client = agents_by_client or {}
        self.unreachable = unreachable or set()
        self.calls: list[tuple[str, int, int]] = []

    def list_agents(self, client: PrimaryClient, limit: int, offset: int) -> list[AgentSummary]:
        self.calls.append((client.id, limit, offset))
        if client.id in self.unreachable:
            raise ConnectionError(f"agent manager for {client.id} unreachable")
        agents = self.agents_by_client.get(client.id, [])
        return agents[offset:offset + limit]


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "statistics.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    primary_metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    try:
        yield SessionLocal
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = server_db()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(server_db):
    return PrimarySeeder(server_db)


@pytest.fixture
def primary(server_db):
    return SqlPrimaryDirectory(server_db)


@pytest.fixture
def statement_log(server_db):
    """Collects every SQL statement executed against the test engine."""
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(DB.engine, "before_cursor_execute", _record)
    try:
        yield statements
    finally:
        event.remove(DB.engine, "before_cursor_execute", _record)


@pytest.fixture
def make_agent_directory():
    return FakeAgentDirectory
