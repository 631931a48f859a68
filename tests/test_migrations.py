import os

os.environ.setdefault("DB_BACKEND", "sqlite")

from alembic import command
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker
from starlette.testclient import TestClient

import core.config as config
from app.deps import configure_services, reset_services
from app.main import app
from core.db import DB, _get_alembic_config, _get_schema_revisions
from core.models import Base
from core.primary import SqlPrimaryDirectory


def test_upgrade_head_creates_every_statistics_table(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'migrated.sqlite'}"
    monkeypatch.setattr(config, "DATABASE_URL", url)

    command.upgrade(_get_alembic_config(), "head")

    engine = create_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
        assert set(Base.metadata.tables) <= tables
        current, head = _get_schema_revisions(engine)
        assert current == head
    finally:
        engine.dispose()


def test_health_is_ready_on_migrated_database(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'health.sqlite'}"
    monkeypatch.setattr(config, "DATABASE_URL", url)
    command.upgrade(_get_alembic_config(), "head")

    engine = create_engine(url, connect_args={"check_same_thread": False})
    SessionLocal = sessionmaker(bind=engine)
    previous_engine, previous_session = DB.engine, DB.SessionLocal
    DB.engine, DB.SessionLocal = engine, SessionLocal
    configure_services(SessionLocal, SqlPrimaryDirectory(SessionLocal))
    try:
        response = TestClient(app).get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"]["schema_up_to_date"] is True
    finally:
        reset_services()
        DB.engine, DB.SessionLocal = previous_engine, previous_session
        engine.dispose()
