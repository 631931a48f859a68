import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import httpx
import pytest

import core.config as config
from app.main import _build_agent_directory
from core.primary import HttpAgentDirectory, PrimaryClient, bearer_headers_provider, clients_table

ACME = PrimaryClient(
    id="c1",
    name="Acme",
    endpoint="https://acme.agents.test/",
    authentication_type="api_key",
)


def test_sql_directory_reads_clients_users_and_memberships(seed, primary):
    seed.user("alice")
    seed.user("root", role="admin")
    seed.client("c1", name="Acme", user_id="alice")
    seed.client("c2", name="Globex")
    seed.membership("c2", "alice", role="admin")

    assert primary.get_client("c1").name == "Acme"
    assert primary.get_client("missing") is None
    assert [client.id for client in primary.list_clients()] == ["c1", "c2"]
    assert {user.id: user.role for user in primary.list_users()} == {"alice": "user", "root": "admin"}
    assert primary.list_client_ids_created_by("alice") == ["c1"]
    assert primary.get_membership("c2", "alice").role == "admin"
    assert primary.get_membership("c1", "alice") is None


def test_primary_tables_expose_no_secret_columns():
    assert set(clients_table.c.keys()) == {"id", "name", "endpoint", "authentication_type", "user_id"}


def test_http_directory_pages_agent_manager():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {"id": "a1", "name": "Helper", "agentType": "openclaw", "containerType": "docker"},
                {"id": 2, "name": None, "description": "unnamed"},
            ],
        )

    directory = HttpAgentDirectory(
        headers_provider=lambda client: {"X-API-Key": f"key-for-{client.id}"},
        transport=httpx.MockTransport(handler),
    )
    try:
        agents = directory.list_agents(ACME, limit=50, offset=100)
    finally:
        directory.close()

    assert seen[0].url.path == "/api/agents"
    assert seen[0].url.params["limit"] == "50"
    assert seen[0].url.params["offset"] == "100"
    assert seen[0].headers["x-api-key"] == "key-for-c1"
    assert [(agent.id, agent.agent_type, agent.container_type) for agent in agents] == [
        ("a1", "openclaw", "docker"),
        ("2", None, None),
    ]
    assert agents[1].name == ""


def test_http_directory_accepts_wrapped_payload():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": [{"id": "a1"}]}))
    directory = HttpAgentDirectory(transport=transport)
    try:
        assert [agent.id for agent in directory.list_agents(ACME, 10, 0)] == ["a1"]
    finally:
        directory.close()


def test_http_directory_raises_on_server_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(502))
    directory = HttpAgentDirectory(transport=transport)
    try:
        with pytest.raises(httpx.HTTPStatusError):
            directory.list_agents(ACME, 10, 0)
    finally:
        directory.close()


def test_bearer_provider_authenticates_agent_requests():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    directory = HttpAgentDirectory(
        headers_provider=bearer_headers_provider("mgr-key"),
        transport=httpx.MockTransport(handler),
    )
    try:
        directory.list_agents(ACME, 10, 0)
    finally:
        directory.close()

    assert seen[0].headers["authorization"] == "Bearer mgr-key"


def test_bearer_provider_is_absent_without_key():
    assert bearer_headers_provider(None) is None
    assert bearer_headers_provider("") is None


def test_app_agent_directory_uses_configured_key(monkeypatch, caplog):
    monkeypatch.setattr(config, "AGENT_MANAGER_API_KEY", "mgr-key")
    directory = _build_agent_directory()
    try:
        assert directory._headers_provider(ACME) == {"Authorization": "Bearer mgr-key"}
    finally:
        directory.close()
    assert "agent_directory_unauthenticated" not in caplog.text


def test_app_agent_directory_warns_without_key(monkeypatch, caplog):
    monkeypatch.setattr(config, "AGENT_MANAGER_API_KEY", None)
    directory = _build_agent_directory()
    try:
        assert directory._headers_provider is None
    finally:
        directory.close()
    assert "agent_directory_unauthenticated" in caplog.text
