import os
from datetime import datetime, timezone

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest
from starlette.testclient import TestClient

import core.config as config
from app.deps import configure_services, reset_services
from app.main import app
from core.services import shadow_store

ALICE = {"X-User-Id": "alice", "X-User-Role": "user"}
ROOT = {"X-User-Id": "root", "X-User-Role": "ADMIN"}


@pytest.fixture
def tenants(seed, db_session):
    seed.user("alice")
    seed.user("bob")
    seed.client("c1", name="Acme", user_id="alice")
    seed.client("c2", name="Globex", user_id="bob")
    for client_id, words in (("c1", 10), ("c2", 99)):
        shadow = shadow_store.upsert_client(
            db_session,
            client_id,
            name=client_id,
            endpoint=f"https://{client_id}.agents.test",
            authentication_type="api_key",
        )
        agent = shadow_store.upsert_agent(db_session, "a1", shadow.id)
        shadow_store.create_chat_io(
            db_session,
            shadow.id,
            "input",
            words,
            words * 5,
            statistics_agent_id=agent.id,
            occurred_at=datetime(2024, 1, 1, 12, tzinfo=timezone.utc),
        )
    return seed


@pytest.fixture
def client(server_db, primary, tenants):
    configure_services(server_db, primary, authentication_method="users")
    try:
        yield TestClient(app)
    finally:
        reset_services()


def test_summary_covers_accessible_clients_only(client):
    response = client.get("/statistics/summary", headers=ALICE)

    assert response.status_code == 200
    assert response.json()["totalWords"] == 10


def test_admin_summary_covers_every_client(client):
    response = client.get("/statistics/summary", headers=ROOT)
    assert response.json()["totalWords"] == 109


def test_anonymous_caller_gets_empty_results(client):
    body = client.get("/statistics/chat-io").json()
    assert body == {"data": [], "total": 0, "limit": 10, "offset": 0}


def test_client_id_outside_scope_is_forbidden(client):
    response = client.get("/statistics/chat-io", params={"clientId": "c2"}, headers=ALICE)

    assert response.status_code == 403
    assert response.json()["error_type"] == "forbidden"


def test_client_id_inside_scope_narrows(client):
    response = client.get("/statistics/chat-io", params={"clientId": "c1"}, headers=ROOT)

    body = response.json()
    assert body["total"] == 1
    assert body["data"][0]["clientId"] == "c1"
    assert body["data"][0]["agentId"] == "a1"


def test_client_scoped_routes_check_access(client):
    assert client.get("/clients/c1/statistics/summary", headers=ALICE).status_code == 200
    assert client.get("/clients/c2/statistics/summary", headers=ALICE).status_code == 403
    for path in ("chat-io", "filter-drops", "filter-flags", "entity-events"):
        assert client.get(f"/clients/c2/statistics/{path}", headers=ALICE).status_code == 403
        assert client.get(f"/clients/c1/statistics/{path}", headers=ALICE).status_code == 200


def test_query_parameters_are_forwarded(client):
    body = client.get(
        "/statistics/summary",
        params={"from": "2024-01-01", "to": "2024-01-01", "groupBy": "day"},
        headers=ALICE,
    ).json()

    assert body["series"] == [
        {"period": "2024-01-01T00:00:00.000Z", "count": 1, "wordCount": 10, "charCount": 50}
    ]


def test_validation_errors_are_bad_requests(client):
    bad_date = client.get("/statistics/chat-io", params={"from": "soon"}, headers=ALICE)
    assert bad_date.status_code == 400
    assert bad_date.json() == {
        "status": "error",
        "error_type": "validation_error",
        "field": "from",
        "message": "from must be an ISO-8601 date or date-time",
    }

    bad_limit = client.get("/statistics/filter-drops", params={"limit": 0}, headers=ALICE)
    assert bad_limit.status_code == 400
    assert bad_limit.json()["field"] == "limit"

    bad_group = client.get("/clients/c1/statistics/summary", params={"groupBy": "year"}, headers=ALICE)
    assert bad_group.status_code == 400


def test_api_key_header(client, monkeypatch):
    monkeypatch.setattr(config, "STATIC_API_KEY", "s3cret")

    ok = client.get("/statistics/summary", headers={"X-API-Key": "s3cret"})
    assert ok.status_code == 200
    assert ok.json()["totalWords"] == 109

    denied = client.get("/statistics/summary", headers={"X-API-Key": "wrong"})
    assert denied.status_code == 401


def test_api_key_header_rejected_when_no_key_configured(client, monkeypatch):
    monkeypatch.setattr(config, "STATIC_API_KEY", None)
    assert client.get("/statistics/summary", headers={"X-API-Key": "anything"}).status_code == 401


@pytest.fixture
def api_key_client(server_db, primary, tenants, monkeypatch):
    monkeypatch.setattr(config, "STATIC_API_KEY", "s3cret")
    configure_services(server_db, primary, authentication_method="api-key")
    try:
        yield TestClient(app)
    finally:
        reset_services()


def test_api_key_deployment_requires_a_key(api_key_client):
    for path in ("/statistics/summary", "/statistics/chat-io", "/clients/c2/statistics/chat-io"):
        anonymous = api_key_client.get(path)
        assert anonymous.status_code == 401
        assert anonymous.json()["detail"] == "API key required"
        assert api_key_client.get(path, headers={"X-User-Id": "mallory"}).status_code == 401
        assert api_key_client.get(path, headers=ROOT).status_code == 401


def test_api_key_deployment_serves_verified_key(api_key_client):
    response = api_key_client.get("/statistics/summary", headers={"X-API-Key": "s3cret"})
    assert response.status_code == 200
    assert response.json()["totalWords"] == 109

    scoped = api_key_client.get("/clients/c2/statistics/chat-io", headers={"X-API-Key": "s3cret"})
    assert scoped.status_code == 200
    assert scoped.json()["total"] == 1


def test_root_lists_endpoints(client):
    body = client.get("/").json()
    assert body["service"] == "AgentStats"
    assert body["endpoints"]["statistics"]["summary"] == "/statistics/summary"


def test_health_reports_unready_without_services(server_db):
    reset_services()
    response = TestClient(app).get("/health")
    assert response.status_code == 503
    assert response.json()["detail"]["services_ready"] is False
