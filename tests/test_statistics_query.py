import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from core.errors import ValidationIssue
from core.services import shadow_store
from core.services.statistics_query import StatisticsQueryService, format_timestamp


def _at(day: int, hour: int = 12, minute: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)


class ActivityBuilder:
    def __init__(self, db):
        self.db = db
        self.clients = {}
        self.agents = {}

    def client(self, original_id: str, name: str | None = None):
        row = shadow_store.upsert_client(
            self.db,
            original_id,
            name=name or original_id.upper(),
            endpoint=f"https://{original_id}.agents.test",
            authentication_type="api_key",
        )
        self.clients[original_id] = row.id
        return row.id

    def agent(self, client_id: str, original_id: str, name: str | None = None):
        row = shadow_store.upsert_agent(self.db, original_id, self.clients[client_id], name=name)
        self.agents[(client_id, original_id)] = row.id
        return row.id

    def chat(self, client_id, agent_id, direction, words, chars, when):
        return shadow_store.create_chat_io(
            self.db,
            self.clients[client_id],
            direction,
            words,
            chars,
            statistics_agent_id=self.agents[(client_id, agent_id)],
            occurred_at=when,
        )

    def drop(self, client_id, agent_id, filter_type, direction, when, reason=None):
        return shadow_store.create_filter_drop(
            self.db,
            self.clients[client_id],
            filter_type,
            filter_type.title(),
            direction,
            0,
            0,
            statistics_agent_id=self.agents[(client_id, agent_id)],
            filter_reason=reason,
            occurred_at=when,
        )

    def flag(self, client_id, agent_id, filter_type, direction, when):
        return shadow_store.create_filter_flag(
            self.db,
            self.clients[client_id],
            filter_type,
            filter_type.title(),
            direction,
            5,
            25,
            statistics_agent_id=self.agents[(client_id, agent_id)],
            occurred_at=when,
        )


@pytest.fixture
def activity(db_session):
    builder = ActivityBuilder(db_session)
    builder.client("c1", name="Acme")
    builder.client("c2", name="Globex")
    builder.agent("c1", "a1", name="Helper")
    builder.agent("c1", "a2", name="Writer")
    builder.agent("c2", "a1", name="Other helper")
    return builder


@pytest.fixture
def query(server_db):
    return StatisticsQueryService(server_db)


def test_summary_totals_and_average(activity, query):
    activity.chat("c1", "a1", "input", 10, 50, _at(1))
    activity.chat("c1", "a1", "output", 20, 100, _at(1, 13))

    summary = query.get_summary(["c1"])

    assert summary["totalMessages"] == 2
    assert summary["totalWords"] == 30
    assert summary["totalChars"] == 150
    assert summary["avgWordsPerMessage"] == 15
    assert "series" not in summary


def test_summary_filter_breakdown(activity, query):
    activity.drop("c1", "a1", "profanity", "incoming", _at(1))
    activity.drop("c1", "a1", "profanity", "incoming", _at(2))
    activity.drop("c1", "a2", "spam", "outgoing", _at(3))
    activity.flag("c1", "a1", "pii", "outgoing", _at(3))

    summary = query.get_summary(["c1"])

    assert summary["filterDropCount"] == 3
    assert summary["filterTypesBreakdown"] == [
        {"filterType": "profanity", "direction": "incoming", "count": 2},
        {"filterType": "spam", "direction": "outgoing", "count": 1},
    ]
    assert summary["uniqueFilterTypes"] == ["profanity", "spam"]
    assert summary["filterFlagCount"] == 1
    assert summary["filterFlagsBreakdown"] == [{"filterType": "pii", "direction": "outgoing", "count": 1}]
    assert summary["uniqueFlagTypes"] == ["pii"]


def test_summary_with_no_messages_has_zero_average(activity, query):
    summary = query.get_summary(["c1"])
    assert summary["totalMessages"] == 0
    assert summary["avgWordsPerMessage"] == 0


def test_summary_is_scoped_to_requested_clients(activity, query):
    activity.chat("c1", "a1", "input", 10, 50, _at(1))
    activity.chat("c2", "a1", "input", 99, 500, _at(1))

    assert query.get_summary(["c1"])["totalWords"] == 10
    assert query.get_summary(["c1", "c2"])["totalWords"] == 109


def test_summary_agent_filter_is_scoped_per_client(activity, query):
    activity.chat("c1", "a1", "input", 10, 50, _at(1))
    activity.chat("c1", "a2", "input", 3, 9, _at(1))
    activity.chat("c2", "a1", "input", 99, 500, _at(1))

    summary = query.get_summary(["c1"], agent_id="a1")

    assert summary["totalMessages"] == 1
    assert summary["totalWords"] == 10


def test_empty_scope_short_circuits_without_touching_activity(activity, query, statement_log):
    activity.chat("c1", "a1", "input", 10, 50, _at(1))
    statement_log.clear()

    assert query.get_summary([]) == {
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
    assert query.get_chat_io(["never-synced"]) == {"data": [], "total": 0, "limit": 10, "offset": 0}
    assert query.get_entity_events([]) == {"data": [], "total": 0, "limit": 10, "offset": 0}

    activity_tables = ("statistics_chat_io", "statistics_chat_filter", "statistics_entity_events")
    assert not any(table in statement for statement in statement_log for table in activity_tables)


def test_daily_series(activity, query):
    activity.chat("c1", "a1", "input", 10, 50, _at(1, 9))
    activity.chat("c1", "a1", "output", 20, 100, _at(1, 18))
    activity.chat("c1", "a1", "input", 5, 25, _at(2, 8))

    summary = query.get_summary(["c1"], group_by="day")

    assert summary["series"] == [
        {"period": "2024-01-01T00:00:00.000Z", "count": 2, "wordCount": 30, "charCount": 150},
        {"period": "2024-01-02T00:00:00.000Z", "count": 1, "wordCount": 5, "charCount": 25},
    ]


def test_hourly_series(activity, query):
    activity.chat("c1", "a1", "input", 1, 1, _at(1, 9, 5))
    activity.chat("c1", "a1", "input", 1, 1, _at(1, 9, 55))
    activity.chat("c1", "a1", "input", 1, 1, _at(1, 10, 0))

    series = query.get_summary(["c1"], group_by="hour")["series"]

    assert [(point["period"], point["count"]) for point in series] == [
        ("2024-01-01T09:00:00.000Z", 2),
        ("2024-01-01T10:00:00.000Z", 1),
    ]


def test_invalid_group_by_is_rejected(activity, query):
    with pytest.raises(ValidationIssue) as excinfo:
        query.get_summary(["c1"], group_by="week")
    assert excinfo.value.field == "groupBy"


def test_date_only_upper_bound_includes_whole_day(activity, query):
    activity.chat("c1", "a1", "input", 1, 1, _at(1, 23, 30))
    activity.chat("c1", "a1", "input", 1, 1, _at(2, 0, 30))

    summary = query.get_summary(["c1"], from_="2024-01-01", to="2024-01-01")
    assert summary["totalMessages"] == 1


def test_chat_io_pagination_newest_first(activity, query):
    base = _at(1)
    for n in range(5):
        activity.chat("c1", "a1", "input", n, n * 5, base + timedelta(minutes=n))

    first = query.get_chat_io(["c1"], limit=2, offset=0)
    second = query.get_chat_io(["c1"], limit=2, offset=2)
    last = query.get_chat_io(["c1"], limit=2, offset=4)

    assert first["total"] == 5
    assert [row["wordCount"] for row in first["data"]] == [4, 3]
    assert [row["wordCount"] for row in second["data"]] == [2, 1]
    assert [row["wordCount"] for row in last["data"]] == [0]
    assert (first["limit"], second["offset"]) == (2, 2)


def test_chat_io_row_shape(activity, query):
    activity.chat("c1", "a1", "output", 3, 12, _at(5, 10, 15))

    row = query.get_chat_io(["c1"])["data"][0]

    assert row["clientId"] == "c1"
    assert row["clientName"] == "Acme"
    assert row["agentId"] == "a1"
    assert row["agentName"] == "Helper"
    assert row["originalUserId"] is None
    assert row["direction"] == "output"
    assert row["occurredAt"] == "2024-01-05T10:15:00.000Z"


def test_chat_io_direction_and_search(activity, query):
    activity.chat("c1", "a1", "input", 1, 1, _at(1))
    activity.chat("c1", "a1", "output", 1, 1, _at(2))

    assert query.get_chat_io(["c1"], direction="output")["total"] == 1
    assert query.get_chat_io(["c1"], search="OUTP")["total"] == 1
    with pytest.raises(ValidationIssue):
        query.get_chat_io(["c1"], direction="incoming")


def test_search_wildcards_are_literal(activity, query):
    activity.drop("c1", "a1", "spam", "incoming", _at(1), reason="contains 100% promo")
    activity.drop("c1", "a1", "spam", "incoming", _at(2), reason="contains 1000 promo")

    result = query.get_filter_drops(["c1"], search="100%")

    assert result["total"] == 1
    assert result["data"][0]["filterReason"] == "contains 100% promo"
    assert query.get_filter_drops(["c1"], search="%")["total"] == 1
    assert query.get_filter_drops(["c1"], search="_")["total"] == 0


def test_filter_lists_filter_by_type_direction_and_agent(activity, query):
    activity.drop("c1", "a1", "profanity", "incoming", _at(1))
    activity.drop("c1", "a2", "profanity", "outgoing", _at(2))
    activity.drop("c1", "a2", "spam", "outgoing", _at(3))
    activity.flag("c1", "a1", "pii", "incoming", _at(3))

    assert query.get_filter_drops(["c1"], filter_type="profanity")["total"] == 2
    assert query.get_filter_drops(["c1"], direction="outgoing")["total"] == 2
    assert query.get_filter_drops(["c1"], agent_id="a2", filter_type="spam")["total"] == 1
    flags = query.get_filter_flags(["c1"])
    assert flags["total"] == 1
    assert flags["data"][0]["filterType"] == "pii"
    assert flags["data"][0]["wordCount"] == 5


def test_page_bounds_are_validated(activity, query):
    with pytest.raises(ValidationIssue):
        query.get_chat_io(["c1"], limit=0)
    with pytest.raises(ValidationIssue):
        query.get_chat_io(["c1"], limit=501)
    with pytest.raises(ValidationIssue):
        query.get_filter_drops(["c1"], offset=-1)


def test_malformed_date_is_rejected(activity, query):
    with pytest.raises(ValidationIssue) as excinfo:
        query.get_chat_io(["c1"], from_="last tuesday")
    assert excinfo.value.field == "from"


def test_entity_events_resolve_client_through_related_rows(activity, query, db_session):
    c1 = activity.clients["c1"]
    user = shadow_store.upsert_user(db_session, "alice")
    membership = shadow_store.create_client_user(db_session, "cu-1", c1, user.id)
    reference = shadow_store.create_provisioning_reference(
        db_session, "prov-1", c1, provider_type="hetzner", server_id="srv-1"
    )
    shadow_store.create_entity_event(
        db_session, "created", "client", "c1", statistics_clients_id=c1, occurred_at=_at(1)
    )
    shadow_store.create_entity_event(
        db_session,
        "created",
        "agent",
        "a1",
        statistics_user_id=user.id,
        statistics_agents_id=activity.agents[("c1", "a1")],
        occurred_at=_at(2),
    )
    shadow_store.create_entity_event(
        db_session, "created", "client_user", "cu-1", statistics_client_users_id=membership.id, occurred_at=_at(3)
    )
    shadow_store.create_entity_event(
        db_session,
        "created",
        "provisioning_reference",
        "prov-1",
        statistics_provisioning_references_id=reference.id,
        occurred_at=_at(4),
    )
    shadow_store.create_entity_event(
        db_session, "created", "client", "c2", statistics_clients_id=activity.clients["c2"], occurred_at=_at(5)
    )

    result = query.get_entity_events(["c1"])

    assert result["total"] == 4
    assert [row["entityType"] for row in result["data"]] == [
        "provisioning_reference",
        "client_user",
        "agent",
        "client",
    ]
    assert {row["clientId"] for row in result["data"]} == {"c1"}
    agent_event = result["data"][2]
    assert agent_event["agentName"] == "Helper"
    assert agent_event["originalUserId"] == "alice"


def test_entity_events_filters(activity, query, db_session):
    c1 = activity.clients["c1"]
    shadow_store.create_entity_event(db_session, "created", "client", "c1", statistics_clients_id=c1, occurred_at=_at(1))
    shadow_store.create_entity_event(db_session, "updated", "client", "c1", statistics_clients_id=c1, occurred_at=_at(2))
    shadow_store.create_entity_event(
        db_session,
        "created",
        "agent",
        "a2",
        statistics_agents_id=activity.agents[("c1", "a2")],
        occurred_at=_at(3),
    )

    assert query.get_entity_events(["c1"], event_type="updated")["total"] == 1
    assert query.get_entity_events(["c1"], entity_type="agent")["total"] == 1
    assert query.get_entity_events(["c1"], agent_id="a2")["total"] == 1
    assert query.get_entity_events(["c1"], search="a2")["total"] == 1
    with pytest.raises(ValidationIssue):
        query.get_entity_events(["c1"], entity_type="invoice")


def test_client_variants_match_single_client_scope(activity, query):
    activity.chat("c1", "a1", "input", 10, 50, _at(1))
    activity.chat("c2", "a1", "input", 99, 500, _at(1))

    assert query.get_client_summary("c1")["totalWords"] == 10
    assert query.get_client_chat_io("c2")["total"] == 1
    assert query.get_client_filter_drops("c1")["total"] == 0
    assert query.get_client_filter_flags("c1")["total"] == 0
    assert query.get_client_entity_events("c1")["total"] == 0


def test_format_timestamp():
    assert format_timestamp(datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)) == "2024-01-02T03:04:05.678Z"
    assert format_timestamp(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05.000Z"
    assert format_timestamp(None) is None
