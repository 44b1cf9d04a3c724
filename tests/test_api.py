from typing import get_args

import pytest
from fastapi.testclient import TestClient

from recall.api.commands import CommandType, execute
from recall.api.main import create_app
from recall.api.schemas import Command, SearchCommand, StatsCommand
from recall.core.dao import RecordStore
from recall.core.engine import RecallEngine
from recall.core.errors import StoreUnavailable
from recall.core.schema import now_ms
from recall.vector.index import ExactVectorIndex


@pytest.fixture
def engine(tmp_path):
    return RecallEngine(RecordStore(str(tmp_path / "api.db")), ExactVectorIndex())


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as client:
        yield client


def command(client, payload):
    response = client.post("/command", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


def capture(client, url, title, body_text="", timestamp=1_700_000_000_000, session_id="s1", keywords=None):
    record = {"url": url, "title": title, "body_text": body_text, "timestamp": timestamp, "session_id": session_id}
    if keywords is not None:
        record["keywords"] = keywords
    return command(client, {"type": "CAPTURE", "record": record})


def test_every_command_type_has_a_model():
    union = get_args(Command)[0]
    tags = {model.model_fields["type"].default for model in get_args(union)}

    assert tags == {c.value for c in CommandType}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["db_health"] is True
    assert data["record_count"] == 0


def test_capture_and_search(client):
    created = capture(client, "https://pets.com/cats", "cats are great pets", "cats are great pets",
                      keywords=["cats", "pets"])
    capture(client, "https://pets.com/dogs", "dogs are loyal companions", "dogs are loyal companions",
            keywords=["dogs", "pets"], timestamp=1_700_000_000_001)

    assert created["success"] is True
    assert created["data"]["id"].startswith("mem_")

    result = command(client, {"type": "SEARCH", "query": "pets", "limit": 10})
    assert result["success"] is True
    assert len(result["data"]) == 2
    assert all(match["shared_keywords"] == ["pets"] for match in result["data"])


def test_neighbors_export_and_path(client):
    a = capture(client, "https://a.com/1", "Kubernetes operators", "controllers reconcile")["data"]["id"]
    b = capture(client, "https://a.com/2", "Kubernetes operators", "controllers reconcile",
                timestamp=1_700_000_000_001)["data"]["id"]

    neighbors = command(client, {"type": "NEIGHBORS", "id": a, "limit": 5})
    assert [r["id"] for r in neighbors["data"]] == [b]

    path = command(client, {"type": "FIND_PATH", "from_id": a, "to_id": b})
    assert path["data"] == {"path": [a, b]}

    exported = command(client, {"type": "EXPORT"})
    assert [r["id"] for r in exported["data"]] == [b, a]


def test_forget(client):
    capture(client, "https://drop.com/1", "Dropped")
    capture(client, "https://keep.com/1", "Kept", timestamp=1_700_000_000_001)

    result = command(client, {"type": "FORGET", "domain": "drop.com"})

    assert result == {"success": True, "data": {"deleted_count": 1}, "error": None}
    assert client.get("/health").json()["record_count"] == 1


def test_forget_requires_criteria(client):
    response = client.post("/command", json={"type": "FORGET"})
    assert response.status_code == 422


def test_session_commands(client):
    capture(client, "https://a.com/1", "One", session_id="x")
    capture(client, "https://a.com/2", "Two", session_id="y", timestamp=1_700_000_000_001)

    diff = command(client, {"type": "DIFF_SESSIONS", "session_a": "x", "session_b": "y"})
    assert [r["url"] for r in diff["data"]["added"]] == ["https://a.com/2"]
    assert [r["url"] for r in diff["data"]["removed"]] == ["https://a.com/1"]

    merged = command(client, {"type": "MERGE_SESSIONS", "session_a": "x", "session_b": "y"})
    assert merged["data"]["id"] == "merged_x_y"
    assert len(merged["data"]["records"]) == 2


def test_rule_commands(client):
    added = command(client, {"type": "ADD_RULE", "kind": "domain", "value": "blocked.com"})
    rule_id = added["data"]["id"]

    blocked = capture(client, "https://blocked.com/page", "Nope")
    assert blocked["data"]["captured"] is False
    assert blocked["data"]["blocked_by"] == rule_id

    rules = command(client, {"type": "LIST_RULES"})
    assert [r["id"] for r in rules["data"]] == [rule_id]

    toggled = command(client, {"type": "TOGGLE_RULE", "id": rule_id})
    assert toggled["data"]["status"] == "inactive"

    capture(client, "https://blocked.com/page", "Now allowed")
    toggled = command(client, {"type": "TOGGLE_RULE", "id": rule_id})
    applied = command(client, {"type": "APPLY_RULE", "id": rule_id})
    assert applied["data"] == {"deleted_count": 1}

    deleted = command(client, {"type": "DELETE_RULE", "id": rule_id})
    assert deleted == {"success": True, "data": None, "error": None}
    assert command(client, {"type": "LIST_RULES"})["data"] == []


def test_invalid_rule_value_is_reported(client):
    result = command(client, {"type": "ADD_RULE", "kind": "date", "value": "whenever"})

    assert result["success"] is False
    assert result["error"]


def test_unknown_command_rejected(client):
    assert client.post("/command", json={"type": "DANCE"}).status_code == 422
    assert client.post("/command", json={"type": "CAPTURE", "record": {"url": " "}}).status_code == 422


def test_stats_endpoint(client):
    capture(client, "https://a.com/1", "Stats page")

    data = client.get("/stats").json()

    assert data["success"] is True
    assert data["data"]["record_count"] == 1
    assert data["data"]["graph"]["node_count"] == 1


def test_activity_commands(client):
    start = now_ms() - 60_000
    for i in range(3):
        capture(client, f"https://docs.rs/{i}", f"Tokio guide {i}", timestamp=start + i, keywords=["rust", "tokio"])

    assert command(client, {"type": "SESSION_STATS", "session_id": "s1"})["data"]["page_count"] == 3
    assert len(command(client, {"type": "PAGES_BY_DOMAIN", "domain": "docs.rs"})["data"]) == 3
    assert len(command(client, {"type": "RECENT_PAGES", "hours": 1})["data"]) == 3

    stats = command(client, {"type": "ACTIVITY_STATS"})["data"]
    assert stats["total_pages"] == 3
    assert stats["top_domains"][0]["domain"] == "docs.rs"

    insights = command(client, {"type": "INSIGHTS"})["data"]
    assert insights[0]["type"] == "domain_focus"

    task = command(client, {"type": "ACTIVE_TASK"})["data"]
    assert task["is_active"] is True
    assert task["keywords"] == ["rust", "tokio"]
    assert len(task["pages"]) == 3

    shortcuts = command(client, {"type": "SHORTCUTS"})["data"]
    assert shortcuts[0]["action"] == "https://docs.rs"

    suggestions = command(client, {"type": "SUGGESTIONS", "url": "https://docs.rs/2"})["data"]
    assert "recent_revisit" in [s["type"] for s in suggestions]

    related = command(client, {"type": "RELATED_PAGES", "url": "https://docs.rs/2"})["data"]
    assert {r["url"] for r in related} <= {"https://docs.rs/0", "https://docs.rs/1"}


def test_execute_without_http(engine):
    try:
        assert execute(engine, StatsCommand()).data["record_count"] == 0
        assert execute(engine, SearchCommand(query="nothing here")).data == []
    finally:
        engine.close()


def test_engine_closed_on_shutdown(engine):
    with TestClient(create_app(engine)) as client:
        client.get("/health")

    with pytest.raises(StoreUnavailable):
        engine.store.count_records()
