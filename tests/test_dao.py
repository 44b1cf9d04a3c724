import numpy as np
import pytest

from recall.core.dao import RecordStore
from recall.core.db import connect, health_check, init_db
from recall.core.errors import StoreUnavailable
from recall.core.schema import Cluster, PrivacyRule, Record, RuleKind, RuleStatus, Session
from recall.vector.types import VectorRecord


@pytest.fixture
def store(tmp_path):
    store = RecordStore(str(tmp_path / "recall.db"))
    yield store
    store.close()


def make_record(rid, url=None, timestamp=1000, domain="example.com", session_id="s1",
                title="Title", body_text="Body text", keywords=None):
    return Record(
        id=rid,
        url=url or f"https://{domain}/{rid}",
        title=title,
        body_text=body_text,
        timestamp=timestamp,
        keywords=keywords if keywords is not None else ["alpha"],
        domain=domain,
        session_id=session_id
    )


def test_database_health(tmp_path):
    conn = connect(str(tmp_path / "sub" / "health.db"))
    assert health_check(conn) is False

    init_db(conn)
    assert health_check(conn) is True
    conn.close()


def test_init_db_is_idempotent(tmp_path):
    conn = connect(str(tmp_path / "twice.db"))
    init_db(conn)
    init_db(conn)
    assert health_check(conn)
    conn.close()


def test_memory_database():
    store = RecordStore(":memory:")
    store.upsert_record(make_record("m1"))
    assert store.count_records() == 1
    store.close()


def test_upsert_and_get(store):
    record = make_record("r1", keywords=["zeta", "alpha", "mu"])
    assert store.upsert_record(record) == "r1"

    loaded = store.get_record("r1")
    assert loaded == record
    assert loaded.keywords == ["zeta", "alpha", "mu"]


def test_upsert_replaces(store):
    store.upsert_record(make_record("r1", title="Old"))
    store.upsert_record(make_record("r1", title="New"))

    assert store.count_records() == 1
    assert store.get_record("r1").title == "New"


def test_unknown_record_is_none(store):
    assert store.get_record("missing") is None
    assert store.get_vector("missing") is None
    assert store.get_session("missing") is None
    assert store.get_rule("missing") is None


def test_get_all_newest_first(store):
    for i, ts in enumerate([300, 100, 200]):
        store.upsert_record(make_record(f"r{i}", timestamp=ts))

    assert [r.timestamp for r in store.get_all()] == [300, 200, 100]
    assert [r.id for r in store.get_all(limit=2)] == ["r0", "r2"]


def test_get_records_keeps_requested_order(store):
    for rid in ("a", "b", "c"):
        store.upsert_record(make_record(rid))

    assert [r.id for r in store.get_records(["c", "missing", "a"])] == ["c", "a"]
    assert store.get_records([]) == []


def test_secondary_lookups(store):
    store.upsert_record(make_record("a", domain="one.com", session_id="s1", timestamp=100))
    store.upsert_record(make_record("b", domain="two.com", session_id="s1", timestamp=200))
    store.upsert_record(make_record("c", domain="one.com", session_id="s2", timestamp=300,
                                    url="https://one.com/shared"))
    store.upsert_record(make_record("d", domain="one.com", session_id="s2", timestamp=400,
                                    url="https://one.com/shared"))

    assert [r.id for r in store.get_by_domain("one.com")] == ["d", "c", "a"]
    assert [r.id for r in store.get_by_session("s1")] == ["b", "a"]
    assert [r.id for r in store.get_by_url("https://one.com/shared")] == ["d", "c"]
    assert [r.id for r in store.get_in_date_range(150, 300)] == ["c", "b"]
    assert store.ids_for_domain("two.com") == ["b"]
    assert store.ids_in_date_range(0, 150) == ["a"]


def test_search_text_scores_term_overlap(store):
    store.upsert_record(make_record("both", title="Python tutorial", body_text="learn python", timestamp=1))
    store.upsert_record(make_record("one", title="Cooking", body_text="tutorial for soup", timestamp=2))
    store.upsert_record(make_record("kw", title="Misc", body_text="nothing", keywords=["python"], timestamp=3))
    store.upsert_record(make_record("none", title="Gardening", body_text="roses", keywords=[], timestamp=4))

    results = store.search_text(["python", "tutorial"], limit=10)

    assert [(r.id, score) for r, score in results] == [("both", 2), ("kw", 1), ("one", 1)]
    assert [r.id for r, _ in store.search_text(["python"], limit=10, exclude=["both"])] == ["kw"]
    assert store.search_text([], limit=10) == []


def test_ids_matching_keyword_is_case_insensitive(store):
    store.upsert_record(make_record("a", title="Secret Project"))
    store.upsert_record(make_record("b", body_text="the SECRET recipe"))
    store.upsert_record(make_record("c", keywords=["secrets"]))
    store.upsert_record(make_record("d", title="Public", body_text="open", keywords=[]))

    assert sorted(store.ids_matching_keyword("secret")) == ["a", "b", "c"]


def test_keyword_wildcards_match_literally(store):
    store.upsert_record(make_record("abc", title="abc notes"))
    store.upsert_record(make_record("under", title="a_c notes"))
    store.upsert_record(make_record("pct", body_text="grew 50% overnight"))
    store.upsert_record(make_record("five", body_text="grew 500 overnight"))

    assert store.ids_matching_keyword("a_c") == ["under"]
    assert store.ids_matching_keyword("50%") == ["pct"]
    assert [r.id for r, _ in store.search_text(["a_c"], limit=10)] == ["under"]


def test_matching_folds_non_ascii_case(store):
    store.upsert_record(make_record("cafe", title="ÜBER Café", body_text="", keywords=["Straße"]))
    store.upsert_record(make_record("other", title="Plain", body_text="", keywords=[]))

    assert store.ids_matching_keyword("über") == ["cafe"]
    assert store.ids_matching_keyword("CAFÉ") == ["cafe"]
    assert store.ids_matching_keyword("strasse") == ["cafe"]
    assert [r.id for r, _ in store.search_text(["über"], limit=10)] == ["cafe"]
    assert store.get_record("cafe").keywords == ["Straße"]


def test_ids_for_domain_with_subdomains(store):
    store.upsert_record(make_record("root", domain="example.com", timestamp=3))
    store.upsert_record(make_record("docs", domain="docs.example.com", timestamp=2))
    store.upsert_record(make_record("lookalike", domain="badexample.com", timestamp=1))
    store.upsert_record(make_record("wild", domain="examplexcom", timestamp=0))

    assert store.ids_for_domain("example.com") == ["root"]
    assert store.ids_for_domain("example.com", include_subdomains=True) == ["root", "docs"]


def test_delete_edges_for_record(store):
    store.add_edge_pair("a", "b", 0.9)
    store.add_edge_pair("c", "a", 0.8)
    store.add_edge_pair("b", "c", 0.7)

    assert store.delete_edges_for("a") == 4

    assert [(e.from_id, e.to_id) for e in store.get_all_edges()] == [("b", "c"), ("c", "b")]
    assert store.delete_edges_for("a") == 0


def test_vector_roundtrip(store):
    components = np.array([0.6, 0.8, 0.0])
    store.store_vector(VectorRecord("r1", components, model_tag="test", generated_at=5))

    loaded = store.get_vector("r1")
    assert np.array_equal(loaded.components, components)
    assert loaded.model_tag == "test"
    assert loaded.generated_at == 5
    assert loaded.dimension == 3

    assert [v.record_id for v in store.get_all_vectors()] == ["r1"]
    assert store.delete_vector("r1") is True
    assert store.delete_vector("r1") is False


def test_edges_are_symmetric(store):
    forward, backward = store.add_edge_pair("a", "b", 0.8)

    assert (forward.from_id, forward.to_id) == ("a", "b")
    assert (backward.from_id, backward.to_id) == ("b", "a")
    assert forward.strength == backward.strength == 0.8
    assert store.count_edges() == 2
    assert [e.to_id for e in store.get_edges_from("b")] == ["a"]


def test_edges_strongest_first(store):
    for rid in ("a", "b", "c", "d"):
        store.upsert_record(make_record(rid))
    store.add_edge_pair("a", "b", 0.7)
    store.add_edge_pair("a", "c", 0.9)
    store.add_edge_pair("a", "d", 0.8)

    assert [e.to_id for e in store.get_edges_from("a")] == ["c", "d", "b"]
    assert [(r.id, s) for r, s in store.get_related("a", limit=2)] == [("c", 0.9), ("d", 0.8)]

    assert store.clear_edges() == 6
    assert store.get_all_edges() == []


def test_delete_record_cascades(store):
    for rid in ("a", "b", "c"):
        store.upsert_record(make_record(rid))
        store.store_vector(VectorRecord(rid, np.array([1.0, 0.0])))
    store.add_edge_pair("a", "b", 0.9)
    store.add_edge_pair("b", "c", 0.7)
    store.add_edge_pair("a", "c", 0.65)
    store.replace_clusters([Cluster("cl1", "alpha", {"a", "b", "c"}), Cluster("cl2", "solo", {"b"})])

    assert store.delete_record("b") is True

    assert store.get_record("b") is None
    assert store.get_vector("b") is None
    assert all("b" not in (e.from_id, e.to_id) for e in store.get_all_edges())
    assert store.count_edges() == 2
    clusters = store.get_all_clusters()
    assert [(c.id, c.member_ids) for c in clusters] == [("cl1", {"a", "c"})]

    assert store.delete_record("b") is False


def test_save_cluster_upserts(store):
    store.save_cluster(Cluster("cl1", "draft", {"a"}, created_at=5))
    store.save_cluster(Cluster("cl1", "final", {"a", "b"}, created_at=6))
    store.save_cluster(Cluster("cl2", "other", {"c", "d"}, created_at=7))

    clusters = {c.id: c for c in store.get_all_clusters()}

    assert set(clusters) == {"cl1", "cl2"}
    assert clusters["cl1"].name == "final"
    assert clusters["cl1"].member_ids == {"a", "b"}
    assert clusters["cl1"].to_dict()["member_ids"] == ["a", "b"]

    store.replace_clusters([])
    assert store.get_all_clusters() == []


def test_delete_by_domain_updates_stats(store):
    store.upsert_record(make_record("a", domain="keep.com", body_text="x" * 500))
    store.upsert_record(make_record("b", domain="drop.com", body_text="y" * 500))
    store.upsert_record(make_record("c", domain="drop.com", body_text="z" * 500))
    for rid in ("a", "b", "c"):
        store.store_vector(VectorRecord(rid, np.zeros(4)))
    store.add_edge_pair("a", "b", 0.9)

    before = store.stats()
    assert store.delete_by_domain("drop.com") == 2
    after = store.stats()

    assert before.record_count == 3
    assert after.record_count == 1
    assert after.vector_count == 1
    assert after.edge_count == 0
    assert after.estimated_bytes < before.estimated_bytes
    assert store.delete_by_domain("drop.com") == 0


def test_delete_by_date_range(store):
    for rid, ts in (("a", 100), ("b", 200), ("c", 300)):
        store.upsert_record(make_record(rid, timestamp=ts))

    assert store.delete_by_date_range(150, 300) == 2
    assert [r.id for r in store.get_all()] == ["a"]


def test_delete_many_ids(store):
    ids = [f"r{i}" for i in range(1200)]
    for rid in ids:
        store.upsert_record(make_record(rid))

    assert store.delete_records(ids + ["missing"]) == 1200
    assert store.count_records() == 0


def test_touch_session_widens_span(store):
    assert store.touch_session("s1", 500) == Session("s1", 500, 500)
    store.touch_session("s1", 200)
    store.touch_session("s1", 900)

    assert store.get_session("s1") == Session("s1", 200, 900)


def test_save_and_list_sessions(store):
    store.save_session(Session("early", 100, 200))
    store.save_session(Session("late", 300, None))

    assert [s.id for s in store.list_sessions()] == ["late", "early"]


def test_rules_crud(store):
    rule = PrivacyRule("rule1", RuleKind.DOMAIN, "example.com", created_at=1)
    store.add_rule(rule)
    store.add_rule(PrivacyRule("rule2", RuleKind.KEYWORD, "secret", RuleStatus.INACTIVE, created_at=2))

    assert [r.id for r in store.list_rules()] == ["rule1", "rule2"]
    assert [r.id for r in store.list_rules(active_only=True)] == ["rule1"]

    updated = store.set_rule_status("rule1", RuleStatus.INACTIVE)
    assert updated.status == RuleStatus.INACTIVE
    assert store.get_rule("rule1").status == RuleStatus.INACTIVE
    assert store.set_rule_status("missing", RuleStatus.ACTIVE) is None

    assert store.delete_rule("rule1") is True
    assert store.delete_rule("rule1") is False


def test_stats_counts(store):
    store.upsert_record(make_record("a"))
    store.touch_session("s1", 1000)
    store.add_rule(PrivacyRule("rule1", RuleKind.DOMAIN, "x.com"))

    stats = store.stats()
    assert stats.record_count == 1
    assert stats.session_count == 1
    assert stats.rule_count == 1
    assert stats.estimated_bytes > 0


def test_store_unavailable_on_bad_path(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file in the way")

    with pytest.raises(StoreUnavailable):
        RecordStore(str(blocker / "recall.db"))


def test_closed_store_raises_everywhere(tmp_path):
    store = RecordStore(str(tmp_path / "closed.db"))
    store.close()

    with pytest.raises(StoreUnavailable):
        store.get_record("a")
    with pytest.raises(StoreUnavailable):
        store.upsert_record(make_record("a"))
    with pytest.raises(StoreUnavailable):
        store.delete_by_domain("example.com")
    with pytest.raises(StoreUnavailable):
        store.stats()
