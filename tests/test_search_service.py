from unittest.mock import MagicMock

import pytest

from recall.core.dao import RecordStore
from recall.core.schema import Record
from recall.core.search_service import MatchReason, RecallService, match_reason, shared_keywords
from recall.vector.embeddings import FeatureHashEmbedding
from recall.vector.index import ExactVectorIndex
from recall.vector.types import VectorRecord


@pytest.fixture
def store(tmp_path):
    store = RecordStore(str(tmp_path / "search.db"))
    yield store
    store.close()


@pytest.fixture
def generator():
    return FeatureHashEmbedding()


@pytest.fixture
def index():
    return ExactVectorIndex()


@pytest.fixture
def service(store, index, generator):
    return RecallService(store, index, generator, keyword_floor=3, fallback_similarity=0.2)


def remember(store, index, generator, rid, title, body_text="", keywords=(), timestamp=1000,
             domain="example.com", with_vector=True):
    record = Record(id=rid, url=f"https://{domain}/{rid}", title=title, body_text=body_text,
                    timestamp=timestamp, keywords=list(keywords), domain=domain)
    store.upsert_record(record)
    if with_vector:
        vector = generator.generate(title, body_text, keywords)
        store.store_vector(VectorRecord(rid, vector))
        index.add(rid, vector)
    return record


def test_pets_query_returns_both_records(store, index, generator, service):
    remember(store, index, generator, "r1", "cats are great pets", "cats are great pets", ["cats", "pets"])
    remember(store, index, generator, "r2", "dogs are loyal companions", "dogs are loyal companions", ["dogs", "pets"])

    result = service.search("pets", limit=10, threshold=0.15)

    by_id = {m.record_id: m for m in result.matches}
    assert set(by_id) == {"r1", "r2"}
    assert by_id["r1"].shared_keywords == ["pets"]
    assert by_id["r2"].shared_keywords == ["pets"]
    assert result.total_results == 2
    assert result.query == "pets"


def test_blank_query_returns_empty_result(service):
    assert service.search("").matches == []
    assert service.search("   ").total_results == 0


def test_keyword_fallback_ranks_below_vector_hits(store, index, generator, service):
    remember(store, index, generator, "vec", "pets", "pets", ["pets"])
    remember(store, index, generator, "kw", "Notes", "my pets at home", with_vector=False)
    remember(store, index, generator, "other", "Gardening", "roses and tulips", with_vector=False)

    result = service.search("pets")

    assert [m.record_id for m in result.matches] == ["vec", "kw"]
    assert result.matches[0].similarity == pytest.approx(1.0)
    assert result.matches[1].similarity == 0.2
    assert result.matches[1].match_reason == MatchReason.CONTENT


def test_keyword_fallback_only_below_floor(store, index, generator):
    service = RecallService(store, index, generator, keyword_floor=1, fallback_similarity=0.2)
    remember(store, index, generator, "vec", "pets", "pets", ["pets"])
    remember(store, index, generator, "kw", "Notes", "my pets at home", with_vector=False)

    assert [m.record_id for m in service.search("pets").matches] == ["vec"]


def test_record_without_vector_is_still_found(store, index, generator, service):
    remember(store, index, generator, "degraded", "Quantum computing primer", "qubits", with_vector=False)

    result = service.search("quantum")

    assert [m.record_id for m in result.matches] == ["degraded"]
    assert result.matches[0].match_reason == MatchReason.TITLE


def test_results_sorted_and_limited(store, index, generator, service):
    for i in range(8):
        remember(store, index, generator, f"r{i}", f"python guide part {i}", "python programming", ["python"])

    result = service.search("python guide", limit=5)
    sims = [m.similarity for m in result.matches]

    assert len(result.matches) == 5
    assert sims == sorted(sims, reverse=True)


def test_threshold_is_passed_to_index(store, generator):
    index = MagicMock()
    index.search.return_value = []
    service = RecallService(store, index, generator)

    service.search("anything at all", limit=7, threshold=0.42)

    args, kwargs = index.search.call_args
    assert kwargs["k"] == 7
    assert kwargs["threshold"] == 0.42
    assert len(args[0]) == generator.get_dimension()


def test_query_embedded_with_query_helper(store, index, generator):
    generator = MagicMock(wraps=generator)
    service = RecallService(store, index, generator)

    service.search("async runtimes")

    generator.embed_query.assert_called_once_with("async runtimes")
    generator.generate.assert_not_called()


def test_match_reason_priority():
    tokens = ["pets"]
    title = Record("1", "u", "Best pets", "nothing", 1, ["pets"])
    body = Record("2", "u", "Animals", "about pets", 1, ["pets"])
    keyword = Record("3", "u", "Animals", "companions", 1, ["Pets"])
    semantic = Record("4", "u", "Animals", "companions", 1, ["dogs"])

    assert match_reason(title, "pets", tokens) == MatchReason.TITLE
    assert match_reason(body, "pets", tokens) == MatchReason.CONTENT
    assert match_reason(keyword, "pets", tokens) == MatchReason.SHARED_KEYWORDS
    assert match_reason(semantic, "pets", tokens) == MatchReason.SEMANTIC


def test_shared_keywords_keeps_record_order():
    record = Record("1", "u", "t", "b", 1, ["pets", "Cats", "dogs"])

    assert shared_keywords(record, ["dogs", "cats"]) == ["Cats", "dogs"]
    assert shared_keywords(record, []) == []


def test_match_serialisation(store, index, generator, service):
    remember(store, index, generator, "r1", "cats are great pets", "", ["cats", "pets"])

    data = service.search("cats").to_dict()

    assert data["matches"][0]["record_id"] == "r1"
    assert data["matches"][0]["match_reason"] == "title match"
    assert data["matches"][0]["record"]["url"] == "https://example.com/r1"


def test_related_recent_and_domain_pages(store, index, generator, service):
    remember(store, index, generator, "a", "A", timestamp=9_000_000, domain="one.com")
    remember(store, index, generator, "b", "B", timestamp=9_500_000, domain="two.com")
    remember(store, index, generator, "old", "Old", timestamp=1, domain="one.com")
    store.add_edge_pair("a", "b", 0.9)

    assert [r.id for r in service.related_pages("https://one.com/a")] == ["b"]
    assert service.related_pages("https://nowhere.com/") == []
    assert [r.id for r in service.recent_pages(hours=1, now=10_000_000)] == ["b", "a"]
    assert [r.id for r in service.pages_by_domain("one.com")] == ["a", "old"]
