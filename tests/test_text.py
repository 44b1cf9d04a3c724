import re

from recall.core.text import domain_of, extract_keywords, generate_record_id, tokenize


def test_tokenize_lowercases_and_drops_short_words():
    assert tokenize("The Cat sat on a Mat, ok?") == ["the", "cat", "sat", "mat"]
    assert tokenize("") == []
    assert tokenize(None) == []


def test_record_id_is_deterministic():
    rid = generate_record_id("https://example.com/a", 1_700_000_000_000)

    assert re.fullmatch(r"mem_[0-9a-f]{16}", rid)
    assert rid == generate_record_id("https://example.com/a", 1_700_000_000_000)
    assert rid != generate_record_id("https://example.com/a", 1_700_000_000_001)


def test_domain_of():
    assert domain_of("https://www.Example.com/path?q=1") == "example.com"
    assert domain_of("http://docs.python.org:8080/3/") == "docs.python.org"
    assert domain_of("not a url") == ""


def test_extract_keywords_weights_title():
    keywords = extract_keywords("gardening tips for tomatoes and more tomatoes", title="Growing basil")

    assert keywords[:2] == ["growing", "basil"]
    assert "tomatoes" in keywords
    assert "for" not in keywords and "and" not in keywords


def test_extract_keywords_skips_numbers_and_limits():
    body = " ".join(f"word{i}" for i in range(20)) + " 2024 2024 2024"

    keywords = extract_keywords(body, limit=5)

    assert keywords == ["word0", "word1", "word2", "word3", "word4"]
