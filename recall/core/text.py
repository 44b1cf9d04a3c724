"""
Text helpers shared by capture, feature generation and keyword recall.
"""

import hashlib
import re
from collections import Counter
from typing import List
from urllib.parse import urlparse

TOKEN_PATTERN = re.compile(r"\b\w{3,}\b")

STOP_WORDS = frozenset("""
the and for are but not you all any can had her was one our out has have this that with
from they will would there their what about which when make like time just know take into
year your some could them than then these other its also after use two how want way well
even new because any each most very been were who did get may him his she over only our
more such here where while those through before should being both same why own off again
""".split())


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens of length >= 3, in order of appearance."""
    if not text:
        return []
    return TOKEN_PATTERN.findall(text.lower())


def generate_record_id(url: str, timestamp: int) -> str:
    """Deterministic record id derived from url and capture timestamp."""
    digest = hashlib.sha1(f"{url}|{timestamp}".encode("utf-8")).hexdigest()
    return f"mem_{digest[:16]}"


def domain_of(url: str) -> str:
    """Hostname of *url*, lowercased and without a leading www."""
    host = urlparse(url).hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return host


def extract_keywords(body_text: str, title: str = "", limit: int = 10) -> List[str]:
    """
    Rank content words by frequency, counting title words three times.

    Ties keep the order in which words first appear (title first).
    """
    counts = Counter()
    first_seen = {}

    for weight, text in ((3, title), (1, body_text)):
        for token in tokenize(text):
            if token in STOP_WORDS or token.isdigit():
                continue
            counts[token] += weight
            first_seen.setdefault(token, len(first_seen))

    ranked = sorted(counts, key=lambda t: (-counts[t], first_seen[t]))
    return ranked[:limit]


def record_text(record) -> str:
    """Case-folded title, body text and keywords of *record*, used for substring matching."""
    keywords = " ".join(record.keywords or [])
    return " ".join([record.title or "", record.body_text or "", keywords]).casefold()
