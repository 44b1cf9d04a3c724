"""
Session comparison and merging.
A session is the set of records sharing a session id.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set
import uuid

from .dao import RecordStore
from .schema import Record, Session, now_ms
from recall.util.logging import logger

URL_WEIGHT = 0.5
KEYWORD_WEIGHT = 0.3
DOMAIN_WEIGHT = 0.2

COMMON_KEYWORD_MIN_COUNT = 2
COMMON_KEYWORD_LIMIT = 10


@dataclass
class SessionDiff:
    added: List[Record] = field(default_factory=list)
    removed: List[Record] = field(default_factory=list)
    modified: List[Dict[str, Record]] = field(default_factory=list)  # {"old": ..., "new": ...}
    similarity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": [r.to_dict() for r in self.added],
            "removed": [r.to_dict() for r in self.removed],
            "modified": [{"old": m["old"].to_dict(), "new": m["new"].to_dict()} for m in self.modified],
            "similarity": self.similarity
        }


@dataclass
class MergedSession:
    id: str
    start_time: int
    end_time: int
    records: List[Record] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    domains: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "records": [r.to_dict() for r in self.records],
            "keywords": list(self.keywords),
            "domains": list(self.domains)
        }


def jaccard(a: Set[str], b: Set[str]) -> float:
    """|a & b| / |a | b|, with two empty sets counting as identical."""
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def latest_by_url(records: Sequence[Record]) -> Dict[str, Record]:
    """One record per URL, keeping the latest capture; first-seen URL order."""
    by_url: Dict[str, Record] = {}
    for record in records:
        existing = by_url.get(record.url)
        if existing is None or record.timestamp > existing.timestamp:
            by_url[record.url] = record
    return by_url


def common_keywords(records: Sequence[Record]) -> List[str]:
    """Keywords present in at least two records, most frequent first, at most ten."""
    counts = Counter()
    for record in records:
        counts.update(dict.fromkeys(record.keywords))
    frequent = [(kw, n) for kw, n in counts.items() if n >= COMMON_KEYWORD_MIN_COUNT]
    frequent.sort(key=lambda pair: -pair[1])
    return [kw for kw, _ in frequent[:COMMON_KEYWORD_LIMIT]]


class SessionService:
    """Tracks the current session and compares or merges stored sessions."""

    def __init__(self, store: RecordStore):
        self.store = store
        self._current_session_id: Optional[str] = None

    def start_session(self) -> str:
        started = now_ms()
        self._current_session_id = f"session_{started}_{uuid.uuid4().hex[:9]}"
        self.store.touch_session(self._current_session_id, started)
        return self._current_session_id

    def current_session_id(self) -> str:
        if not self._current_session_id:
            return self.start_session()
        return self._current_session_id

    def _pages(self, session_id: str) -> List[Record]:
        # Oldest first
        return list(reversed(self.store.get_by_session(session_id)))

    def similarity(self, session_a: str, session_b: str) -> float:
        return self._similarity(self._pages(session_a), self._pages(session_b))

    @staticmethod
    def _similarity(pages_a: Sequence[Record], pages_b: Sequence[Record]) -> float:
        if not pages_a and not pages_b:
            return 1.0
        if not pages_a or not pages_b:
            return 0.0

        url_sim = jaccard({p.url for p in pages_a}, {p.url for p in pages_b})
        keyword_sim = jaccard({kw for p in pages_a for kw in p.keywords},
                              {kw for p in pages_b for kw in p.keywords})
        domain_sim = jaccard({p.domain for p in pages_a}, {p.domain for p in pages_b})
        return URL_WEIGHT * url_sim + KEYWORD_WEIGHT * keyword_sim + DOMAIN_WEIGHT * domain_sim

    def diff(self, session_a: str, session_b: str) -> SessionDiff:
        """
        Compare two sessions by URL.

        ``added`` holds URLs only in *session_b*, ``removed`` URLs only in
        *session_a*, ``modified`` URLs in both whose latest captures have
        different timestamps.
        """
        pages_a = self._pages(session_a)
        pages_b = self._pages(session_b)
        by_url_a = latest_by_url(pages_a)
        by_url_b = latest_by_url(pages_b)

        added = [page for url, page in by_url_b.items() if url not in by_url_a]
        removed = [page for url, page in by_url_a.items() if url not in by_url_b]
        modified = [
            {"old": page, "new": by_url_b[url]}
            for url, page in by_url_a.items()
            if url in by_url_b and page.timestamp != by_url_b[url].timestamp
        ]

        return SessionDiff(added, removed, modified, self._similarity(pages_a, pages_b))

    def merge(self, session_a: str, session_b: str) -> MergedSession:
        """
        Union of both sessions by URL, keeping the later capture of each URL.

        The merged session is saved as a span-only ``Session`` row. Records keep
        their original session ids, so the merged id lists its span in
        ``list_sessions`` but has no pages of its own; diff or inspect the
        source sessions instead.
        """
        pages_a = self._pages(session_a)
        pages_b = self._pages(session_b)
        merged_pages = list(latest_by_url(pages_a + pages_b).values())

        timestamps = [p.timestamp for p in pages_a + pages_b]
        now = now_ms()
        merged = MergedSession(
            id=f"merged_{session_a}_{session_b}",
            start_time=min(timestamps) if timestamps else now,
            end_time=max(timestamps) if timestamps else now,
            records=merged_pages,
            keywords=common_keywords(merged_pages),
            domains=list(dict.fromkeys(p.domain for p in merged_pages))
        )

        self.store.save_session(Session(merged.id, merged.start_time, merged.end_time))
        logger.log_operation("session.merge", "success", {
            "session_a": session_a,
            "session_b": session_b,
            "records": len(merged_pages)
        })
        return merged

    def session_stats(self, session_id: str) -> Dict[str, Any]:
        pages = self._pages(session_id)
        if not pages:
            return {"page_count": 0, "duration": 0, "unique_domains": 0, "top_keywords": []}

        timestamps = [p.timestamp for p in pages]
        return {
            "page_count": len(pages),
            "duration": max(timestamps) - min(timestamps),
            "unique_domains": len({p.domain for p in pages}),
            "top_keywords": common_keywords(pages)
        }
