"""
Hybrid recall: vector similarity first, keyword overlap to fill in when the vector path is thin.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .dao import RecordStore
from .schema import Record, now_ms
from .text import tokenize
from recall.util.logging import logger
from recall.vector.embeddings import FeatureHashEmbedding
from recall.vector.index import IVectorIndex


class MatchReason(str, Enum):
    TITLE = "title match"
    CONTENT = "content match"
    SHARED_KEYWORDS = "shared keywords"
    SEMANTIC = "semantic similarity"


@dataclass
class Match:
    record_id: str
    similarity: float
    shared_keywords: List[str]
    match_reason: MatchReason
    record: Optional[Record] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "similarity": self.similarity,
            "shared_keywords": list(self.shared_keywords),
            "match_reason": self.match_reason.value,
            "record": self.record.to_dict() if self.record else None
        }


@dataclass
class RecallResult:
    query: str
    matches: List[Match] = field(default_factory=list)
    timestamp: int = field(default_factory=now_ms)
    total_results: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "matches": [m.to_dict() for m in self.matches],
            "timestamp": self.timestamp,
            "total_results": self.total_results
        }


def shared_keywords(record: Record, query_tokens: List[str]) -> List[str]:
    """Record keywords (in record order) that also appear among the query tokens."""
    tokens = set(query_tokens)
    return [kw for kw in record.keywords if kw.lower() in tokens]


def match_reason(record: Record, query: str, query_tokens: List[str]) -> MatchReason:
    """Explain a match: title text beats body text beats keyword overlap beats pure vector similarity."""
    needles = [query.strip().lower()] + query_tokens
    title = (record.title or "").lower()
    if any(n and n in title for n in needles):
        return MatchReason.TITLE
    body = (record.body_text or "").lower()
    if any(n and n in body for n in needles):
        return MatchReason.CONTENT
    if shared_keywords(record, query_tokens):
        return MatchReason.SHARED_KEYWORDS
    return MatchReason.SEMANTIC


class RecallService:
    """Answers free-text queries with ranked, explained matches."""

    def __init__(self, store: RecordStore, index: IVectorIndex, generator: FeatureHashEmbedding,
                 keyword_floor: int = 3, fallback_similarity: float = 0.2):
        self.store = store
        self.index = index
        self.generator = generator
        self.keyword_floor = keyword_floor
        self.fallback_similarity = fallback_similarity

    def search(self, query: str, limit: int = 10, threshold: float = 0.15) -> RecallResult:
        """
        Search stored records for *query*.

        Vector hits at or above *threshold* come first. When fewer than
        ``keyword_floor`` vector hits exist, records sharing query terms are
        added with the fixed ``fallback_similarity`` so they rank below real
        vector matches.

        Args:
            query: Free-text query
            limit: Maximum number of matches
            threshold: Minimum cosine similarity for vector hits

        Returns:
            RecallResult with matches ordered by similarity descending
        """
        query = (query or "").strip()
        if not query or limit <= 0:
            return RecallResult(query=query)

        query_tokens = tokenize(query)
        query_vector = self.generator.embed_query(query)

        scored: Dict[str, float] = {}
        for hit in self.index.search(query_vector, k=limit, threshold=threshold):
            scored[hit.id] = hit.similarity
        vector_hits = len(scored)

        keyword_hits = 0
        if vector_hits < self.keyword_floor and query_tokens:
            for record, _ in self.store.search_text(query_tokens, limit=limit, exclude=scored.keys()):
                scored[record.id] = self.fallback_similarity
                keyword_hits += 1

        records = {r.id: r for r in self.store.get_records(list(scored.keys()))}
        ranked = sorted(
            (rid for rid in scored if rid in records),
            key=lambda rid: -scored[rid]
        )[:limit]

        matches = []
        for rid in ranked:
            record = records[rid]
            matches.append(Match(
                record_id=rid,
                similarity=scored[rid],
                shared_keywords=shared_keywords(record, query_tokens),
                match_reason=match_reason(record, query, query_tokens),
                record=record
            ))

        logger.log_search(query, vector_hits, keyword_hits, len(matches), threshold)
        return RecallResult(query=query, matches=matches, total_results=len(matches))

    def related_pages(self, url: str, limit: int = 5) -> List[Record]:
        """Graph neighbours of the most recent record captured from *url*."""
        captures = self.store.get_by_url(url)
        if not captures:
            return []
        return [record for record, _ in self.store.get_related(captures[0].id, limit)]

    def recent_pages(self, hours: int = 24, limit: int = 20, now: Optional[int] = None) -> List[Record]:
        now = now if now is not None else now_ms()
        return self.store.get_in_date_range(now - hours * 3600 * 1000, now, limit)

    def pages_by_domain(self, domain: str) -> List[Record]:
        return self.store.get_by_domain(domain)
