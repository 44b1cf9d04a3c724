"""
Recall engine - one explicit object wiring the record store, vector index,
feature generator, graph builder and the recall, session, privacy and insights
services.
"""

from dataclasses import asdict, dataclass
import threading
from typing import Any, Dict, List, Mapping, Optional

from . import config
from .dao import RecordStore
from .errors import DimensionMismatch, EmbeddingError, EmbeddingTimeout
from .graph import SemanticGraphBuilder
from .insights import ActivityInsight, InsightsService, Suggestion
from .privacy import PrivacyService
from .schema import PrivacyRule, Record, now_ms
from .search_service import RecallResult, RecallService
from .sessions import MergedSession, SessionDiff, SessionService
from .text import domain_of, extract_keywords, generate_record_id
from .worker import EmbeddingWorker
from recall.util.logging import logger
from recall.vector.embeddings import FeatureHashEmbedding
from recall.vector.index import IVectorIndex
from recall.vector.types import VectorRecord


@dataclass
class CaptureResult:
    id: str
    captured: bool = True
    vector_indexed: bool = False
    edges_created: int = 0
    blocked_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RecallEngine:
    """Entry point for capture, recall, graph, session and privacy operations on one dataset."""

    def __init__(self, store: RecordStore, index: IVectorIndex,
                 generator: Optional[FeatureHashEmbedding] = None,
                 worker: Optional[EmbeddingWorker] = None,
                 graph: Optional[SemanticGraphBuilder] = None,
                 search_threshold: float = 0.15,
                 keyword_floor: int = 3,
                 fallback_similarity: float = 0.2):
        self.store = store
        self.index = index
        self.generator = generator or FeatureHashEmbedding()
        self.worker = worker or EmbeddingWorker(self.generator)
        self.graph = graph or SemanticGraphBuilder(store, index)
        self.search_threshold = search_threshold

        self.recall = RecallService(store, index, self.generator,
                                    keyword_floor=keyword_floor, fallback_similarity=fallback_similarity)
        self.sessions = SessionService(store)
        self.privacy = PrivacyService(store, index)
        self.insights = InsightsService(store, self.recall)

        # Single logical writer per dataset
        self._write_lock = threading.RLock()

    @classmethod
    def from_config(cls, db_path: Optional[str] = None, strategy: Optional[str] = None) -> 'RecallEngine':
        """Build an engine from environment configuration and warm its index from the store."""
        store = RecordStore(db_path or config.DB_PATH)
        index = config.get_vector_index(strategy)
        generator = config.get_feature_generator()
        engine = cls(
            store,
            index,
            generator=generator,
            worker=EmbeddingWorker(generator, timeout=config.EMBEDDING_TIMEOUT_SEC),
            graph=SemanticGraphBuilder(store, index,
                                       min_similarity=config.GRAPH_MIN_SIMILARITY,
                                       max_edges_per_node=config.GRAPH_MAX_EDGES_PER_NODE),
            search_threshold=config.SEARCH_THRESHOLD,
            keyword_floor=config.SEARCH_KEYWORD_FLOOR,
            fallback_similarity=config.SEARCH_FALLBACK_SIMILARITY
        )
        engine.load_index()
        return engine

    # -- capture -------------------------------------------------------------

    def _build_record(self, payload: Mapping[str, Any]) -> Record:
        url = payload["url"]
        title = payload.get("title") or ""
        body_text = payload.get("body_text") or ""
        timestamp = payload.get("timestamp")
        if timestamp is None:
            timestamp = now_ms()
        keywords = payload.get("keywords")
        if not keywords:
            keywords = extract_keywords(body_text, title)

        return Record(
            id=payload.get("id") or generate_record_id(url, timestamp),
            url=url,
            title=title,
            body_text=body_text,
            timestamp=int(timestamp),
            keywords=list(keywords),
            domain=(payload.get("domain") or domain_of(url)).strip().lower(),
            session_id=payload.get("session_id") or self.sessions.current_session_id(),
            tab_ref=payload.get("tab_ref")
        )

    def capture(self, payload: Mapping[str, Any]) -> CaptureResult:
        """
        Store one captured page and derive its vector and graph edges.

        The record is persisted before embedding starts, so it is keyword
        searchable even when the vector never arrives. Embedding failures are
        logged and leave the record without a vector.
        """
        record = self._build_record(payload)

        allowed, rule_id = self.privacy.allows_capture(record)
        if not allowed:
            return CaptureResult(id=record.id, captured=False, blocked_by=rule_id)

        with self._write_lock:
            self.store.upsert_record(record)
            # Edges of an earlier capture under this id describe a vector that is gone
            self.store.delete_edges_for(record.id)
            if record.session_id:
                self.store.touch_session(record.session_id, record.timestamp)

            future = self.worker.submit(record)
            try:
                components = self.worker.resolve(future)
            except EmbeddingError as e:
                self.store.delete_vector(record.id)
                self.index.remove(record.id)
                status = "timeout" if isinstance(e, EmbeddingTimeout) else "degraded"
                logger.log_embedding_failure(record.id, str(e), status=status)
                return CaptureResult(id=record.id)

            vector = VectorRecord(record.id, components, model_tag=self.generator.model_tag)
            self.store.store_vector(vector)
            self.index.add(record.id, components)
            logger.log_vector_operation("add", record.id, {"dimension": vector.dimension})

            edges = self.graph.add_node(record.id, components)

        return CaptureResult(id=record.id, vector_indexed=True, edges_created=edges)

    # -- queries -------------------------------------------------------------

    def search(self, query: str, limit: int = 10, threshold: Optional[float] = None) -> RecallResult:
        if threshold is None:
            threshold = self.search_threshold
        return self.recall.search(query, limit=limit, threshold=threshold)

    def neighbors(self, record_id: str, limit: int = 5) -> List[Record]:
        return self.graph.neighbors(record_id, limit)

    def find_path(self, from_id: str, to_id: str, max_depth: int = 3) -> List[str]:
        return self.graph.find_path(from_id, to_id, max_depth)

    def export(self) -> List[Record]:
        return self.store.get_all()

    def related_pages(self, url: str, limit: int = 5) -> List[Record]:
        return self.recall.related_pages(url, limit)

    def recent_pages(self, hours: int = 24, limit: int = 20) -> List[Record]:
        return self.recall.recent_pages(hours, limit)

    def pages_by_domain(self, domain: str) -> List[Record]:
        return self.recall.pages_by_domain(domain.strip().lower())

    # -- deletion ------------------------------------------------------------

    def forget(self, domain: Optional[str] = None, start: Optional[int] = None,
               end: Optional[int] = None) -> int:
        """
        Delete records by domain, by inclusive timestamp range, or by both.

        Returns:
            Number of records deleted; zero is a normal outcome
        """
        if domain is None and start is None and end is None:
            raise ValueError("forget needs a domain or a date range")

        with self._write_lock:
            ids = None
            if domain is not None:
                ids = self.store.ids_for_domain(domain.lower())
            if start is not None or end is not None:
                in_range = self.store.ids_in_date_range(start if start is not None else 0,
                                                        end if end is not None else now_ms())
                if ids is None:
                    ids = in_range
                else:
                    in_range = set(in_range)
                    ids = [rid for rid in ids if rid in in_range]

            deleted = self.privacy.purge(ids)

        logger.log_privacy_operation("forget", {"domain": domain, "start": start, "end": end, "deleted": deleted})
        return deleted

    def delete_record(self, record_id: str) -> bool:
        with self._write_lock:
            return self.privacy.purge([record_id]) > 0

    # -- sessions ------------------------------------------------------------

    def diff_sessions(self, session_a: str, session_b: str) -> SessionDiff:
        return self.sessions.diff(session_a, session_b)

    def merge_sessions(self, session_a: str, session_b: str) -> MergedSession:
        return self.sessions.merge(session_a, session_b)

    def session_stats(self, session_id: str) -> Dict[str, Any]:
        return self.sessions.session_stats(session_id)

    # -- insights ------------------------------------------------------------

    def activity_stats(self, days: int = 30) -> Dict[str, Any]:
        return self.insights.activity_stats(days)

    def generate_insights(self, days: int = 7) -> List[ActivityInsight]:
        return self.insights.generate_insights(days)

    def suggestions(self, url: str, limit: int = 5) -> List[Suggestion]:
        return self.insights.generate_suggestions(url, limit)

    def active_task(self) -> Dict[str, Any]:
        return self.insights.detect_active_task()

    def shortcuts(self) -> List[Dict[str, Any]]:
        return self.insights.suggest_shortcuts()

    # -- privacy rules -------------------------------------------------------

    def add_rule(self, kind, value: str) -> PrivacyRule:
        return self.privacy.add_rule(kind, value)

    def delete_rule(self, rule_id: str) -> bool:
        return self.privacy.delete_rule(rule_id)

    def list_rules(self) -> List[PrivacyRule]:
        return self.privacy.list_rules()

    def toggle_rule(self, rule_id: str) -> Optional[PrivacyRule]:
        return self.privacy.toggle_rule(rule_id)

    def apply_rule(self, rule_id: str) -> int:
        with self._write_lock:
            return self.privacy.apply_rule(rule_id)

    # -- maintenance ---------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        data = self.store.stats().to_dict()
        data.update({
            "index_size": len(self.index),
            "index_strategy": type(self.index).__name__,
            "dimension": self.index.dimension
        })
        return data

    def graph_stats(self) -> Dict[str, Any]:
        return self.graph.graph_stats()

    def load_index(self) -> int:
        """Fill the in-memory index from persisted vectors; returns the number loaded."""
        loaded = 0
        for vector in self.store.get_all_vectors():
            try:
                self.index.add(vector.record_id, vector.components)
                loaded += 1
            except DimensionMismatch as e:
                logger.log_vector_operation("load", vector.record_id, {"error": str(e)}, status="failed")

        logger.log_operation("index.load", "success", {"loaded": loaded})
        return loaded

    def rebuild_index(self) -> Dict[str, int]:
        """Regenerate every vector from stored records, then relink the graph and clusters."""
        with self._write_lock:
            self.index.clear()
            vectors = 0
            failed = 0
            for record in reversed(self.store.get_all()):
                try:
                    components = self.worker.embed(record)
                except EmbeddingError as e:
                    self.store.delete_vector(record.id)
                    logger.log_embedding_failure(record.id, str(e))
                    failed += 1
                    continue
                self.store.store_vector(VectorRecord(record.id, components, model_tag=self.generator.model_tag))
                self.index.add(record.id, components)
                vectors += 1

            edges = self.graph.rebuild()
            clusters = self.graph.rebuild_clusters()

        summary = {"vectors": vectors, "failed": failed, "edge_pairs": edges, "clusters": len(clusters)}
        logger.log_operation("index.rebuild", "success", summary)
        return summary

    def close(self) -> None:
        self.worker.shutdown()
        self.store.close()
