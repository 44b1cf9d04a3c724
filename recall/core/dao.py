"""
Record store - the canonical persistence layer.

Records, vectors, edges, sessions, clusters and privacy rules live in one SQLite
database. Each write runs in a single transaction so readers never observe a
partially written record. Deleting records cascades to their vectors, every
incident edge and the cached cluster memberships.
"""

from contextlib import contextmanager
import json
import sqlite3
import threading
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .db import connect, health_check, init_db
from .errors import StoreUnavailable
from .schema import Cluster, Edge, PrivacyRule, Record, RuleKind, RuleStatus, Session, StoreStats, now_ms
from .text import record_text
from recall.util.logging import logger
from recall.vector.types import VectorRecord

# SQLite caps bound parameters per statement
_ID_CHUNK = 400

_VECTOR_DTYPE = np.dtype("<f8")

_RECORD_COLUMNS = "id, url, title, body_text, timestamp, keywords, domain, session_id, tab_ref"


def _chunks(ids: Sequence[str]) -> Iterator[List[str]]:
    for start in range(0, len(ids), _ID_CHUNK):
        yield list(ids[start:start + _ID_CHUNK])


def _placeholders(count: int) -> str:
    return ",".join("?" * count)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class RecordStore:
    """SQLite-backed store for records and their derived collections."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

        try:
            conn = connect(db_path)
            init_db(conn)
        except StoreUnavailable as e:
            logger.log_operation("store.init", "failed", {"db_path": db_path, "error": str(e)})
            raise

        self._conn = conn
        logger.log_operation("store.init", "success", {"db_path": db_path})

    # -- connection handling -------------------------------------------------

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailable(f"Record store at {self.db_path} is not open")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run the enclosed statements in one transaction."""
        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    yield conn.cursor()
            except sqlite3.ProgrammingError as e:
                raise StoreUnavailable(f"Record store at {self.db_path} is unusable: {e}") from e

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            conn = self._connection()
            try:
                yield conn.cursor()
            except sqlite3.ProgrammingError as e:
                raise StoreUnavailable(f"Record store at {self.db_path} is unusable: {e}") from e

    def health_check(self) -> bool:
        """True when the store is open and every collection exists."""
        with self._lock:
            return self._conn is not None and health_check(self._conn)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.log_operation("store.close", "success", {"db_path": self.db_path})

    # -- records -------------------------------------------------------------

    def upsert_record(self, record: Record) -> str:
        """Insert *record* or fully replace the stored record with the same id."""
        with self._transaction() as cursor:
            cursor.execute(
                f"INSERT OR REPLACE INTO records ({_RECORD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (record.id, record.url, record.title or "", record.body_text or "", record.timestamp,
                 json.dumps(list(record.keywords or []), ensure_ascii=False), record.domain or "", record.session_id, record.tab_ref)
            )

        logger.log_record_operation("upsert", record.id, {"url": record.url, "domain": record.domain})
        return record.id

    def get_record(self, record_id: str) -> Optional[Record]:
        with self._reader() as cursor:
            cursor.execute(f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = ?", (record_id,))
            row = cursor.fetchone()
        return Record.from_row(row) if row else None

    def get_records(self, record_ids: Sequence[str]) -> List[Record]:
        """Records for *record_ids* in the given order; unknown ids are skipped."""
        record_ids = list(dict.fromkeys(record_ids))
        found: Dict[str, Record] = {}
        with self._reader() as cursor:
            for chunk in _chunks(record_ids):
                cursor.execute(
                    f"SELECT {_RECORD_COLUMNS} FROM records WHERE id IN ({_placeholders(len(chunk))})",
                    chunk
                )
                for row in cursor.fetchall():
                    found[row["id"]] = Record.from_row(row)
        return [found[rid] for rid in record_ids if rid in found]

    def _select_records(self, where: str = "", params: Tuple = (), limit: Optional[int] = None) -> List[Record]:
        sql = f"SELECT {_RECORD_COLUMNS} FROM records"
        if where:
            sql += f" WHERE {where}"
        sql += " ORDER BY timestamp DESC, rowid ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (int(limit),)

        with self._reader() as cursor:
            cursor.execute(sql, params)
            return [Record.from_row(row) for row in cursor.fetchall()]

    def get_all(self, limit: Optional[int] = None) -> List[Record]:
        """All records, newest first."""
        return self._select_records(limit=limit)

    def get_by_domain(self, domain: str, limit: Optional[int] = None) -> List[Record]:
        return self._select_records("domain = ?", (domain,), limit)

    def get_by_session(self, session_id: str) -> List[Record]:
        return self._select_records("session_id = ?", (session_id,))

    def get_by_url(self, url: str) -> List[Record]:
        return self._select_records("url = ?", (url,))

    def get_in_date_range(self, start: int, end: int, limit: Optional[int] = None) -> List[Record]:
        """Records with start <= timestamp <= end, newest first."""
        return self._select_records("timestamp >= ? AND timestamp <= ?", (start, end), limit)

    def search_text(self, terms: Sequence[str], limit: int = 10,
                    exclude: Iterable[str] = ()) -> List[Tuple[Record, int]]:
        """
        Keyword scan over title, body and keywords.

        Each record scores the number of *terms* that occur as a substring of its
        case-folded title, body text or keyword list. Records scoring zero are
        dropped. Ordered by score, then recency. Matching runs in Python since
        SQLite folds case for ASCII only.

        Args:
            terms: Search terms, matched case-insensitively
            limit: Maximum number of (record, score) pairs
            exclude: Record ids to skip

        Returns:
            List of (record, score) pairs
        """
        terms = list(dict.fromkeys(t.casefold() for t in terms if t))
        if not terms or limit <= 0:
            return []

        excluded = set(exclude)
        scored = []
        for record in self._select_records():
            if record.id in excluded:
                continue
            haystack = record_text(record)
            score = sum(1 for term in terms if term in haystack)
            if score > 0:
                scored.append((record, score))

        # Stable sort keeps the newest-first order among equal scores
        scored.sort(key=lambda pair: -pair[1])
        return scored[:limit]

    def count_records(self) -> int:
        with self._reader() as cursor:
            cursor.execute("SELECT COUNT(*) FROM records")
            return cursor.fetchone()[0]

    def _ids_where(self, where: str, params: Tuple) -> List[str]:
        with self._reader() as cursor:
            cursor.execute(f"SELECT id FROM records WHERE {where} ORDER BY timestamp DESC, rowid ASC", params)
            return [row[0] for row in cursor.fetchall()]

    def ids_for_domain(self, domain: str, include_subdomains: bool = False) -> List[str]:
        """Ids of records on *domain*; with *include_subdomains* also those on any ``*.domain``."""
        if include_subdomains:
            return self._ids_where("domain = ? OR domain LIKE ? ESCAPE '\\'", (domain, "%." + _escape_like(domain)))
        return self._ids_where("domain = ?", (domain,))

    def ids_in_date_range(self, start: int, end: int) -> List[str]:
        return self._ids_where("timestamp >= ? AND timestamp <= ?", (start, end))

    def ids_matching_keyword(self, value: str) -> List[str]:
        """Ids of records whose title, body text or keywords contain *value* (case-insensitive)."""
        needle = value.casefold()
        if not needle:
            return []
        return [record.id for record in self._select_records() if needle in record_text(record)]

    def _delete_ids(self, cursor: sqlite3.Cursor, record_ids: Sequence[str]) -> int:
        """Cascading delete inside an open transaction; returns removed record count."""
        deleted = 0
        for chunk in _chunks(record_ids):
            marks = _placeholders(len(chunk))
            cursor.execute(f"DELETE FROM records WHERE id IN ({marks})", chunk)
            deleted += cursor.rowcount
            cursor.execute(f"DELETE FROM vectors WHERE record_id IN ({marks})", chunk)
            cursor.execute(f"DELETE FROM edges WHERE from_id IN ({marks}) OR to_id IN ({marks})", chunk + chunk)

        removed = set(record_ids)
        cursor.execute("SELECT id, member_ids FROM clusters")
        for row in cursor.fetchall():
            members = json.loads(row["member_ids"])
            kept = [m for m in members if m not in removed]
            if len(kept) == len(members):
                continue
            if kept:
                cursor.execute("UPDATE clusters SET member_ids = ? WHERE id = ?", (json.dumps(kept), row["id"]))
            else:
                cursor.execute("DELETE FROM clusters WHERE id = ?", (row["id"],))
        return deleted

    def delete_records(self, record_ids: Sequence[str]) -> int:
        """Delete records with their vectors, incident edges and cluster memberships."""
        record_ids = list(dict.fromkeys(record_ids))
        if not record_ids:
            return 0

        with self._transaction() as cursor:
            deleted = self._delete_ids(cursor, record_ids)

        logger.log_operation("record.delete", "success", {"requested": len(record_ids), "deleted": deleted})
        return deleted

    def delete_record(self, record_id: str) -> bool:
        return self.delete_records([record_id]) > 0

    def delete_by_domain(self, domain: str) -> int:
        with self._transaction() as cursor:
            cursor.execute("SELECT id FROM records WHERE domain = ?", (domain,))
            ids = [row[0] for row in cursor.fetchall()]
            deleted = self._delete_ids(cursor, ids)

        logger.log_operation("record.delete_by_domain", "success", {"domain": domain, "deleted": deleted})
        return deleted

    def delete_by_date_range(self, start: int, end: int) -> int:
        with self._transaction() as cursor:
            cursor.execute("SELECT id FROM records WHERE timestamp >= ? AND timestamp <= ?", (start, end))
            ids = [row[0] for row in cursor.fetchall()]
            deleted = self._delete_ids(cursor, ids)

        logger.log_operation("record.delete_by_date_range", "success",
                             {"start": start, "end": end, "deleted": deleted})
        return deleted

    # -- vectors -------------------------------------------------------------

    def store_vector(self, vector: VectorRecord) -> None:
        components = np.asarray(vector.components, dtype=_VECTOR_DTYPE).reshape(-1)
        with self._transaction() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO vectors (record_id, components, dimension, model_tag, generated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (vector.record_id, components.tobytes(), int(components.size), vector.model_tag, vector.generated_at)
            )

    @staticmethod
    def _vector_from_row(row) -> VectorRecord:
        return VectorRecord(
            record_id=row["record_id"],
            components=np.frombuffer(row["components"], dtype=_VECTOR_DTYPE).copy(),
            model_tag=row["model_tag"],
            generated_at=row["generated_at"]
        )

    def get_vector(self, record_id: str) -> Optional[VectorRecord]:
        with self._reader() as cursor:
            cursor.execute(
                "SELECT record_id, components, model_tag, generated_at FROM vectors WHERE record_id = ?",
                (record_id,)
            )
            row = cursor.fetchone()
        return self._vector_from_row(row) if row else None

    def get_all_vectors(self) -> List[VectorRecord]:
        """Every stored vector in insertion order."""
        with self._reader() as cursor:
            cursor.execute("SELECT record_id, components, model_tag, generated_at FROM vectors ORDER BY rowid")
            return [self._vector_from_row(row) for row in cursor.fetchall()]

    def delete_vector(self, record_id: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM vectors WHERE record_id = ?", (record_id,))
            return cursor.rowcount > 0

    # -- edges ---------------------------------------------------------------

    def add_edge_pair(self, id_a: str, id_b: str, strength: float) -> Tuple[Edge, Edge]:
        """Persist a symmetric edge pair with equal strength; an existing pair is overwritten."""
        created = now_ms()
        forward = Edge(Edge.make_id(id_a, id_b), id_a, id_b, strength, created)
        backward = Edge(Edge.make_id(id_b, id_a), id_b, id_a, strength, created)
        with self._transaction() as cursor:
            cursor.executemany(
                "INSERT OR REPLACE INTO edges (id, from_id, to_id, strength, created_at) VALUES (?, ?, ?, ?, ?)",
                [(e.id, e.from_id, e.to_id, e.strength, e.created_at) for e in (forward, backward)]
            )
        return forward, backward

    @staticmethod
    def _edge_from_row(row) -> Edge:
        return Edge(row["id"], row["from_id"], row["to_id"], row["strength"], row["created_at"])

    def get_edges_from(self, record_id: str, limit: Optional[int] = None) -> List[Edge]:
        """Outgoing edges, strongest first; equal strengths keep insertion order."""
        sql = "SELECT id, from_id, to_id, strength, created_at FROM edges WHERE from_id = ? ORDER BY strength DESC, rowid ASC"
        params: Tuple = (record_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (int(limit),)
        with self._reader() as cursor:
            cursor.execute(sql, params)
            return [self._edge_from_row(row) for row in cursor.fetchall()]

    def get_related(self, record_id: str, limit: int = 5) -> List[Tuple[Record, float]]:
        """Records linked to *record_id* with the edge strength, strongest first."""
        edges = self.get_edges_from(record_id, limit)
        records = {r.id: r for r in self.get_records([e.to_id for e in edges])}
        return [(records[e.to_id], e.strength) for e in edges if e.to_id in records]

    def get_all_edges(self) -> List[Edge]:
        with self._reader() as cursor:
            cursor.execute("SELECT id, from_id, to_id, strength, created_at FROM edges ORDER BY rowid")
            return [self._edge_from_row(row) for row in cursor.fetchall()]

    def delete_edges_for(self, record_id: str) -> int:
        """Remove every edge incident to *record_id*, in both directions."""
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM edges WHERE from_id = ? OR to_id = ?", (record_id, record_id))
            return cursor.rowcount

    def clear_edges(self) -> int:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM edges")
            return cursor.rowcount

    def count_edges(self) -> int:
        with self._reader() as cursor:
            cursor.execute("SELECT COUNT(*) FROM edges")
            return cursor.fetchone()[0]

    # -- sessions ------------------------------------------------------------

    def touch_session(self, session_id: str, timestamp: int) -> Session:
        """Create the session or widen its [start, end] span to cover *timestamp*."""
        with self._transaction() as cursor:
            cursor.execute("SELECT id, start_time, end_time FROM sessions WHERE id = ?", (session_id,))
            row = cursor.fetchone()
            if row is None:
                session = Session(session_id, timestamp, timestamp)
            else:
                end = row["end_time"] if row["end_time"] is not None else row["start_time"]
                session = Session(session_id, min(row["start_time"], timestamp), max(end, timestamp))
            cursor.execute(
                "INSERT OR REPLACE INTO sessions (id, start_time, end_time) VALUES (?, ?, ?)",
                (session.id, session.start_time, session.end_time)
            )
        return session

    def save_session(self, session: Session) -> None:
        with self._transaction() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO sessions (id, start_time, end_time) VALUES (?, ?, ?)",
                (session.id, session.start_time, session.end_time)
            )

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._reader() as cursor:
            cursor.execute("SELECT id, start_time, end_time FROM sessions WHERE id = ?", (session_id,))
            row = cursor.fetchone()
        return Session(row["id"], row["start_time"], row["end_time"]) if row else None

    def list_sessions(self) -> List[Session]:
        with self._reader() as cursor:
            cursor.execute("SELECT id, start_time, end_time FROM sessions ORDER BY start_time DESC")
            return [Session(row["id"], row["start_time"], row["end_time"]) for row in cursor.fetchall()]

    # -- clusters ------------------------------------------------------------

    @staticmethod
    def _cluster_params(cluster: Cluster) -> Tuple:
        return (cluster.id, cluster.name, json.dumps(sorted(cluster.member_ids)), cluster.created_at)

    def save_cluster(self, cluster: Cluster) -> None:
        with self._transaction() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO clusters (id, name, member_ids, created_at) VALUES (?, ?, ?, ?)",
                self._cluster_params(cluster)
            )

    def get_all_clusters(self) -> List[Cluster]:
        with self._reader() as cursor:
            cursor.execute("SELECT id, name, member_ids, created_at FROM clusters ORDER BY rowid")
            return [
                Cluster(row["id"], row["name"], set(json.loads(row["member_ids"])), row["created_at"])
                for row in cursor.fetchall()
            ]

    def replace_clusters(self, clusters: Sequence[Cluster]) -> None:
        """Swap the cached cluster collection for *clusters* atomically."""
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM clusters")
            cursor.executemany(
                "INSERT INTO clusters (id, name, member_ids, created_at) VALUES (?, ?, ?, ?)",
                [self._cluster_params(c) for c in clusters]
            )

    # -- privacy rules -------------------------------------------------------

    @staticmethod
    def _rule_from_row(row) -> PrivacyRule:
        return PrivacyRule(
            id=row["id"],
            kind=RuleKind(row["kind"]),
            value=row["value"],
            status=RuleStatus(row["status"]),
            created_at=row["created_at"]
        )

    def add_rule(self, rule: PrivacyRule) -> str:
        with self._transaction() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO privacy_rules (id, kind, value, status, created_at) VALUES (?, ?, ?, ?, ?)",
                (rule.id, rule.kind.value, rule.value, rule.status.value, rule.created_at)
            )
        return rule.id

    def get_rule(self, rule_id: str) -> Optional[PrivacyRule]:
        with self._reader() as cursor:
            cursor.execute("SELECT id, kind, value, status, created_at FROM privacy_rules WHERE id = ?", (rule_id,))
            row = cursor.fetchone()
        return self._rule_from_row(row) if row else None

    def list_rules(self, active_only: bool = False) -> List[PrivacyRule]:
        sql = "SELECT id, kind, value, status, created_at FROM privacy_rules"
        params: Tuple = ()
        if active_only:
            sql += " WHERE status = ?"
            params = (RuleStatus.ACTIVE.value,)
        sql += " ORDER BY created_at ASC, rowid ASC"
        with self._reader() as cursor:
            cursor.execute(sql, params)
            return [self._rule_from_row(row) for row in cursor.fetchall()]

    def set_rule_status(self, rule_id: str, status: RuleStatus) -> Optional[PrivacyRule]:
        with self._transaction() as cursor:
            cursor.execute("UPDATE privacy_rules SET status = ? WHERE id = ?", (status.value, rule_id))
            if cursor.rowcount == 0:
                return None
        return self.get_rule(rule_id)

    def delete_rule(self, rule_id: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM privacy_rules WHERE id = ?", (rule_id,))
            return cursor.rowcount > 0

    # -- statistics ----------------------------------------------------------

    def stats(self) -> StoreStats:
        """Collection counts and an estimate of stored bytes."""
        with self._reader() as cursor:
            counts = {}
            for table in ("records", "vectors", "edges", "clusters", "sessions", "privacy_rules"):
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                counts[table] = cursor.fetchone()[0]

            cursor.execute(
                "SELECT COALESCE(SUM(LENGTH(url) + LENGTH(title) + LENGTH(body_text) + LENGTH(keywords) "
                "+ LENGTH(domain)), 0) FROM records"
            )
            record_bytes = cursor.fetchone()[0]
            cursor.execute("SELECT COALESCE(SUM(LENGTH(components)), 0) FROM vectors")
            vector_bytes = cursor.fetchone()[0]

        return StoreStats(
            record_count=counts["records"],
            vector_count=counts["vectors"],
            edge_count=counts["edges"],
            cluster_count=counts["clusters"],
            session_count=counts["sessions"],
            rule_count=counts["privacy_rules"],
            estimated_bytes=int(record_bytes + vector_bytes)
        )
