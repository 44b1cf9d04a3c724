"""
Semantic graph over stored records.

Edges link records whose vectors are similar; they live in the record store as
symmetric (from, to) id pairs and are traversed on demand.
"""

from collections import Counter, deque
import hashlib
from typing import Dict, List, Optional, Sequence, Set

from .dao import RecordStore
from .schema import Cluster, Record
from recall.util.logging import logger
from recall.vector.index import IVectorIndex


class SemanticGraphBuilder:
    """Maintains similarity edges as vectors arrive and answers neighbour, path and cluster queries."""

    def __init__(self, store: RecordStore, index: IVectorIndex,
                 min_similarity: float = 0.6, max_edges_per_node: int = 10):
        self.store = store
        self.index = index
        self.min_similarity = min_similarity
        self.max_edges_per_node = max_edges_per_node

    def add_node(self, record_id: str, vector: Sequence[float]) -> int:
        """
        Link *record_id* to its most similar indexed records.

        Keeps at most ``max_edges_per_node`` hits with similarity at or above
        ``min_similarity`` and persists a symmetric edge pair for each.

        Returns:
            Number of edge pairs created
        """
        # One extra hit covers the record finding itself in the index
        hits = self.index.search(vector, k=self.max_edges_per_node + 1, threshold=self.min_similarity)

        created = 0
        for hit in hits:
            if hit.id == record_id:
                continue
            if created >= self.max_edges_per_node:
                break
            self.store.add_edge_pair(record_id, hit.id, min(1.0, hit.similarity))
            created += 1

        logger.log_graph_operation("add_node", {"record_id": record_id, "edges_created": created})
        return created

    def neighbors(self, record_id: str, k: int = 5) -> List[Record]:
        """The k records with the strongest edges to *record_id*, strongest first."""
        if k <= 0:
            return []
        return [record for record, _ in self.store.get_related(record_id, k)]

    def _adjacency(self) -> Dict[str, List[str]]:
        adjacency: Dict[str, List[str]] = {}
        for edge in self.store.get_all_edges():
            adjacency.setdefault(edge.from_id, []).append(edge.to_id)
        return adjacency

    def find_path(self, from_id: str, to_id: str, max_depth: int = 3) -> List[str]:
        """
        Breadth-first search for the shortest chain of edges from *from_id* to *to_id*.

        Args:
            from_id: Start record
            to_id: Target record
            max_depth: Maximum number of hops

        Returns:
            Record ids from start to target, or an empty list when no path
            exists within *max_depth* hops
        """
        if from_id == to_id:
            return [from_id] if self.store.get_record(from_id) is not None else []
        if max_depth < 1:
            return []

        adjacency = self._adjacency()
        parents: Dict[str, Optional[str]] = {from_id: None}
        frontier = deque([(from_id, 0)])

        while frontier:
            node, depth = frontier.popleft()
            if depth >= max_depth:
                continue
            for nxt in adjacency.get(node, ()):
                if nxt in parents:
                    continue
                parents[nxt] = node
                if nxt == to_id:
                    path = [nxt]
                    while parents[path[-1]] is not None:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                frontier.append((nxt, depth + 1))

        return []

    def detect_clusters(self) -> List[Set[str]]:
        """Connected components over every stored record; records without edges form their own component."""
        adjacency = self._adjacency()
        nodes = list(dict.fromkeys(
            [record.id for record in reversed(self.store.get_all())] + list(adjacency.keys())
        ))

        visited: Set[str] = set()
        components = []
        for start in nodes:
            if start in visited:
                continue
            component = {start}
            visited.add(start)
            queue = deque([start])
            while queue:
                node = queue.popleft()
                for nxt in adjacency.get(node, ()):
                    if nxt not in visited:
                        visited.add(nxt)
                        component.add(nxt)
                        queue.append(nxt)
            components.append(component)
        return components

    def cluster_count(self) -> int:
        return len(self.detect_clusters())

    def _cluster_name(self, members: Set[str]) -> str:
        counts = Counter()
        for record in self.store.get_records(sorted(members)):
            counts.update(record.keywords)
        if not counts:
            return "untitled"
        return counts.most_common(1)[0][0]

    def rebuild_clusters(self) -> List[Cluster]:
        """Recompute and persist the cached cluster collection (components with two or more records)."""
        clusters = []
        for members in self.detect_clusters():
            if len(members) < 2:
                continue
            cluster_id = "cl_" + hashlib.sha1("|".join(sorted(members)).encode("utf-8")).hexdigest()[:12]
            clusters.append(Cluster(id=cluster_id, name=self._cluster_name(members), member_ids=members))

        self.store.replace_clusters(clusters)
        logger.log_graph_operation("rebuild_clusters", {"clusters": len(clusters)})
        return clusters

    def graph_stats(self) -> Dict[str, float]:
        node_count = self.store.count_records()
        directed_edges = self.store.count_edges()
        return {
            "node_count": node_count,
            "edge_count": directed_edges // 2,
            "avg_degree": round(directed_edges / node_count, 3) if node_count else 0.0,
            "clusters": self.cluster_count()
        }

    def rebuild(self) -> int:
        """Drop every edge and re-link each stored vector against the current index."""
        self.store.clear_edges()
        for vector in self.store.get_all_vectors():
            if vector.record_id in self.index:
                self.add_node(vector.record_id, vector.components)

        pairs = self.store.count_edges() // 2
        logger.log_graph_operation("rebuild", {"edge_pairs": pairs})
        return pairs
