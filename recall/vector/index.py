"""
Vector index layer - advisory similarity overlay over the canonical SQLite record store.
Vectors are stored unit-length so cosine similarity reduces to a dot product.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from recall.core.errors import DimensionMismatch
from .types import QueryResult


def normalize(vector: Sequence[float]) -> np.ndarray:
    """
    Return an L2-normalised float64 copy of *vector*.

    The zero vector maps to the first basis vector so callers never divide
    by zero. Non-finite components are rejected.
    """
    arr = np.array(vector, dtype=np.float64).reshape(-1)
    if arr.size == 0:
        raise ValueError("Cannot normalize an empty vector")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Vector contains NaN or Inf components")

    norm = np.linalg.norm(arr)
    if norm == 0:
        basis = np.zeros(arr.size, dtype=np.float64)
        basis[0] = 1.0
        return basis
    return arr / norm


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity of two vectors of equal length."""
    a = np.asarray(vec_a, dtype=np.float64).reshape(-1)
    b = np.asarray(vec_b, dtype=np.float64).reshape(-1)
    if a.size != b.size:
        raise DimensionMismatch(a.size, b.size)
    return float(np.dot(normalize(a), normalize(b)))


def rank_candidates(candidates: Iterable[Tuple[str, np.ndarray]], query: np.ndarray,
                    k: int, threshold: float) -> List[QueryResult]:
    """
    Score (id, unit vector) candidates against a unit query vector.

    Keeps hits at or above *threshold*, similarity descending, at most *k*.
    Equal scores keep candidate order.
    """
    candidates = list(candidates)
    if not candidates or k <= 0:
        return []

    matrix = np.vstack([vector for _, vector in candidates])
    scores = matrix @ query
    order = np.argsort(-scores, kind="stable")

    results = []
    for position in order:
        score = float(scores[position])
        if score < threshold:
            break
        results.append(QueryResult(id=candidates[position][0], similarity=score))
        if len(results) >= k:
            break
    return results


class IVectorIndex(ABC):
    """Abstract interface for nearest-neighbour search over record vectors."""

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension

    @property
    def dimension(self) -> Optional[int]:
        """Dimension fixed by the first stored vector, or None while empty."""
        return self._dimension

    def _check_dimension(self, vector: np.ndarray) -> None:
        if self._dimension is None:
            self._dimension = int(vector.size)
        elif vector.size != self._dimension:
            raise DimensionMismatch(self._dimension, int(vector.size))

    @abstractmethod
    def add(self, record_id: str, vector: Sequence[float]) -> None:
        """Store a normalised copy of *vector*; re-adding an id overwrites it."""
        pass

    def batch_add(self, items: Iterable[Tuple[str, Sequence[float]]]) -> None:
        """Add multiple (id, vector) pairs."""
        for record_id, vector in items:
            self.add(record_id, vector)

    @abstractmethod
    def search(self, query_vector: Sequence[float], k: int = 10, threshold: float = 0.5) -> List[QueryResult]:
        """Return up to *k* hits with similarity >= *threshold*, best first."""
        pass

    @abstractmethod
    def remove(self, record_id: str) -> None:
        """Remove a vector by record id; unknown ids are ignored."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every vector and forget the established dimension."""
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[np.ndarray]:
        """Stored unit vector for *record_id*, if any."""
        pass

    @abstractmethod
    def ids(self) -> List[str]:
        """Stored record ids in insertion order."""
        pass

    def __len__(self) -> int:
        return len(self.ids())

    def __contains__(self, record_id: str) -> bool:
        return self.get(record_id) is not None

    def _prepare_query(self, query_vector: Sequence[float]) -> Optional[np.ndarray]:
        """Normalise a query, or None when the index has nothing to compare against."""
        query = np.asarray(query_vector, dtype=np.float64).reshape(-1)
        if self._dimension is None:
            return None
        if query.size != self._dimension:
            raise DimensionMismatch(self._dimension, int(query.size))
        return normalize(query)


class ExactVectorIndex(IVectorIndex):
    """Brute-force index: scores every stored vector on each query."""

    def __init__(self, dimension: Optional[int] = None):
        super().__init__(dimension)
        self._vectors: Dict[str, np.ndarray] = {}

    def add(self, record_id: str, vector: Sequence[float]) -> None:
        normalized = normalize(vector)
        self._check_dimension(normalized)
        # Overwrite keeps a single entry per id
        self._vectors.pop(record_id, None)
        self._vectors[record_id] = normalized

    def search(self, query_vector: Sequence[float], k: int = 10, threshold: float = 0.5) -> List[QueryResult]:
        query = self._prepare_query(query_vector)
        if query is None or not self._vectors:
            return []
        return rank_candidates(self._vectors.items(), query, k, threshold)

    def remove(self, record_id: str) -> None:
        self._vectors.pop(record_id, None)

    def clear(self) -> None:
        self._vectors.clear()
        self._dimension = None

    def get(self, record_id: str) -> Optional[np.ndarray]:
        return self._vectors.get(record_id)

    def ids(self) -> List[str]:
        return list(self._vectors.keys())

    def __len__(self) -> int:
        return len(self._vectors)
