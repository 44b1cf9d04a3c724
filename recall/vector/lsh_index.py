"""
Approximate nearest-neighbour index using random-hyperplane locality-sensitive hashing.

Each vector gets a num_planes-bit signature (bit i set when its dot product with
hyperplane i is positive). Queries scan the exact bucket plus every bucket at
Hamming distance 1 and only score those candidates, so results are approximate.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from .index import IVectorIndex, normalize, rank_candidates
from .types import QueryResult


class LSHVectorIndex(IVectorIndex):
    """Random-hyperplane LSH index with a bounded brute-force fallback."""

    def __init__(self, num_planes: int = 16, seed: Optional[int] = None,
                 fallback_scan_limit: int = 100, dimension: Optional[int] = None):
        """
        Args:
            num_planes: Number of random hyperplanes, i.e. signature bits
            seed: Optional seed for the hyperplanes; unseeded indexes differ between runs
            fallback_scan_limit: Candidate cap when the scanned buckets hold fewer than k ids
            dimension: Optional fixed dimension; otherwise set by the first add
        """
        if num_planes < 1:
            raise ValueError("num_planes must be >= 1")

        super().__init__(dimension)
        self.num_planes = num_planes
        self.seed = seed
        self.fallback_scan_limit = fallback_scan_limit

        self._rng = np.random.default_rng(seed)
        self._planes: Optional[np.ndarray] = None

        self._vectors: Dict[str, np.ndarray] = {}
        self._signatures: Dict[str, int] = {}
        self._buckets: Dict[int, List[str]] = {}

    @property
    def planes(self) -> Optional[np.ndarray]:
        """Hyperplane matrix of shape (num_planes, dimension), once materialised."""
        return self._planes

    def _ensure_planes(self) -> None:
        # Fixed for the lifetime of the index once the dimension is known
        if self._planes is None:
            self._planes = self._rng.uniform(-1.0, 1.0, size=(self.num_planes, self._dimension))

    def signature(self, vector: np.ndarray) -> int:
        """Integer bucket key: bit i is 1 when the vector lies on the positive side of plane i."""
        self._ensure_planes()
        projections = self._planes @ vector
        key = 0
        for bit, value in enumerate(projections):
            if value > 0:
                key |= (1 << bit)
        return key

    def candidate_keys(self, key: int) -> List[int]:
        """The bucket itself followed by every bucket at Hamming distance 1."""
        return [key] + [key ^ (1 << bit) for bit in range(self.num_planes)]

    def add(self, record_id: str, vector: Sequence[float]) -> None:
        normalized = normalize(vector)
        self._check_dimension(normalized)

        if record_id in self._vectors:
            self.remove(record_id)

        key = self.signature(normalized)
        self._vectors[record_id] = normalized
        self._signatures[record_id] = key
        self._buckets.setdefault(key, []).append(record_id)

    def search(self, query_vector: Sequence[float], k: int = 10, threshold: float = 0.4) -> List[QueryResult]:
        query = self._prepare_query(query_vector)
        if query is None or not self._vectors or k <= 0:
            return []

        query_key = self.signature(query)
        candidates: Dict[str, None] = {}
        for key in self.candidate_keys(query_key):
            for record_id in self._buckets.get(key, ()):
                candidates[record_id] = None

        # Too few candidates: widen with a bounded scan over stored vectors
        if len(candidates) < k:
            for record_id in self._vectors:
                if len(candidates) >= max(self.fallback_scan_limit, k):
                    break
                candidates.setdefault(record_id, None)

        results = rank_candidates(((rid, self._vectors[rid]) for rid in candidates), query, k, threshold)
        for result in results:
            result.bucket = self._signatures[result.id]
        return results

    def remove(self, record_id: str) -> None:
        key = self._signatures.pop(record_id, None)
        if key is not None:
            bucket = self._buckets.get(key, [])
            if record_id in bucket:
                bucket.remove(record_id)
            if not bucket:
                self._buckets.pop(key, None)
        self._vectors.pop(record_id, None)

    def clear(self) -> None:
        self._vectors.clear()
        self._signatures.clear()
        self._buckets.clear()
        self._planes = None
        self._dimension = None

    def get(self, record_id: str) -> Optional[np.ndarray]:
        return self._vectors.get(record_id)

    def ids(self) -> List[str]:
        return list(self._vectors.keys())

    def bucket_count(self) -> int:
        """Number of non-empty buckets."""
        return len(self._buckets)

    def __len__(self) -> int:
        return len(self._vectors)
