"""
Vector layer types - advisory similarity overlay over the canonical SQLite record store.
"""

from dataclasses import dataclass, field
from typing import Optional
import time

import numpy as np


@dataclass
class VectorRecord:
    """A feature vector belonging to one stored record."""

    record_id: str
    """Identifier of the record this vector describes"""

    components: np.ndarray
    """Unit-length feature vector"""

    model_tag: str = "feature-hash-v1"
    """Generator that produced the vector"""

    generated_at: int = field(default_factory=lambda: int(time.time() * 1000))
    """Generation time in epoch milliseconds"""

    @property
    def dimension(self) -> int:
        return int(len(self.components))


@dataclass
class QueryResult:
    """A single nearest-neighbour hit."""

    id: str
    """Identifier of the matching record"""

    similarity: float
    """Cosine similarity to the query (-1..1)"""

    bucket: Optional[int] = None
    """LSH bucket the hit came from, when produced by an approximate index"""
