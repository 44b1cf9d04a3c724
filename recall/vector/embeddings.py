"""
Deterministic feature generation.
Turns (title, body text, keywords) into a fixed-dimension unit vector without any model.
"""

from abc import ABC, abstractmethod
from collections import Counter
import hashlib
import math
from typing import List, Sequence

import numpy as np

from recall.core.text import tokenize
from .index import normalize

MODEL_TAG = "feature-hash-v1"

TITLE_WEIGHT = 3.0
KEYWORD_WEIGHT = 2.0
BODY_WEIGHT = 1.0
TRIGRAM_WEIGHT = 0.25

# Seeds for the trigram hash family start here so they never collide with token seeds
_TRIGRAM_SEED_BASE = 1000


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class FeatureHashEmbedding(IEmbeddingProvider):
    """Feature-hashing embedding provider.

    Tokens from a weighted concatenation of title (3x), keywords (2x) and a
    bounded body prefix (1x) are hashed with several independent seeds into
    vector positions. Each position receives a sign-randomised contribution of
    1 + log(weighted term frequency). Character trigrams of the title add a
    small extra signal so near-duplicate titles land close together.

    Identical inputs always give bit-identical output.
    """

    model_tag = MODEL_TAG

    def __init__(self, dimension: int = 384, num_hashes: int = 3, body_prefix_chars: int = 1000):
        if dimension < 1:
            raise ValueError("dimension must be >= 1")
        if num_hashes < 1:
            raise ValueError("num_hashes must be >= 1")
        self.dimension = dimension
        self.num_hashes = num_hashes
        self.body_prefix_chars = body_prefix_chars

    def _hash(self, token: str, seed: int) -> int:
        """64-bit unsigned hash of *token* under *seed*."""
        digest = hashlib.blake2b(
            token.encode("utf-8"),
            digest_size=8,
            salt=seed.to_bytes(16, "little")
        ).digest()
        return int.from_bytes(digest, "little")

    def _accumulate(self, vector: np.ndarray, token: str, weight: float, seed_base: int = 0) -> None:
        for seed in range(seed_base, seed_base + self.num_hashes):
            h = self._hash(token, seed)
            position = h % self.dimension
            sign = 1.0 if (h >> 63) & 1 else -1.0
            vector[position] += sign * weight

    def weighted_terms(self, title: str, body_text: str, keywords: Sequence[str]) -> Counter:
        """Weighted term frequencies across title, keywords and body prefix."""
        terms = Counter()
        for token in tokenize(title):
            terms[token] += TITLE_WEIGHT
        for token in tokenize(" ".join(keywords or [])):
            terms[token] += KEYWORD_WEIGHT
        for token in tokenize((body_text or "")[:self.body_prefix_chars]):
            terms[token] += BODY_WEIGHT
        return terms

    def generate(self, title: str = "", body_text: str = "", keywords: Sequence[str] = ()) -> np.ndarray:
        """
        Generate the unit feature vector for one record.

        Args:
            title: Page title
            body_text: Readable page text; only a bounded prefix is used
            keywords: Ordered keyword list

        Returns:
            float64 array of length ``dimension`` with unit L2 norm. Empty
            input yields the first basis vector.
        """
        vector = np.zeros(self.dimension, dtype=np.float64)

        terms = self.weighted_terms(title or "", body_text or "", keywords)
        for token in sorted(terms):
            self._accumulate(vector, token, 1.0 + math.log(terms[token]))

        for trigram in self.title_trigrams(title or ""):
            self._accumulate(vector, trigram, TRIGRAM_WEIGHT, seed_base=_TRIGRAM_SEED_BASE)

        return normalize(vector)

    @staticmethod
    def title_trigrams(title: str) -> List[str]:
        """Character trigrams of each lowercased title word, padded with spaces."""
        trigrams = []
        for word in title.lower().split():
            padded = f" {word} "
            trigrams.extend(padded[i:i + 3] for i in range(len(padded) - 2))
        return trigrams

    def embed_text(self, text: str) -> list[float]:
        """Embed free text as body content."""
        return self.generate(body_text=text).tolist()

    def embed_query(self, query: str) -> np.ndarray:
        """Embed a recall query: the query acts as title, body and keyword list at once."""
        return self.generate(title=query, body_text=query, keywords=tokenize(query))

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension
