"""
Vector layer - feature generation and nearest-neighbour indexes over record vectors.
"""

from .index import IVectorIndex, ExactVectorIndex, normalize, cosine_similarity
from .lsh_index import LSHVectorIndex
from .types import VectorRecord, QueryResult
from .embeddings import IEmbeddingProvider, FeatureHashEmbedding

__all__ = [
    'IVectorIndex',
    'ExactVectorIndex',
    'LSHVectorIndex',
    'normalize',
    'cosine_similarity',
    'VectorRecord',
    'QueryResult',
    'IEmbeddingProvider',
    'FeatureHashEmbedding'
]
