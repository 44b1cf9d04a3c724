"""
Engine configuration.
Values come from the environment (optionally a .env file) and are read once at import.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Record store location (":memory:" keeps everything in-process)
DB_PATH = os.getenv("DB_PATH", "./data/recall.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Vector index strategy and feature generator
VECTOR_INDEX = os.getenv("VECTOR_INDEX", "exact")  # exact|lsh
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))
EMBED_BODY_PREFIX_CHARS = int(os.getenv("EMBED_BODY_PREFIX_CHARS", "1000"))
EMBEDDING_TIMEOUT_SEC = float(os.getenv("EMBEDDING_TIMEOUT_SEC", "30"))

# Random-hyperplane LSH
LSH_NUM_PLANES = int(os.getenv("LSH_NUM_PLANES", "16"))
LSH_SEED = int(os.environ["LSH_SEED"]) if os.getenv("LSH_SEED") else None
LSH_FALLBACK_SCAN_LIMIT = int(os.getenv("LSH_FALLBACK_SCAN_LIMIT", "100"))

# Semantic graph
GRAPH_MIN_SIMILARITY = float(os.getenv("GRAPH_MIN_SIMILARITY", "0.6"))
GRAPH_MAX_EDGES_PER_NODE = int(os.getenv("GRAPH_MAX_EDGES_PER_NODE", "10"))

# Recall
SEARCH_THRESHOLD = float(os.getenv("SEARCH_THRESHOLD", "0.15"))
SEARCH_KEYWORD_FLOOR = int(os.getenv("SEARCH_KEYWORD_FLOOR", "3"))
SEARCH_FALLBACK_SIMILARITY = float(os.getenv("SEARCH_FALLBACK_SIMILARITY", "0.2"))

VALID_INDEX_STRATEGIES = ["exact", "lsh"]

# Version string
VERSION = "1.0.0"


def get_vector_index(strategy: str = None):
    """Build the configured vector index implementation."""
    strategy = strategy or VECTOR_INDEX

    if strategy == "exact":
        from recall.vector.index import ExactVectorIndex
        return ExactVectorIndex()
    elif strategy == "lsh":
        from recall.vector.lsh_index import LSHVectorIndex
        return LSHVectorIndex(
            num_planes=LSH_NUM_PLANES,
            seed=LSH_SEED,
            fallback_scan_limit=LSH_FALLBACK_SCAN_LIMIT
        )
    else:
        raise ValueError(f"Unknown vector index strategy: {strategy}")


def get_feature_generator():
    """Build the configured feature generator."""
    from recall.vector.embeddings import FeatureHashEmbedding
    return FeatureHashEmbedding(dimension=EMBED_DIM, body_prefix_chars=EMBED_BODY_PREFIX_CHARS)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    db_path = db_path or DB_PATH
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate engine configuration and return any issues."""
    issues = []

    if VECTOR_INDEX not in VALID_INDEX_STRATEGIES:
        issues.append(f"Invalid VECTOR_INDEX: {VECTOR_INDEX}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if not 1 <= LSH_NUM_PLANES <= 62:
        issues.append("LSH_NUM_PLANES must be between 1 and 62")

    if not 0.0 <= GRAPH_MIN_SIMILARITY <= 1.0:
        issues.append("GRAPH_MIN_SIMILARITY must be within [0, 1]")

    if GRAPH_MAX_EDGES_PER_NODE < 1:
        issues.append("GRAPH_MAX_EDGES_PER_NODE must be >= 1")

    if EMBEDDING_TIMEOUT_SEC <= 0:
        issues.append("EMBEDDING_TIMEOUT_SEC must be > 0")

    return issues
