#!/usr/bin/env python3
"""
Index Rebuild Utility
Regenerates vectors, the similarity graph and cached clusters from the canonical record store.
"""

import argparse
import sys
from typing import List, Optional

from recall.core.config import DB_PATH, VALID_INDEX_STRATEGIES, validate_config
from recall.core.engine import RecallEngine
from recall.core.errors import StoreUnavailable


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebuild the vector index and semantic graph from stored records")
    parser.add_argument("--db-path", default=DB_PATH, help="SQLite record store (default: %(default)s)")
    parser.add_argument("--strategy", choices=VALID_INDEX_STRATEGIES, default=None,
                        help="Vector index strategy (default: VECTOR_INDEX)")
    parser.add_argument("--verify-query", default="test",
                        help="Query run after the rebuild as a smoke test")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Rebuild vectors, edges and clusters for every stored record."""
    args = parse_args(argv)

    for issue in validate_config():
        print(f"WARNING: {issue}")

    print("Starting vector index rebuild...")

    try:
        engine = RecallEngine.from_config(db_path=args.db_path, strategy=args.strategy)
    except StoreUnavailable as e:
        print(f"ERROR: Record store unavailable: {e}")
        return 1

    try:
        record_count = engine.store.count_records()
        print(f"Found {record_count} records in canonical store")

        if record_count == 0:
            print("No entries to rebuild. Exiting.")
            return 0

        summary = engine.rebuild_index()
        print(f"✓ Rebuilt index with {summary['vectors']} vectors")
        if summary["failed"]:
            print(f"WARNING: {summary['failed']} records could not be embedded")
        print(f"✓ Linked {summary['edge_pairs']} edge pairs in {summary['clusters']} clusters")

        result = engine.search(args.verify_query, limit=3)
        print(f"✓ Verification search returned {result.total_results} results")
    finally:
        engine.close()

    print("Index rebuild complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
