"""
recall: a local, explainable semantic memory over visited-page records.

Records are stored canonically in SQLite, described by deterministic feature
vectors, indexed for nearest-neighbour search and linked into a similarity
graph for neighbour lookup and path explanation.
"""

from .core.config import VERSION

__version__ = VERSION
