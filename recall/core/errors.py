"""
Error taxonomy for the recall engine.

Lookups of unknown ids are not errors: they return None or an empty list.
"""


class RecallError(Exception):
    """Base class for engine errors surfaced to the command layer."""
    pass


class DimensionMismatch(RecallError, ValueError):
    """Vector length disagrees with the dimension established by an index."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension {actual} does not match expected dimension {expected}")


class StoreUnavailable(RecallError):
    """The persistent record store could not be initialised or is no longer usable."""
    pass


class EmbeddingError(RecallError):
    """Feature vector generation did not produce a vector."""

    def __init__(self, record_id: str, message: str):
        self.record_id = record_id
        super().__init__(f"Embedding for {record_id} failed: {message}")


class EmbeddingTimeout(EmbeddingError):
    """Feature vector generation exceeded its time budget and was cancelled."""

    def __init__(self, record_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(record_id, f"timed out after {timeout}s")


class EmbeddingFailed(EmbeddingError):
    """Feature vector generation raised inside the worker."""
    pass
