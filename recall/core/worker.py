"""
Embedding worker: feature generation off the capture path, bounded by a timeout.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
import threading
from typing import Dict

import numpy as np

from .errors import EmbeddingFailed, EmbeddingTimeout
from .schema import Record
from recall.vector.embeddings import FeatureHashEmbedding


class EmbeddingWorker:
    """Runs feature generation in a thread pool; each job is joined once through ``resolve``."""

    def __init__(self, generator: FeatureHashEmbedding, timeout: float = 30, max_workers: int = 1):
        self.generator = generator
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="embedding")
        self._pending: Dict[Future, str] = {}
        self._lock = threading.Lock()

    def submit(self, record: Record) -> Future:
        future = self._executor.submit(self.generator.generate, record.title, record.body_text, record.keywords)
        with self._lock:
            self._pending[future] = record.id
        return future

    def resolve(self, future: Future) -> np.ndarray:
        """
        Wait for a submitted job.

        Raises:
            EmbeddingTimeout: the job did not finish within ``timeout``; it is cancelled
            EmbeddingFailed: the generator raised
        """
        with self._lock:
            record_id = self._pending.pop(future, "")

        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            raise EmbeddingTimeout(record_id, self.timeout)
        except Exception as e:
            raise EmbeddingFailed(record_id, str(e)) from e

    def embed(self, record: Record) -> np.ndarray:
        return self.resolve(self.submit(record))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
