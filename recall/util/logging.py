"""
Structured operation logging for the recall engine.
Record, vector, graph, search and privacy operations are logged through one named logger.
"""

import logging
from typing import Any, Dict, Iterable, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Record fields whose values never reach the log verbatim
SENSITIVE_FIELDS = frozenset({'body_text', 'bodyText', 'readable_text', 'content', 'payload'})

MAX_LOGGED_CHARS = 100

_LEVEL_BY_STATUS = {
    "failed": logging.ERROR,
    "error": logging.ERROR,
    "degraded": logging.WARNING,
    "timeout": logging.WARNING,
}


class StructuredLogger:
    """Structured logger for record store, index and graph operations."""

    def __init__(self, name: str = "semantic_recall", debug: bool = False):
        self.logger = logging.getLogger(name)
        self.set_debug(debug)

        # One stream handler per named logger, however often it is wrapped
        if not self.logger.handlers:
            stream = logging.StreamHandler()
            stream.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(stream)

    def set_debug(self, enabled: bool) -> None:
        self.logger.setLevel(logging.DEBUG if enabled else logging.INFO)

    def log_operation(self, operation: str, status: str, details: Optional[Dict[str, Any]] = None):
        """Emit ``Operation: X, Status: Y[, Details: {...}]`` at a level chosen by status."""
        parts = [f"Operation: {operation}", f"Status: {status}"]
        if details:
            parts.append(f"Details: {details}")
        self.logger.log(_LEVEL_BY_STATUS.get(status, logging.INFO), ", ".join(parts))

    def log_record_operation(self, operation: str, record_id: str, details: Optional[Dict[str, Any]] = None,
                             status: str = "success"):
        """Record store operation; detail values are sanitised first."""
        self.log_operation(f"record.{operation}", status,
                           {"record_id": record_id, **sanitize_payload(details or {})})

    def log_vector_operation(self, operation: str, record_id: str, details: Optional[Dict[str, Any]] = None,
                             status: str = "success"):
        self.log_operation(f"vector.{operation}", status, {"record_id": record_id, **(details or {})})

    def log_graph_operation(self, operation: str, details: Optional[Dict[str, Any]] = None, status: str = "success"):
        self.log_operation(f"graph.{operation}", status, details or {})

    def log_search(self, query: str, vector_hits: int, keyword_hits: int, total: int, threshold: float):
        """Log a recall query with its hit breakdown."""
        shown = query if len(query) <= 50 else query[:50] + "..."
        self.log_operation("recall.search", "success", {
            "query": shown,
            "vector_hits": vector_hits,
            "keyword_hits": keyword_hits,
            "total": total,
            "threshold": threshold
        })

    def log_privacy_operation(self, operation: str, details: Optional[Dict[str, Any]] = None, status: str = "success"):
        """Log a privacy rule change or a rule-scoped deletion."""
        self.log_operation(f"privacy.{operation}", status, details or {})

    def log_embedding_failure(self, record_id: str, reason: str, status: str = "degraded"):
        """An embedding was not produced; the record stays keyword-searchable."""
        self.log_operation("embedding.generate", status,
                           {"record_id": record_id, "reason": (reason or "")[:MAX_LOGGED_CHARS]})

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)


logger = StructuredLogger()


def sanitize_payload(payload: Any, reveal_sensitive: bool = False,
                     sensitive_fields: Optional[Iterable[str]] = None) -> Any:
    """Redact sensitive keys and truncate long strings, recursing into dicts and lists."""
    hidden = SENSITIVE_FIELDS if sensitive_fields is None else frozenset(sensitive_fields)

    def clean(value):
        if isinstance(value, dict):
            return {
                key: "[REDACTED]" if key in hidden and not reveal_sensitive else clean(item)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [clean(item) for item in value]
        if isinstance(value, str) and len(value) > MAX_LOGGED_CHARS:
            return value[:MAX_LOGGED_CHARS] + "..."
        return value

    return clean(payload)
