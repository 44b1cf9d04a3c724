"""
Canonical data model for the record store.
All timestamps are integer epoch milliseconds.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
import json
import time
from typing import Any, Dict, List, Optional, Set


def now_ms() -> int:
    return int(time.time() * 1000)


class RuleKind(str, Enum):
    DOMAIN = "domain"
    DATE = "date"
    KEYWORD = "keyword"


class RuleStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class Record:
    id: str
    url: str
    title: str
    body_text: str
    timestamp: int
    keywords: List[str] = field(default_factory=list)
    domain: str = ""
    session_id: Optional[str] = None
    tab_ref: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row) -> 'Record':
        """Build a record from a ``records`` table row (sqlite3.Row)."""
        return cls(
            id=row["id"],
            url=row["url"],
            title=row["title"],
            body_text=row["body_text"],
            timestamp=row["timestamp"],
            keywords=json.loads(row["keywords"]) if row["keywords"] else [],
            domain=row["domain"],
            session_id=row["session_id"],
            tab_ref=row["tab_ref"]
        )


@dataclass
class Edge:
    id: str
    from_id: str
    to_id: str
    strength: float
    created_at: int = field(default_factory=now_ms)

    @staticmethod
    def make_id(from_id: str, to_id: str) -> str:
        return f"{from_id}:{to_id}"


@dataclass
class Cluster:
    """Cached grouping of connected records; rebuildable from edges at any time."""
    id: str
    name: str
    member_ids: Set[str] = field(default_factory=set)
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["member_ids"] = sorted(self.member_ids)
        return data


@dataclass
class Session:
    id: str
    start_time: int
    end_time: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PrivacyRule:
    id: str
    kind: RuleKind
    value: str
    status: RuleStatus = RuleStatus.ACTIVE
    created_at: int = field(default_factory=now_ms)

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "value": self.value,
            "status": self.status.value,
            "created_at": self.created_at
        }


@dataclass
class StoreStats:
    record_count: int
    vector_count: int
    edge_count: int
    cluster_count: int
    session_count: int
    rule_count: int
    estimated_bytes: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
