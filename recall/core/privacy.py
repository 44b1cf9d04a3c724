"""
Privacy rules: capture exclusion and rule-scoped bulk deletion.
"""

from datetime import datetime, timedelta, timezone
import re
from typing import List, Optional, Sequence, Tuple
import uuid

from .dao import RecordStore
from .schema import PrivacyRule, Record, RuleKind, RuleStatus, now_ms
from .text import record_text
from recall.util.logging import logger
from recall.vector.index import IVectorIndex

_DAY_MS = 24 * 3600 * 1000
_LAST_DAYS = re.compile(r"^last\s+(\d+)\s+days?$", re.IGNORECASE)


def _day_start(day: str) -> int:
    parsed = datetime.strptime(day.strip(), "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def parse_date_range(value: str, now: Optional[int] = None) -> Tuple[int, int]:
    """
    Resolve a date rule value to an inclusive millisecond range.

    Accepted forms (days are UTC):
        ``2024-05-01``              that whole day
        ``2024-05-01..2024-05-07``  first day start to last day end
        ``last 7 days``             the trailing window ending now

    Raises:
        ValueError: for any other form or a reversed range
    """
    value = (value or "").strip()
    match = _LAST_DAYS.match(value)
    if match:
        end = now if now is not None else now_ms()
        return end - int(match.group(1)) * _DAY_MS, end

    if ".." in value:
        first, last = value.split("..", 1)
        start, end = _day_start(first), _day_start(last) + _DAY_MS - 1
    else:
        start = _day_start(value)
        end = start + _DAY_MS - 1

    if end < start:
        raise ValueError(f"Date range ends before it starts: {value}")
    return start, end


class PrivacyService:
    """Manages privacy rules and applies them to stored records."""

    def __init__(self, store: RecordStore, index: Optional[IVectorIndex] = None):
        self.store = store
        self.index = index

    def add_rule(self, kind, value: str) -> PrivacyRule:
        kind = RuleKind(kind)
        value = (value or "").strip()
        if not value:
            raise ValueError("Rule value must not be empty")
        if kind == RuleKind.DATE:
            parse_date_range(value)
        elif kind == RuleKind.DOMAIN:
            value = value.lower()

        rule = PrivacyRule(id=f"rule_{uuid.uuid4().hex[:12]}", kind=kind, value=value)
        self.store.add_rule(rule)
        logger.log_privacy_operation("add_rule", {"rule_id": rule.id, "kind": kind.value})
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        deleted = self.store.delete_rule(rule_id)
        logger.log_privacy_operation("delete_rule", {"rule_id": rule_id, "deleted": deleted})
        return deleted

    def list_rules(self) -> List[PrivacyRule]:
        return self.store.list_rules()

    def toggle_rule(self, rule_id: str) -> Optional[PrivacyRule]:
        """Flip a rule between active and inactive; affects later capture decisions only."""
        rule = self.store.get_rule(rule_id)
        if rule is None:
            return None
        status = RuleStatus.INACTIVE if rule.is_active else RuleStatus.ACTIVE
        updated = self.store.set_rule_status(rule_id, status)
        logger.log_privacy_operation("toggle_rule", {"rule_id": rule_id, "status": status.value})
        return updated

    def matching_ids(self, rule: PrivacyRule) -> List[str]:
        """Ids of stored records *rule* matches, with the same semantics as ``rule_matches``."""
        if rule.kind == RuleKind.DOMAIN:
            return self.store.ids_for_domain(rule.value, include_subdomains=True)
        if rule.kind == RuleKind.DATE:
            start, end = parse_date_range(rule.value)
            return self.store.ids_in_date_range(start, end)
        return self.store.ids_matching_keyword(rule.value)

    def purge(self, record_ids: Sequence[str]) -> int:
        """Cascading delete of *record_ids* from the store and the vector index."""
        deleted = self.store.delete_records(record_ids)
        if self.index is not None:
            for record_id in record_ids:
                self.index.remove(record_id)
        return deleted

    def apply_rule(self, rule_id: str) -> int:
        """Delete every stored record the rule matches; returns the deleted count."""
        rule = self.store.get_rule(rule_id)
        if rule is None:
            return 0

        deleted = self.purge(self.matching_ids(rule))
        logger.log_privacy_operation("apply_rule", {"rule_id": rule_id, "kind": rule.kind.value, "deleted": deleted})
        return deleted

    @staticmethod
    def rule_matches(rule: PrivacyRule, record: Record) -> bool:
        if rule.kind == RuleKind.DOMAIN:
            domain = (record.domain or "").lower()
            return domain == rule.value or domain.endswith("." + rule.value)
        if rule.kind == RuleKind.DATE:
            start, end = parse_date_range(rule.value)
            return start <= record.timestamp <= end

        return rule.value.casefold() in record_text(record)

    def allows_capture(self, record: Record) -> Tuple[bool, Optional[str]]:
        """Check *record* against active rules; returns (allowed, id of the first blocking rule)."""
        for rule in self.store.list_rules(active_only=True):
            if self.rule_matches(rule, record):
                logger.log_privacy_operation("block_capture", {"rule_id": rule.id, "url": record.url})
                return False, rule.id
        return True, None
