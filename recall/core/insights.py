"""
Activity insights and proactive suggestions derived from captured records.

Everything here is read-only over the record store; nothing is persisted.
Hour and weekday buckets use UTC, weekdays numbered Monday = 0.
"""

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .dao import RecordStore
from .schema import Record, now_ms
from .search_service import RecallService
from recall.util.logging import logger

_HOUR_MS = 3600 * 1000
_DAY_MS = 24 * _HOUR_MS

# Estimated reading time per captured page
PAGE_DWELL_MS = 30 * 1000


@dataclass
class ActivityInsight:
    id: str
    type: str  # time_spent | domain_focus | topic_trend | productivity | pattern
    title: str
    description: str
    data: Dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.5
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Suggestion:
    id: str
    type: str  # related_page | recent_revisit | cluster_expansion
    title: str
    description: str
    action: str  # open_url | show_cluster
    target: str
    confidence: float
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)


def _ranked(counts: Counter, limit: Optional[int]) -> List[tuple]:
    # Counter.most_common keeps first-seen order among equal counts
    return counts.most_common(limit)


class InsightsService:
    """Browsing statistics, insights and suggestions over the stored records."""

    def __init__(self, store: RecordStore, recall: RecallService):
        self.store = store
        self.recall = recall

    def _since(self, days: float, now: Optional[int]) -> List[Record]:
        now = now if now is not None else now_ms()
        return self.store.get_in_date_range(now - int(days * _DAY_MS), now)

    def activity_stats(self, days: int = 30, now: Optional[int] = None) -> Dict[str, Any]:
        """
        Aggregate activity over the trailing *days*.

        Returns:
            Dict with total_pages, total_time (ms, estimated), unique_domains,
            top_domains, top_keywords, hourly_distribution (24 buckets) and
            daily_distribution (7 buckets)
        """
        pages = self._since(days, now)

        domains = Counter(p.domain for p in pages)
        keywords = Counter(kw for p in pages for kw in p.keywords)
        hourly = [0] * 24
        daily = [0] * 7
        for page in pages:
            moment = _utc(page.timestamp)
            hourly[moment.hour] += 1
            daily[moment.weekday()] += 1

        return {
            "total_pages": len(pages),
            "total_time": len(pages) * PAGE_DWELL_MS,
            "unique_domains": len(domains),
            "top_domains": [
                {"domain": domain, "count": count, "time_spent": count * PAGE_DWELL_MS}
                for domain, count in _ranked(domains, 10)
            ],
            "top_keywords": [{"keyword": kw, "count": count} for kw, count in _ranked(keywords, 10)],
            "hourly_distribution": hourly,
            "daily_distribution": daily
        }

    def generate_insights(self, days: int = 7, now: Optional[int] = None) -> List[ActivityInsight]:
        """Insights about the trailing *days*, most confident first."""
        pages = self._since(days, now)
        insights = []

        hours = len(pages) * PAGE_DWELL_MS / _HOUR_MS
        insights.append(ActivityInsight(
            id="time_spent",
            type="time_spent",
            title="Time Spent Browsing",
            description=f"You've browsed approximately {round(hours)} hours in the last {days} days",
            data={"hours": hours, "days": days},
            confidence=0.8
        ))

        if pages:
            distribution = [
                {"domain": domain, "count": count, "percentage": count * 100.0 / len(pages)}
                for domain, count in _ranked(Counter(p.domain for p in pages), 5)
            ]
            top = distribution[0]
            insights.append(ActivityInsight(
                id="domain_focus",
                type="domain_focus",
                title="Primary Focus",
                description=f"You spend most of your time on {top['domain']} ({top['percentage']:.0f}% of visits)",
                data={"top_domain": top, "distribution": distribution},
                confidence=0.9
            ))

        topics = _ranked(Counter(kw for p in pages for kw in p.keywords), 10)
        if topics:
            insights.append(ActivityInsight(
                id="topic_trend",
                type="topic_trend",
                title="Current Interest",
                description=f'Your recent browsing focuses on "{topics[0][0]}"',
                data={"top_topic": topics[0][0], "topics": [{"keyword": k, "count": c} for k, c in topics]},
                confidence=0.7
            ))

        per_session = Counter(p.session_id or "unknown" for p in pages)
        avg_pages = sum(per_session.values()) / len(per_session) if per_session else 0.0
        if avg_pages > 20:
            style = "deep focus with long sessions"
        elif avg_pages > 10:
            style = "moderate engagement"
        else:
            style = "quick browsing patterns"
        insights.append(ActivityInsight(
            id="productivity",
            type="productivity",
            title="Browsing Patterns",
            description=f"Your browsing shows {style}",
            data={"session_count": len(per_session), "avg_pages_per_session": round(avg_pages)},
            confidence=0.75
        ))

        for i, (domain, count) in enumerate(self._frequent_domains(pages)):
            insights.append(ActivityInsight(
                id=f"pattern_{i}",
                type="pattern",
                title="Frequent Visits",
                description=f"You visit {domain} frequently ({count} times recently)",
                data={"domain": domain, "visits": count},
                confidence=0.8
            ))

        insights.sort(key=lambda insight: -insight.confidence)
        logger.log_operation("insights.generate", "success", {"days": days, "insights": len(insights)})
        return insights

    @staticmethod
    def _frequent_domains(pages: List[Record]) -> List[tuple]:
        """Domains with at least five visits whose mean gap between visits is under a day."""
        visits: Dict[str, List[int]] = {}
        for page in pages:
            visits.setdefault(page.domain, []).append(page.timestamp)

        frequent = []
        for domain, stamps in visits.items():
            if len(stamps) < 5:
                continue
            stamps.sort()
            mean_gap = (stamps[-1] - stamps[0]) / (len(stamps) - 1)
            if mean_gap < _DAY_MS:
                frequent.append((domain, len(stamps)))
        return frequent

    def generate_suggestions(self, url: str, limit: int = 5, now: Optional[int] = None) -> List[Suggestion]:
        """
        Suggestions for a user currently on *url*.

        Combines graph neighbours of the page, domains revisited at least three
        times in the last day, and the largest cached cluster when it is still
        small enough to grow.
        """
        if limit <= 0:
            return []
        suggestions = []

        for page in self.recall.related_pages(url, limit=3):
            suggestions.append(Suggestion(
                id=f"related_{page.id}",
                type="related_page",
                title=f"Related: {page.title}",
                description="You might be interested in this related page",
                action="open_url",
                target=page.url,
                confidence=0.7
            ))

        recent = self.recall.recent_pages(hours=24, limit=50, now=now)
        revisits = [(d, c) for d, c in _ranked(Counter(p.domain for p in recent), None) if c >= 3][:2]
        for domain, count in revisits:
            latest = self.recall.pages_by_domain(domain)
            if not latest:
                continue
            suggestions.append(Suggestion(
                id=f"revisit_{domain}",
                type="recent_revisit",
                title=f"Revisit {domain}",
                description=f"You've visited this site {count} times recently",
                action="open_url",
                target=latest[0].url,
                confidence=0.8
            ))

        clusters = sorted(self.store.get_all_clusters(), key=lambda c: -len(c.member_ids))
        if clusters and 0 < len(clusters[0].member_ids) < 10:
            largest = clusters[0]
            suggestions.append(Suggestion(
                id=f"cluster_{largest.id}",
                type="cluster_expansion",
                title=f'Expand "{largest.name}" cluster',
                description=f"You have {len(largest.member_ids)} pages in this cluster. Find more related content?",
                action="show_cluster",
                target=largest.id,
                confidence=0.6
            ))

        suggestions.sort(key=lambda s: -s.confidence)
        return suggestions[:limit]

    def detect_active_task(self, now: Optional[int] = None) -> Dict[str, Any]:
        """
        A task is active when at least three pages were captured in the last two
        hours and at least two keywords recur among them.
        """
        pages = self.recall.recent_pages(hours=2, limit=20, now=now)
        if len(pages) < 3:
            return {"is_active": False, "pages": [], "keywords": []}

        counts = Counter(kw for p in pages for kw in p.keywords)
        keywords = [kw for kw, count in _ranked(counts, None) if count >= 2][:5]
        return {"is_active": len(keywords) >= 2, "pages": pages, "keywords": keywords}

    def suggest_shortcuts(self, now: Optional[int] = None) -> List[Dict[str, Any]]:
        """The five most visited domains of the last week."""
        pages = self.recall.recent_pages(hours=168, limit=100, now=now)
        return [
            {
                "shortcut": domain,
                "description": f"Quick access to {domain} (visited {count} times)",
                "action": f"https://{domain}"
            }
            for domain, count in _ranked(Counter(p.domain for p in pages), 5)
        ]
