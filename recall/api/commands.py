"""
Command dispatch: every command in the closed ``Command`` union maps to one engine call.
"""

from enum import Enum

from .schemas import (
    ActiveTaskCommand,
    ActivityStatsCommand,
    AddRuleCommand,
    ApplyRuleCommand,
    CaptureCommand,
    Command,
    CommandResponse,
    DeleteRuleCommand,
    DiffSessionsCommand,
    ExportCommand,
    FindPathCommand,
    ForgetCommand,
    InsightsCommand,
    ListRulesCommand,
    MergeSessionsCommand,
    NeighborsCommand,
    PagesByDomainCommand,
    RecentPagesCommand,
    RelatedPagesCommand,
    SearchCommand,
    SessionStatsCommand,
    ShortcutsCommand,
    StatsCommand,
    SuggestionsCommand,
    ToggleRuleCommand,
)
from ..core.engine import RecallEngine
from ..core.errors import RecallError
from ..util.logging import logger


class CommandType(str, Enum):
    CAPTURE = "CAPTURE"
    SEARCH = "SEARCH"
    NEIGHBORS = "NEIGHBORS"
    FORGET = "FORGET"
    EXPORT = "EXPORT"
    DIFF_SESSIONS = "DIFF_SESSIONS"
    MERGE_SESSIONS = "MERGE_SESSIONS"
    ADD_RULE = "ADD_RULE"
    DELETE_RULE = "DELETE_RULE"
    LIST_RULES = "LIST_RULES"
    TOGGLE_RULE = "TOGGLE_RULE"
    APPLY_RULE = "APPLY_RULE"
    FIND_PATH = "FIND_PATH"
    STATS = "STATS"
    RELATED_PAGES = "RELATED_PAGES"
    RECENT_PAGES = "RECENT_PAGES"
    PAGES_BY_DOMAIN = "PAGES_BY_DOMAIN"
    SESSION_STATS = "SESSION_STATS"
    ACTIVITY_STATS = "ACTIVITY_STATS"
    INSIGHTS = "INSIGHTS"
    SUGGESTIONS = "SUGGESTIONS"
    ACTIVE_TASK = "ACTIVE_TASK"
    SHORTCUTS = "SHORTCUTS"


def _dispatch(engine: RecallEngine, command: Command):
    if isinstance(command, CaptureCommand):
        return engine.capture(command.record.model_dump()).to_dict()
    elif isinstance(command, SearchCommand):
        result = engine.search(command.query, limit=command.limit, threshold=command.threshold)
        return [match.to_dict() for match in result.matches]
    elif isinstance(command, NeighborsCommand):
        return [record.to_dict() for record in engine.neighbors(command.id, command.limit)]
    elif isinstance(command, ForgetCommand):
        return {"deleted_count": engine.forget(command.domain, command.start, command.end)}
    elif isinstance(command, ExportCommand):
        return [record.to_dict() for record in engine.export()]
    elif isinstance(command, DiffSessionsCommand):
        return engine.diff_sessions(command.session_a, command.session_b).to_dict()
    elif isinstance(command, MergeSessionsCommand):
        return engine.merge_sessions(command.session_a, command.session_b).to_dict()
    elif isinstance(command, AddRuleCommand):
        return {"id": engine.add_rule(command.kind, command.value).id}
    elif isinstance(command, DeleteRuleCommand):
        engine.delete_rule(command.id)
        return None
    elif isinstance(command, ListRulesCommand):
        return [rule.to_dict() for rule in engine.list_rules()]
    elif isinstance(command, ToggleRuleCommand):
        rule = engine.toggle_rule(command.id)
        return rule.to_dict() if rule else None
    elif isinstance(command, ApplyRuleCommand):
        return {"deleted_count": engine.apply_rule(command.id)}
    elif isinstance(command, FindPathCommand):
        return {"path": engine.find_path(command.from_id, command.to_id, command.max_depth)}
    elif isinstance(command, StatsCommand):
        return engine.stats()
    elif isinstance(command, RelatedPagesCommand):
        return [record.to_dict() for record in engine.related_pages(command.url, command.limit)]
    elif isinstance(command, RecentPagesCommand):
        return [record.to_dict() for record in engine.recent_pages(command.hours, command.limit)]
    elif isinstance(command, PagesByDomainCommand):
        return [record.to_dict() for record in engine.pages_by_domain(command.domain)]
    elif isinstance(command, SessionStatsCommand):
        return engine.session_stats(command.session_id)
    elif isinstance(command, ActivityStatsCommand):
        return engine.activity_stats(command.days)
    elif isinstance(command, InsightsCommand):
        return [insight.to_dict() for insight in engine.generate_insights(command.days)]
    elif isinstance(command, SuggestionsCommand):
        return [suggestion.to_dict() for suggestion in engine.suggestions(command.url, command.limit)]
    elif isinstance(command, ActiveTaskCommand):
        task = engine.active_task()
        return {**task, "pages": [page.to_dict() for page in task["pages"]]}
    elif isinstance(command, ShortcutsCommand):
        return engine.shortcuts()
    raise TypeError(f"Unhandled command: {type(command).__name__}")


def execute(engine: RecallEngine, command: Command) -> CommandResponse:
    """Run *command* against *engine*; engine errors become failed responses."""
    try:
        data = _dispatch(engine, command)
    except (RecallError, ValueError) as e:
        logger.log_operation(f"command.{command.type}", "failed", {"error": str(e)})
        return CommandResponse(success=False, error=str(e))

    logger.log_operation(f"command.{command.type}", "success")
    return CommandResponse(success=True, data=data)
