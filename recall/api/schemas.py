"""
Request and response models for the command surface.
Each command is a tagged model; ``Command`` is the closed union of all of them.
"""

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel, field_validator, model_validator

from ..core.schema import RuleKind


class RecordPayload(BaseModel):
    url: str
    title: str = ""
    body_text: str = ""
    timestamp: Optional[int] = None
    keywords: List[str] = Field(default_factory=list)
    domain: Optional[str] = None
    session_id: Optional[str] = None
    tab_ref: Optional[int] = None
    id: Optional[str] = None

    @field_validator('url')
    @classmethod
    def url_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('url cannot be empty')
        return v.strip()

    @field_validator('timestamp')
    @classmethod
    def timestamp_must_not_be_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError('timestamp cannot be negative')
        return v


class CaptureCommand(BaseModel):
    type: Literal["CAPTURE"] = "CAPTURE"
    record: RecordPayload


class SearchCommand(BaseModel):
    type: Literal["SEARCH"] = "SEARCH"
    query: str
    limit: int = Field(default=10, ge=1, le=100)
    threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)


class NeighborsCommand(BaseModel):
    type: Literal["NEIGHBORS"] = "NEIGHBORS"
    id: str
    limit: int = Field(default=5, ge=1, le=100)


class ForgetCommand(BaseModel):
    type: Literal["FORGET"] = "FORGET"
    domain: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None

    @model_validator(mode='after')
    def needs_domain_or_range(self):
        if self.domain is None and self.start is None and self.end is None:
            raise ValueError('forget needs a domain or a date range')
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError('end must not precede start')
        return self


class ExportCommand(BaseModel):
    type: Literal["EXPORT"] = "EXPORT"


class DiffSessionsCommand(BaseModel):
    type: Literal["DIFF_SESSIONS"] = "DIFF_SESSIONS"
    session_a: str
    session_b: str


class MergeSessionsCommand(BaseModel):
    type: Literal["MERGE_SESSIONS"] = "MERGE_SESSIONS"
    session_a: str
    session_b: str


class AddRuleCommand(BaseModel):
    type: Literal["ADD_RULE"] = "ADD_RULE"
    kind: RuleKind
    value: str

    @field_validator('value')
    @classmethod
    def value_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v


class DeleteRuleCommand(BaseModel):
    type: Literal["DELETE_RULE"] = "DELETE_RULE"
    id: str


class ListRulesCommand(BaseModel):
    type: Literal["LIST_RULES"] = "LIST_RULES"


class ToggleRuleCommand(BaseModel):
    type: Literal["TOGGLE_RULE"] = "TOGGLE_RULE"
    id: str


class ApplyRuleCommand(BaseModel):
    type: Literal["APPLY_RULE"] = "APPLY_RULE"
    id: str


class FindPathCommand(BaseModel):
    type: Literal["FIND_PATH"] = "FIND_PATH"
    from_id: str
    to_id: str
    max_depth: int = Field(default=3, ge=0, le=10)


class StatsCommand(BaseModel):
    type: Literal["STATS"] = "STATS"


class RelatedPagesCommand(BaseModel):
    type: Literal["RELATED_PAGES"] = "RELATED_PAGES"
    url: str
    limit: int = Field(default=5, ge=1, le=100)


class RecentPagesCommand(BaseModel):
    type: Literal["RECENT_PAGES"] = "RECENT_PAGES"
    hours: int = Field(default=24, ge=1)
    limit: int = Field(default=20, ge=1, le=500)


class PagesByDomainCommand(BaseModel):
    type: Literal["PAGES_BY_DOMAIN"] = "PAGES_BY_DOMAIN"
    domain: str


class SessionStatsCommand(BaseModel):
    type: Literal["SESSION_STATS"] = "SESSION_STATS"
    session_id: str


class ActivityStatsCommand(BaseModel):
    type: Literal["ACTIVITY_STATS"] = "ACTIVITY_STATS"
    days: int = Field(default=30, ge=1)


class InsightsCommand(BaseModel):
    type: Literal["INSIGHTS"] = "INSIGHTS"
    days: int = Field(default=7, ge=1)


class SuggestionsCommand(BaseModel):
    type: Literal["SUGGESTIONS"] = "SUGGESTIONS"
    url: str
    limit: int = Field(default=5, ge=1, le=50)


class ActiveTaskCommand(BaseModel):
    type: Literal["ACTIVE_TASK"] = "ACTIVE_TASK"


class ShortcutsCommand(BaseModel):
    type: Literal["SHORTCUTS"] = "SHORTCUTS"


Command = Annotated[
    Union[
        CaptureCommand,
        SearchCommand,
        NeighborsCommand,
        ForgetCommand,
        ExportCommand,
        DiffSessionsCommand,
        MergeSessionsCommand,
        AddRuleCommand,
        DeleteRuleCommand,
        ListRulesCommand,
        ToggleRuleCommand,
        ApplyRuleCommand,
        FindPathCommand,
        StatsCommand,
        RelatedPagesCommand,
        RecentPagesCommand,
        PagesByDomainCommand,
        SessionStatsCommand,
        ActivityStatsCommand,
        InsightsCommand,
        SuggestionsCommand,
        ActiveTaskCommand,
        ShortcutsCommand,
    ],
    Field(discriminator="type")
]


class CommandResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    record_count: int
    index_size: int


class CommandRequest(RootModel[Command]):
    """Request body of ``POST /command``: a single tagged command."""
    pass
