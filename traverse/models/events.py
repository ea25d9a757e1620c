from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from traverse.models.domain import (
    AnalysisResult,
    ApplicationAssessment,
    ComplianceItem,
    CrossDocFinding,
    DocumentExtraction,
    NarrativeStrength,
    Severity,
    SourceReference,
)

DONE = "[DONE]"


class EventType(StrEnum):
    ORCHESTRATOR = "orchestrator"
    SEARCH_STATUS = "search_status"
    REQUIREMENT = "requirement"
    SOURCES = "sources"
    THINKING = "thinking"
    THINKING_DEPTH = "thinking_depth"
    DOCUMENT_READ = "document_read"
    CROSS_LINGUAL = "cross_lingual"
    FORENSIC = "forensic"
    NARRATIVE = "narrative"
    RECOMMENDATION = "recommendation"
    ASSESSMENT = "assessment"
    DOC_ANALYSIS_START = "doc_analysis_start"
    DOC_ANALYSIS_THINKING = "doc_analysis_thinking"
    DOC_ANALYSIS_RESULT = "doc_analysis_result"
    ERROR = "error"
    COMPLETE = "complete"


TERMINAL_EVENT_TYPES = frozenset({EventType.COMPLETE, EventType.ERROR})


class OrchestratorAction(StrEnum):
    PLANNING = "planning"
    AGENT_START = "agent_start"
    AGENT_COMPLETE = "agent_complete"


class SearchState(StrEnum):
    SEARCHING = "searching"
    FOUND = "found"
    NOT_FOUND = "not_found"


class BaseEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def format(self) -> str:
        return f"data: {self.to_json()}\n\n"


class OrchestratorEvent(BaseEvent):
    type: Literal["orchestrator"] = "orchestrator"
    action: OrchestratorAction
    agent: Optional[str] = None
    message: Optional[str] = None
    duration_ms: Optional[int] = Field(default=None, alias="duration_ms")


class SearchStatusEvent(BaseEvent):
    type: Literal["search_status"] = "search_status"
    source: str
    status: SearchState
    url: Optional[str] = None


class RequirementEvent(BaseEvent):
    type: Literal["requirement"] = "requirement"
    item: str
    detail: Optional[str] = None
    depth: int = 1
    source: Optional[str] = None
    uploadable: Optional[bool] = None
    universal: Optional[bool] = None
    requirement_id: Optional[str] = None


class SourcesEvent(BaseEvent):
    type: Literal["sources"] = "sources"
    sources: list[SourceReference]


class ThinkingEvent(BaseEvent):
    type: Literal["thinking"] = "thinking"
    agent: str
    summary: str
    excerpt: Optional[str] = None


class ThinkingDepthEvent(BaseEvent):
    type: Literal["thinking_depth"] = "thinking_depth"
    agent: str
    tokens: int
    budget: int


class DocumentReadEvent(BaseEvent):
    type: Literal["document_read"] = "document_read"
    doc: str
    language: str
    doc_type: Optional[str] = None
    duration_ms: Optional[int] = Field(default=None, alias="duration_ms")


class CrossLingualEvent(BaseEvent):
    type: Literal["cross_lingual"] = "cross_lingual"
    finding: str
    severity: Severity
    details: Optional[str] = None


class ForensicEvent(BaseEvent):
    type: Literal["forensic"] = "forensic"
    finding: str
    severity: Severity
    details: Optional[str] = None


class NarrativeEvent(BaseEvent):
    type: Literal["narrative"] = "narrative"
    assessment: NarrativeStrength
    issues: int = 0
    details: Optional[str] = None


class RecommendationEvent(BaseEvent):
    type: Literal["recommendation"] = "recommendation"
    priority: Severity
    action: str
    details: Optional[str] = None


class AssessmentEvent(BaseEvent):
    """Verdict of an advisory phase. Not a stream terminator."""

    type: Literal["assessment"] = "assessment"
    overall: ApplicationAssessment


class DocAnalysisStartEvent(BaseEvent):
    type: Literal["doc_analysis_start"] = "doc_analysis_start"
    requirement_name: str
    doc_filename: str


class DocAnalysisThinkingEvent(BaseEvent):
    type: Literal["doc_analysis_thinking"] = "doc_analysis_thinking"
    requirement_name: str
    excerpt: str


class DocAnalysisResultEvent(BaseEvent):
    type: Literal["doc_analysis_result"] = "doc_analysis_result"
    requirement_name: str
    extraction: DocumentExtraction
    compliance: ComplianceItem
    cross_doc_findings: Optional[list[CrossDocFinding]] = None


class ErrorEvent(BaseEvent):
    type: Literal["error"] = "error"
    message: str


class CompleteEvent(BaseEvent):
    type: Literal["complete"] = "complete"
    data: AnalysisResult = Field(default_factory=AnalysisResult)


Event = Annotated[
    Union[
        OrchestratorEvent,
        SearchStatusEvent,
        RequirementEvent,
        SourcesEvent,
        ThinkingEvent,
        ThinkingDepthEvent,
        DocumentReadEvent,
        CrossLingualEvent,
        ForensicEvent,
        NarrativeEvent,
        RecommendationEvent,
        AssessmentEvent,
        DocAnalysisStartEvent,
        DocAnalysisThinkingEvent,
        DocAnalysisResultEvent,
        ErrorEvent,
        CompleteEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(payload: str | bytes | dict[str, Any]) -> BaseEvent:
    """Decode one event from its JSON text or an already-loaded mapping.

    Raises pydantic.ValidationError for unknown types or bad payloads.
    """
    if isinstance(payload, dict):
        return _EVENT_ADAPTER.validate_python(payload)
    return _EVENT_ADAPTER.validate_json(payload)
