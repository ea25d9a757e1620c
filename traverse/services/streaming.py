from __future__ import annotations

from traverse.models.domain import (
    AnalysisResult,
    ApplicationAssessment,
    ComplianceItem,
    CrossDocFinding,
    CrossLingualFinding,
    DocumentExtraction,
    ForensicFlag,
    NarrativeAssessment,
    RemediationItem,
    RequirementItem,
    SourceReference,
)
from traverse.models.events import (
    AssessmentEvent,
    CompleteEvent,
    CrossLingualEvent,
    DocAnalysisResultEvent,
    DocAnalysisStartEvent,
    DocAnalysisThinkingEvent,
    DocumentReadEvent,
    ErrorEvent,
    ForensicEvent,
    NarrativeEvent,
    OrchestratorAction,
    OrchestratorEvent,
    RecommendationEvent,
    RequirementEvent,
    SearchState,
    SearchStatusEvent,
    SourcesEvent,
    ThinkingDepthEvent,
    ThinkingEvent,
)


def planning(message: str) -> OrchestratorEvent:
    return OrchestratorEvent(action=OrchestratorAction.PLANNING, message=message)


def agent_started(agent: str, message: str | None = None) -> OrchestratorEvent:
    return OrchestratorEvent(action=OrchestratorAction.AGENT_START, agent=agent, message=message)


def agent_completed(
    agent: str,
    message: str | None = None,
    duration_ms: int | None = None,
) -> OrchestratorEvent:
    return OrchestratorEvent(
        action=OrchestratorAction.AGENT_COMPLETE,
        agent=agent,
        message=message,
        duration_ms=duration_ms,
    )


def search_status(source: str, status: SearchState | str, url: str | None = None) -> SearchStatusEvent:
    return SearchStatusEvent(source=source, status=SearchState(status), url=url or None)


def requirement(item: RequirementItem) -> RequirementEvent:
    """Surface one requirement; required items sit one level deeper than recommended ones."""
    return RequirementEvent(
        item=item.name,
        detail=item.description,
        depth=2 if item.required else 1,
        source=item.source,
        uploadable=True if item.uploadable is None else item.uploadable,
        universal=item.universal,
        requirement_id=item.id or None,
    )


def sources(references: list[SourceReference]) -> SourcesEvent:
    return SourcesEvent(sources=references)


def thinking(agent: str, summary: str, excerpt: str | None = None) -> ThinkingEvent:
    return ThinkingEvent(agent=agent, summary=summary, excerpt=excerpt)


def thinking_depth(agent: str, tokens: int, budget: int) -> ThinkingDepthEvent:
    return ThinkingDepthEvent(agent=agent, tokens=tokens, budget=budget)


def document_read(
    doc: str,
    language: str,
    doc_type: str | None = None,
    duration_ms: int | None = None,
) -> DocumentReadEvent:
    return DocumentReadEvent(doc=doc, language=language, doc_type=doc_type, duration_ms=duration_ms)


def cross_lingual(finding: CrossLingualFinding) -> CrossLingualEvent:
    return CrossLingualEvent(
        finding=finding.finding,
        severity=finding.severity,
        details=finding.reasoning or None,
    )


def forensic(flag: ForensicFlag) -> ForensicEvent:
    return ForensicEvent(finding=flag.finding, severity=flag.severity, details=flag.detail or None)


def narrative(assessment: NarrativeAssessment) -> NarrativeEvent:
    return NarrativeEvent(
        assessment=assessment.strength,
        issues=len(assessment.issues),
        details=assessment.summary or None,
    )


def recommendation(fix: RemediationItem) -> RecommendationEvent:
    return RecommendationEvent(priority=fix.severity, action=fix.fix, details=fix.issue)


def assessment(overall: ApplicationAssessment) -> AssessmentEvent:
    return AssessmentEvent(overall=overall)


def doc_analysis_started(requirement_name: str, doc_filename: str) -> DocAnalysisStartEvent:
    return DocAnalysisStartEvent(requirement_name=requirement_name, doc_filename=doc_filename)


def doc_analysis_thinking(requirement_name: str, excerpt: str) -> DocAnalysisThinkingEvent:
    return DocAnalysisThinkingEvent(requirement_name=requirement_name, excerpt=excerpt)


def doc_analysis_result(
    requirement_name: str,
    extraction: DocumentExtraction,
    compliance: ComplianceItem,
    cross_doc_findings: list[CrossDocFinding] | None = None,
) -> DocAnalysisResultEvent:
    return DocAnalysisResultEvent(
        requirement_name=requirement_name,
        extraction=extraction,
        compliance=compliance,
        cross_doc_findings=cross_doc_findings or None,
    )


def error(message: str) -> ErrorEvent:
    return ErrorEvent(message=message)


def complete(result: AnalysisResult | None = None) -> CompleteEvent:
    return CompleteEvent(data=result or AnalysisResult())
